"""Shared test fixtures for rize.

The sandbox engine only talks to Docker through the client object it is
handed, so tests pass an in-memory ``FakeDockerClient`` instead.
"""

from __future__ import annotations

import itertools
import socket
import struct
from collections import Counter
from typing import Any

import pytest
import requests
from docker.errors import APIError, ImageNotFound, NotFound

from rize.config import Config, NetworkConfig

# ---------------------------------------------------------------------------
# Shared helpers (plain functions, not fixtures; importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset({"home_dir", "state_root", "compose_path"})


def make_settings(**overrides):
    """Create a Settings object with defaults and no environment lookups.

    Usage::

        s = make_settings(home_dir=tmp_path)
        s = make_settings(image="example/rize:dev")
    """
    from rize.config import DEFAULT_IMAGE, Settings

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}
    defaults: dict[str, Any] = {"image": DEFAULT_IMAGE}
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)
    for key, value in cached.items():
        s.__dict__[key] = value
    return s


def make_config(**services: bool) -> Config:
    """Merged config with only the given services set, e.g. ``make_config(postgres=True)``."""
    return Config(services=dict(services), environment={}, network=NetworkConfig())


def api_error(status_code: int, message: str = "error", cls: type[APIError] = APIError) -> APIError:
    response = requests.Response()
    response.status_code = status_code
    response.reason = message
    response.url = "http+docker://localhost/fake"
    return cls(message, response=response, explanation=message)


def docker_frame(stream: int, payload: bytes) -> bytes:
    """One multiplexed attach-stream frame (8-byte header + payload)."""
    return struct.pack(">BxxxL", stream, len(payload)) + payload


def finished_stream(data: bytes = b"") -> socket.socket:
    """Attach socket whose remote end has sent *data* and hung up."""
    local, remote = socket.socketpair()
    remote.sendall(data)
    remote.close()
    return local


# ---------------------------------------------------------------------------
# Fake Docker client
# ---------------------------------------------------------------------------


class FakeContainer:
    def __init__(
        self,
        name: str,
        *,
        running: bool = False,
        networks: list[str] | None = None,
        labels: dict[str, str] | None = None,
        container_id: str | None = None,
    ) -> None:
        self.id = container_id or f"id-{name}"
        self.name = name
        self.labels = dict(labels or {})
        self.create_kwargs: dict[str, Any] = {}
        self.attrs: dict[str, Any] = {
            "State": {"Running": running},
            "NetworkSettings": {"Networks": {n: {} for n in networks or []}},
        }

    @property
    def running(self) -> bool:
        return self.attrs["State"]["Running"]

    @running.setter
    def running(self, value: bool) -> None:
        self.attrs["State"]["Running"] = value

    @property
    def status(self) -> str:
        return "running" if self.running else "exited"

    def join(self, network: str) -> None:
        self.attrs["NetworkSettings"]["Networks"][network] = {}


class FakeContainers:
    def __init__(self, client: FakeDockerClient) -> None:
        self._client = client
        self.by_name: dict[str, FakeContainer] = {}
        self.race_winner: FakeContainer | None = None
        self.get_error: APIError | None = None

    def add(self, container: FakeContainer) -> FakeContainer:
        self.by_name[container.name] = container
        return container

    def _find(self, ref: str) -> FakeContainer | None:
        if ref in self.by_name:
            return self.by_name[ref]
        return next((c for c in self.by_name.values() if c.id == ref), None)

    def get(self, ref: str) -> FakeContainer:
        self._client.calls["containers.get"] += 1
        if self.get_error is not None:
            raise self.get_error
        container = self._find(ref)
        if container is None:
            raise api_error(404, f"No such container: {ref}", NotFound)
        return container

    def create(self, **kwargs: Any) -> FakeContainer:
        self._client.calls["containers.create"] += 1
        name = kwargs["name"]
        if self.race_winner is not None:
            # Another invocation created the container between inspect and create
            self.add(self.race_winner)
            self.race_winner = None
        if name in self.by_name:
            raise api_error(409, f"Conflict. The container name {name} is already in use")
        container = FakeContainer(name)
        container.create_kwargs = kwargs
        network = kwargs.get("network")
        if network:
            container.join(network)
        return self.add(container)

    def list(self, filters: dict[str, str] | None = None) -> list[FakeContainer]:
        self._client.calls["containers.list"] += 1
        filters = filters or {}
        result = []
        for container in self.by_name.values():
            if filters.get("status") == "running" and not container.running:
                continue
            label = filters.get("label")
            if label:
                key, _, value = label.partition("=")
                if container.labels.get(key) != value:
                    continue
            result.append(container)
        return result


class FakeNetwork:
    def __init__(self, client: FakeDockerClient, name: str, driver: str = "bridge") -> None:
        self._client = client
        self.name = name
        self.driver = driver
        self.connect_error: APIError | None = None

    def connect(self, container_ref: str) -> None:
        self._client.calls["network.connect"] += 1
        if self.connect_error is not None:
            raise self.connect_error
        self._client.containers.get(container_ref).join(self.name)
        self._client.connected.append((self.name, container_ref))


class FakeNetworks:
    def __init__(self, client: FakeDockerClient) -> None:
        self._client = client
        self.by_name: dict[str, FakeNetwork] = {}
        self.get_error: APIError | None = None
        self.create_error: APIError | None = None

    def add(self, name: str, driver: str = "bridge") -> FakeNetwork:
        network = FakeNetwork(self._client, name, driver)
        self.by_name[name] = network
        return network

    def get(self, name: str) -> FakeNetwork:
        self._client.calls["networks.get"] += 1
        if self.get_error is not None:
            raise self.get_error
        if name not in self.by_name:
            raise api_error(404, f"network {name} not found", NotFound)
        return self.by_name[name]

    def create(self, name: str, driver: str = "bridge") -> FakeNetwork:
        self._client.calls["networks.create"] += 1
        if self.create_error is not None:
            raise self.create_error
        return self.add(name, driver)


class FakeImages:
    def __init__(self, client: FakeDockerClient) -> None:
        self._client = client
        self.present: set[str] = set()

    def get(self, image: str) -> str:
        self._client.calls["images.get"] += 1
        if image not in self.present:
            raise api_error(404, f"No such image: {image}", ImageNotFound)
        return image


class FakeAPI:
    """Low-level API surface: pull, start and the exec endpoints."""

    def __init__(self, client: FakeDockerClient) -> None:
        self._client = client
        self._exec_ids = itertools.count(1)
        self.pull_events: list[dict[str, Any]] = [{"status": "Downloading", "id": "layer1"}]
        self.start_error: APIError | None = None
        self.exec_create_error: APIError | None = None
        self.exec_start_error: APIError | None = None
        self.exec_states: list[dict[str, Any]] = [{"Running": False, "ExitCode": 0}]
        self.exec_socket: Any = None
        self.exec_creates: list[dict[str, Any]] = []
        self.resizes: list[tuple[int, int]] = []

    def pull(self, image: str, stream: bool = False, decode: bool = False):
        self._client.calls["api.pull"] += 1
        self._client.images.present.add(image)
        return iter(self.pull_events)

    def start(self, container_id: str) -> None:
        self._client.calls["api.start"] += 1
        if self.start_error is not None:
            raise self.start_error
        self._client.containers.get(container_id).running = True

    def exec_create(self, container: str, cmd: list[str], **kwargs: Any) -> dict[str, str]:
        self._client.calls["api.exec_create"] += 1
        if self.exec_create_error is not None:
            raise self.exec_create_error
        self.exec_creates.append({"container": container, "cmd": cmd, **kwargs})
        return {"Id": f"exec-{next(self._exec_ids)}"}

    def exec_start(self, exec_id: str, tty: bool = False, socket: bool = False):
        self._client.calls["api.exec_start"] += 1
        if self.exec_start_error is not None:
            raise self.exec_start_error
        if callable(self.exec_socket):
            return self.exec_socket()
        return self.exec_socket

    def exec_inspect(self, exec_id: str) -> dict[str, Any]:
        self._client.calls["api.exec_inspect"] += 1
        if len(self.exec_states) > 1:
            return self.exec_states.pop(0)
        return self.exec_states[0]

    def exec_resize(self, exec_id: str, height: int | None = None, width: int | None = None) -> None:
        self.resizes.append((height, width))


class FakeDockerClient:
    def __init__(self) -> None:
        self.calls: Counter[str] = Counter()
        self.connected: list[tuple[str, str]] = []
        self.containers = FakeContainers(self)
        self.networks = FakeNetworks(self)
        self.images = FakeImages(self)
        self.api = FakeAPI(self)
        self.closed = False

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def docker_fake() -> FakeDockerClient:
    return FakeDockerClient()


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path):
    """Each test gets a Settings singleton rooted at a private home directory."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setattr("rize.config._settings", make_settings(home_dir=home))
    return home
