"""Data models for the sandbox engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from docker.types import Mount

MountType = Literal["bind", "volume"]


@dataclass(frozen=True)
class MountEntry:
    type: MountType
    source: str  # host path for binds, volume name for volumes
    target: str  # path inside the container
    read_only: bool = False

    @classmethod
    def bind(cls, source: str, target: str, *, read_only: bool = False) -> MountEntry:
        return cls("bind", source, target, read_only)

    @classmethod
    def volume(cls, name: str, target: str) -> MountEntry:
        return cls("volume", name, target)

    def to_docker(self) -> Mount:
        return Mount(target=self.target, source=self.source, type=self.type, read_only=self.read_only)


@dataclass
class ResolvedContainerSpec:
    """Everything needed to create the sandbox container.

    Rebuilt from configuration and the host environment on every invocation;
    never persisted.
    """

    name: str
    image: str
    command: list[str]
    entrypoint: list[str]
    working_dir: str
    network_mode: str
    environment: list[str] = field(default_factory=list)  # ordered KEY=VALUE
    mounts: list[MountEntry] = field(default_factory=list)

    def env_keys(self) -> list[str]:
        return [item.split("=", 1)[0] for item in self.environment]

    def create_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``DockerClient.containers.create``."""
        kwargs: dict[str, Any] = {
            "image": self.image,
            "command": self.command,
            "name": self.name,
            "entrypoint": self.entrypoint,
            "environment": list(self.environment),
            "mounts": [m.to_docker() for m in self.mounts],
            "working_dir": self.working_dir,
            "tty": True,
            "stdin_open": True,
            "auto_remove": False,
        }
        if self.network_mode:
            kwargs["network"] = self.network_mode
        return kwargs


@dataclass(frozen=True)
class ContainerHandle:
    """The engine's view of a container at one moment. Never cached."""

    id: str
    name: str
    running: bool


@dataclass(frozen=True)
class ExecSession:
    exec_id: str
    tty: bool
    interactive: bool
