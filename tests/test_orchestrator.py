"""End-to-end orchestration against the fake engine."""

from __future__ import annotations

import contextlib
import io
from unittest.mock import patch

import pytest
from conftest import (
    FakeContainer,
    api_error,
    docker_frame,
    finished_stream,
    make_config,
    make_settings,
)
from docker.utils.socket import STDOUT

from rize.identity import resolve
from rize.sandbox import CommandFailedError, SandboxError, StaticServiceLocator, run_container
from rize.sandbox._networks import COMPOSE_SERVICE_LABEL


@pytest.fixture
def project(tmp_path):
    path = tmp_path / "app"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path):
    return make_settings(home_dir=tmp_path / "home")


@pytest.fixture(autouse=True)
def no_docker_socket(monkeypatch, tmp_path):
    monkeypatch.setattr("rize.sandbox._mounts.DOCKER_SOCKET", str(tmp_path / "missing.sock"))


async def _run(client, project, settings, command=("ls",), config=None, locator=None):
    out = io.BytesIO()
    await run_container(
        config or make_config(),
        list(command),
        False,
        client=client,
        locator=locator or StaticServiceLocator(),
        cwd=project,
        env={"TERM": "xterm"},
        settings=settings,
        stdin=io.BytesIO(),
        stdout=out,
        stderr=io.BytesIO(),
        poll_interval=0.01,
    )
    return out.getvalue()


class TestRunContainer:
    @pytest.mark.asyncio
    async def test_first_run_provisions_everything(self, docker_fake, project, settings):
        docker_fake.api.exec_socket = finished_stream(docker_frame(STDOUT, b"README.md\n"))
        out = await _run(docker_fake, project, settings)

        assert out == b"README.md\n"
        assert docker_fake.calls["api.pull"] == 1
        assert "rize" in docker_fake.networks.by_name
        name = resolve(project).container_name
        container = docker_fake.containers.by_name[name]
        assert container.running
        assert docker_fake.api.exec_creates[0]["container"] == container.id
        assert docker_fake.api.exec_creates[0]["workdir"] == "/workspace/app"

    @pytest.mark.asyncio
    async def test_sequential_runs_reuse_container(self, docker_fake, project, settings):
        docker_fake.api.exec_socket = finished_stream
        await _run(docker_fake, project, settings)
        await _run(docker_fake, project, settings)
        assert docker_fake.calls["containers.create"] == 1
        assert docker_fake.calls["api.start"] == 1
        assert docker_fake.calls["api.exec_create"] == 2
        assert docker_fake.calls["api.pull"] == 1

    @pytest.mark.asyncio
    async def test_stopped_container_is_restarted(self, docker_fake, project, settings):
        name = resolve(project).container_name
        existing = docker_fake.containers.add(FakeContainer(name, running=False))
        docker_fake.api.exec_socket = finished_stream
        await _run(docker_fake, project, settings)
        assert existing.running
        assert docker_fake.calls["containers.create"] == 0

    @pytest.mark.asyncio
    async def test_joins_running_service_networks(self, docker_fake, project, settings):
        service = docker_fake.containers.add(
            FakeContainer(
                "rize-postgres-1",
                running=True,
                networks=["rize_default"],
                labels={COMPOSE_SERVICE_LABEL: "postgres"},
            )
        )
        docker_fake.networks.add("rize_default")
        docker_fake.api.exec_socket = finished_stream
        locator = StaticServiceLocator({"postgres": service.id})
        await _run(docker_fake, project, settings, config=make_config(postgres=True), locator=locator)
        name = resolve(project).container_name
        assert ("rize_default", f"id-{name}") in docker_fake.connected

    @pytest.mark.asyncio
    async def test_exit_code_propagates(self, docker_fake, project, settings):
        docker_fake.api.exec_socket = finished_stream
        docker_fake.api.exec_states = [{"Running": False, "ExitCode": 7}]
        with pytest.raises(CommandFailedError) as exc_info:
            await _run(docker_fake, project, settings, command=("exit", "7"))
        assert exc_info.value.exit_code == 7

    @pytest.mark.asyncio
    async def test_network_failure_stops_before_container(self, docker_fake, project, settings):
        docker_fake.networks.create_error = api_error(500, "no pool")
        with pytest.raises(SandboxError):
            await _run(docker_fake, project, settings)
        assert docker_fake.calls["containers.create"] == 0
        assert docker_fake.calls["api.exec_create"] == 0

    @pytest.mark.asyncio
    async def test_acquires_client_when_none_given(self, docker_fake, project, settings):
        docker_fake.api.exec_socket = finished_stream
        with patch(
            "rize.sandbox._orchestrator.docker_client",
            return_value=contextlib.nullcontext(docker_fake),
        ) as acquire:
            await _run(None, project, settings)
        acquire.assert_called_once_with()
        assert docker_fake.calls["api.exec_create"] == 1
