"""Main entry point: run a command in the project's sandbox container.

Each step only runs once the previous one has confirmed its precondition:

    ensure image/network -> compose spec -> ensure container
        -> attach service networks -> exec
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from contextlib import ExitStack
from pathlib import Path

import docker

from rize.config import Config, Settings, get_settings
from rize.logger import logger
from rize.sandbox._docker import docker_client, ensure_image, ensure_network
from rize.sandbox._exec import exec_in_container
from rize.sandbox._networks import DockerServiceLocator, ServiceLocator, attach_to_service_networks
from rize.sandbox._reconcile import ensure_container
from rize.sandbox._spec import compose_container_spec


async def run_container(
    config: Config,
    command: list[str],
    interactive: bool,
    *,
    client: docker.DockerClient | None = None,
    locator: ServiceLocator | None = None,
    cwd: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
    settings: Settings | None = None,
    home: Path | None = None,
    **exec_kwargs,
) -> None:
    """Ensure the sandbox for *cwd* is up and run *command* inside it.

    When *client* is None a client is acquired from the environment for the
    duration of the call and closed afterwards. Extra keyword arguments
    (stdin/stdout/stderr/poll_interval) are passed to the exec channel.

    Raises:
        SandboxError: any orchestration step failed
        CommandFailedError: the command ran and exited non-zero
    """
    settings = settings or get_settings()
    cwd = os.fspath(cwd) if cwd is not None else os.getcwd()
    env = env if env is not None else os.environ
    home = home or settings.home_dir

    with ExitStack() as stack:
        if client is None:
            client = stack.enter_context(docker_client())
        locator = locator or DockerServiceLocator(client)

        await ensure_image(client, settings.image)
        await ensure_network(client, config.network)

        spec = await compose_container_spec(
            config, env, cwd, locator=locator, image=settings.image, home=home
        )
        handle = await ensure_container(client, spec)
        logger.debug("Sandbox container ready", container=handle.name, id=handle.id[:12])

        await attach_to_service_networks(client, handle.id, config, locator)

        await exec_in_container(
            client,
            handle.id,
            spec.working_dir,
            config,
            command,
            interactive,
            locator=locator,
            **exec_kwargs,
        )
