"""Docker client lifetime plus image and network preconditions.

The client is an explicit object: acquired once per invocation with
:func:`docker_client` and passed to every step. The docker SDK is blocking,
so each call is pushed onto a worker thread with ``asyncio.to_thread`` to
keep the event loop free for the exec stream copies.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TextIO

import docker
from docker.errors import APIError, DockerException, NotFound

from rize.config import NetworkConfig
from rize.logger import logger
from rize.sandbox._errors import SandboxError


@contextmanager
def docker_client() -> Iterator[docker.DockerClient]:
    """Connect to the daemon from the environment and close on exit."""
    try:
        client = docker.from_env()
        client.ping()
    except DockerException as exc:
        raise SandboxError(
            f"Docker is required but not reachable ({exc}). Start Docker and try again."
        ) from exc
    try:
        yield client
    finally:
        client.close()


def _format_progress(event: dict) -> str:
    parts = [str(event[key]) for key in ("id", "status", "progress") if event.get(key)]
    return " ".join(parts)


def _pull_sync(client: docker.DockerClient, image: str, out: TextIO) -> None:
    for event in client.api.pull(image, stream=True, decode=True):
        if "error" in event:
            raise SandboxError(f"failed to pull image {image}: {event['error']}")
        line = _format_progress(event)
        if line:
            out.write(line + "\n")
            out.flush()


async def pull_image(client: docker.DockerClient, image: str, out: TextIO | None = None) -> None:
    """Pull *image*, streaming layer progress to *out* (stdout by default)."""
    logger.info("Pulling image", image=image)
    try:
        await asyncio.to_thread(_pull_sync, client, image, out or sys.stdout)
    except APIError as exc:
        raise SandboxError(f"failed to pull image {image}: {exc}") from exc
    logger.info("Image pulled", image=image)


async def ensure_image(client: docker.DockerClient, image: str, out: TextIO | None = None) -> None:
    """Pull *image* if it is not already present locally."""
    try:
        await asyncio.to_thread(client.images.get, image)
        return
    except NotFound:
        pass
    except APIError as exc:
        raise SandboxError(f"failed to inspect image {image}: {exc}") from exc
    await pull_image(client, image, out)


async def ensure_network(client: docker.DockerClient, network: NetworkConfig) -> None:
    """Create the shared network if it doesn't already exist."""
    if not network.name:
        return

    try:
        await asyncio.to_thread(client.networks.get, network.name)
        return
    except NotFound:
        pass
    except APIError as exc:
        raise SandboxError(f"failed to inspect network {network.name}: {exc}") from exc

    try:
        await asyncio.to_thread(client.networks.create, network.name, driver=network.driver)
    except APIError as exc:
        if exc.status_code == 409:
            # another invocation created it first
            return
        raise SandboxError(f"failed to create network {network.name}: {exc}") from exc
    logger.info("Created Docker network", network=network.name, driver=network.driver)
