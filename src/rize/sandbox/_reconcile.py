"""Idempotent reconciliation of the per-project sandbox container.

State machine over one named container:

  absent   -> create (adopting a concurrent winner on a name conflict), start
  running  -> reuse untouched
  stopped  -> start in place, keeping whatever state accumulated inside it

A running container keeps the environment it was created with even if the
configuration changed since; recreate it by removing it with ``docker rm -f``.
"""

from __future__ import annotations

import asyncio

import docker
from docker.errors import APIError, NotFound

from rize.logger import logger
from rize.sandbox._errors import SandboxError
from rize.types import ContainerHandle, ResolvedContainerSpec


def _to_handle(container) -> ContainerHandle:
    state = container.attrs.get("State") or {}
    return ContainerHandle(
        id=container.id,
        name=container.name,
        running=bool(state.get("Running", False)),
    )


async def inspect_container(client: docker.DockerClient, ref: str) -> ContainerHandle | None:
    """Current engine view of *ref* (name or ID), or None if it doesn't exist."""
    try:
        container = await asyncio.to_thread(client.containers.get, ref)
    except NotFound:
        return None
    except APIError as exc:
        raise SandboxError(f"failed to inspect container {ref}: {exc}") from exc
    return _to_handle(container)


async def _create(client: docker.DockerClient, spec: ResolvedContainerSpec) -> str:
    try:
        container = await asyncio.to_thread(client.containers.create, **spec.create_kwargs())
    except APIError as exc:
        if exc.status_code != 409:
            raise SandboxError(f"failed to create container {spec.name}: {exc}") from exc
        # Lost a race with a concurrent invocation for the same project
        winner = await inspect_container(client, spec.name)
        if winner is None:
            raise SandboxError(f"failed to create container {spec.name}: {exc}") from exc
        logger.info("Adopted concurrently created container", container=spec.name)
        return winner.id

    logger.info("Created sandbox container", container=spec.name, image=spec.image)
    return container.id


async def _start(client: docker.DockerClient, container_id: str) -> None:
    try:
        await asyncio.to_thread(client.api.start, container_id)
    except APIError as exc:
        raise SandboxError(f"failed to start container {container_id}: {exc}") from exc


async def start_if_needed(client: docker.DockerClient, container_id: str) -> ContainerHandle:
    handle = await inspect_container(client, container_id)
    if handle is None:
        raise SandboxError(f"container {container_id} disappeared before it could be started")
    if handle.running:
        return handle
    await _start(client, handle.id)
    return ContainerHandle(id=handle.id, name=handle.name, running=True)


async def ensure_container(
    client: docker.DockerClient, spec: ResolvedContainerSpec
) -> ContainerHandle:
    """Return a running container for *spec*, creating or starting it as needed."""
    handle = await inspect_container(client, spec.name)

    if handle is None:
        container_id = await _create(client, spec)
        return await start_if_needed(client, container_id)

    if handle.running:
        logger.debug("Reusing running sandbox container", container=spec.name)
        return handle

    logger.info("Starting stopped sandbox container", container=spec.name)
    await _start(client, handle.id)
    return ContainerHandle(id=handle.id, name=handle.name, running=True)
