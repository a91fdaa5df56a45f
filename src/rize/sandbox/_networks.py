"""Sibling service discovery and best-effort network attachment.

Compose-managed container names are not predictable, so service containers
are found by their ``com.docker.compose.service`` label instead.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable

import docker
from docker.errors import DockerException
from requests.exceptions import RequestException

from rize.config import Config
from rize.logger import logger

COMPOSE_SERVICE_LABEL = "com.docker.compose.service"

# the SDK passes transport failures (timeouts, refused connections) through unwrapped
_ENGINE_ERRORS = (DockerException, RequestException)


@runtime_checkable
class ServiceLocator(Protocol):
    """Finds running auxiliary-service containers."""

    async def find_running_container(self, service: str) -> str | None: ...
    async def is_running(self, service: str) -> bool: ...


class DockerServiceLocator:
    """Looks up compose service containers through the engine's container list."""

    def __init__(self, client: docker.DockerClient) -> None:
        self._client = client

    async def find_running_container(self, service: str) -> str | None:
        filters = {"status": "running", "label": f"{COMPOSE_SERVICE_LABEL}={service}"}
        try:
            containers = await asyncio.to_thread(self._client.containers.list, filters=filters)
        except _ENGINE_ERRORS as exc:
            logger.warning("Failed to list service containers", service=service, err=str(exc))
            return None
        return containers[0].id if containers else None

    async def is_running(self, service: str) -> bool:
        return await self.find_running_container(service) is not None


class StaticServiceLocator:
    """In-memory locator: ``{service_name: container_id}`` of running services."""

    def __init__(self, running: dict[str, str] | None = None) -> None:
        self.running = dict(running or {})

    async def find_running_container(self, service: str) -> str | None:
        return self.running.get(service)

    async def is_running(self, service: str) -> bool:
        return service in self.running


def _networks_of(container) -> set[str]:
    settings = container.attrs.get("NetworkSettings") or {}
    return set((settings.get("Networks") or {}).keys())


async def container_networks(client: docker.DockerClient, container_id: str) -> set[str]:
    container = await asyncio.to_thread(client.containers.get, container_id)
    return _networks_of(container)


async def attach_to_service_networks(
    client: docker.DockerClient,
    container_id: str,
    config: Config,
    locator: ServiceLocator,
) -> None:
    """Join every network an enabled, running service container is on.

    Never raises: a failed lookup or connect is logged and the remaining
    services and networks are still attempted.
    """
    try:
        attached = await container_networks(client, container_id)
    except _ENGINE_ERRORS as exc:
        logger.warning("Cannot inspect sandbox networks", container=container_id, err=str(exc))
        return

    for service in config.enabled_services():
        service_id = await locator.find_running_container(service)
        if service_id is None:
            continue

        try:
            service_networks = await container_networks(client, service_id)
        except _ENGINE_ERRORS as exc:
            logger.warning("Cannot inspect service container", service=service, err=str(exc))
            continue

        for network_name in sorted(service_networks - attached):
            try:
                network = await asyncio.to_thread(client.networks.get, network_name)
                await asyncio.to_thread(network.connect, container_id)
            except _ENGINE_ERRORS as exc:
                logger.warning(
                    "Failed to connect sandbox to service network",
                    service=service,
                    network=network_name,
                    err=str(exc),
                )
                continue
            attached.add(network_name)
            logger.debug("Connected sandbox to network", service=service, network=network_name)
