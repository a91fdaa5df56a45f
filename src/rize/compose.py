"""Auxiliary service stack: compose file generation and ``docker compose`` calls.

The stack (postgres, redis, playwright, mitmproxy) lives in a single compose
file shared by every project. rize only writes that file and shells out to
``docker compose``; the sandbox engine merely observes the resulting
containers by label.

The subprocess calls run in a thread via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import subprocess
from pathlib import Path
from typing import Any

import yaml

from rize.config import SERVICE_VOLUMES, Config, get_settings
from rize.logger import logger
from rize.sandbox import ComposeError


def generate_compose_file(config: Config) -> dict[str, Any]:
    """Compose document containing the enabled services that have a definition."""
    network = config.network
    services: dict[str, Any] = {}
    for name in config.enabled_services():
        definition = config.definitions.get(name)
        if definition is None:
            logger.warning("Ignoring unknown service", service=name)
            continue
        service = {
            key: value
            for key, value in definition.model_dump(exclude_none=True).items()
            if value not in ([], {})
        }
        service["networks"] = [network.name]
        services[name] = service

    return {
        "services": services,
        "networks": {network.name: {"name": network.name, "driver": network.driver}},
        "volumes": {volume: {} for volume in SERVICE_VOLUMES},
    }


def write_compose_file(data: dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False))


def ensure_compose(config: Config, path: Path | None = None) -> Path:
    """Regenerate the compose file from *config* and return its path."""
    path = path or get_settings().compose_path
    write_compose_file(generate_compose_file(config), path)
    return path


def _run_compose_sync(path: Path, *args: str, quiet: bool) -> subprocess.CompletedProcess[bytes]:
    output = subprocess.DEVNULL if quiet else None
    return subprocess.run(
        ["docker", "compose", "-f", str(path), *args],
        stdout=output,
        stderr=output,
        check=False,
    )


async def run_compose(path: Path, *args: str, quiet: bool = False) -> None:
    """Run ``docker compose -f <path> <args>``; output goes to the terminal unless *quiet*."""
    try:
        result = await asyncio.to_thread(_run_compose_sync, path, *args, quiet=quiet)
    except FileNotFoundError as exc:
        raise ComposeError("docker CLI not found on PATH") from exc
    if result.returncode != 0:
        raise ComposeError(f"docker compose {args[0]} exited with code {result.returncode}")


async def compose_up(config: Config, *, quiet: bool = False, path: Path | None = None) -> None:
    await run_compose(ensure_compose(config, path), "up", "-d", quiet=quiet)


async def compose_down(config: Config, path: Path | None = None) -> None:
    await run_compose(ensure_compose(config, path), "down")


async def compose_ps(config: Config, path: Path | None = None) -> None:
    await run_compose(ensure_compose(config, path), "ps")


async def compose_logs(config: Config, *, follow: bool = False, path: Path | None = None) -> None:
    args = ["logs", "-f"] if follow else ["logs"]
    await run_compose(ensure_compose(config, path), *args)


async def compose_restart(config: Config, path: Path | None = None) -> None:
    await run_compose(ensure_compose(config, path), "restart")


async def auto_start_services(config: Config, path: Path | None = None) -> bool:
    """Bring up enabled services quietly before a run.

    Returns False (after logging) instead of raising when the stack can't be
    started; the sandbox still runs, just without its services.
    """
    if not config.enabled_services():
        return True
    try:
        await compose_up(config, quiet=True, path=path)
    except (ComposeError, OSError) as exc:
        logger.warning("Failed to start services", err=str(exc))
        return False
    return True
