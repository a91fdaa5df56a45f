"""Command handlers behind the CLI.

Every run command follows the same path: load the merged config for the
current directory, try to bring up enabled services, then hand the command to
the sandbox engine.
"""

from __future__ import annotations

import os
from pathlib import Path

from rize import ui
from rize.compose import (
    auto_start_services,
    compose_down,
    compose_logs,
    compose_ps,
    compose_restart,
    compose_up,
)
from rize.config import (
    default_global_config,
    default_project_config,
    get_settings,
    global_config_path,
    load_config,
    project_config_path,
    save_global,
    save_project,
)
from rize.sandbox import docker_client, pull_image, run_container

SHELL_COMMAND = ["/bin/zsh"]

AGENT_COMMANDS: dict[str, list[str]] = {
    "claude": ["claude", "--dangerously-skip-permissions"],
    "codex": ["codex"],
    "opencode": ["opencode"],
    "gemini": ["gemini"],
}


def build_agent_command(name: str, args: list[str]) -> list[str]:
    return [*AGENT_COMMANDS.get(name, [name]), *args]


async def _run_in_sandbox(command: list[str], message: str) -> None:
    cfg = load_config(Path.cwd())
    if not await auto_start_services(cfg):
        ui.warning("Failed to start services; continuing without them")
    ui.info(message)
    await run_container(cfg, command, interactive=True)


async def shell() -> None:
    await _run_in_sandbox(SHELL_COMMAND, "Starting shell...")


async def agent(name: str, args: list[str]) -> None:
    await _run_in_sandbox(build_agent_command(name, args), f"Running {name}...")


async def exec_command(args: list[str]) -> None:
    if not args:
        raise ValueError("exec requires a command")
    await _run_in_sandbox(list(args), "Running command...")


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


async def services_up() -> None:
    cfg = load_config(Path.cwd())
    enabled = cfg.enabled_services()
    if not enabled:
        ui.info("No services enabled")
        return
    ui.info(f"Starting services: {', '.join(enabled)}")
    await compose_up(cfg)
    ui.success("Services started")


async def services_down() -> None:
    cfg = load_config(Path.cwd())
    ui.info("Stopping services...")
    await compose_down(cfg)
    ui.success("Services stopped")


async def services_ps() -> None:
    await compose_ps(load_config(Path.cwd()))


async def services_logs(follow: bool = False) -> None:
    await compose_logs(load_config(Path.cwd()), follow=follow)


async def services_restart() -> None:
    cfg = load_config(Path.cwd())
    ui.info("Restarting services...")
    await compose_restart(cfg)
    ui.success("Services restarted")


# ---------------------------------------------------------------------------
# Setup / maintenance
# ---------------------------------------------------------------------------


def init(project_path: Path | None = None, home: Path | None = None) -> None:
    """Create the global and per-project config files if they don't exist."""
    project_path = project_path or Path(os.getcwd())

    global_path = global_config_path(home)
    if global_path.exists():
        ui.warning(f"Global config file already exists at {global_path}")
    else:
        ui.info(f"Creating global config file at {global_path}")
        save_global(default_global_config(), home)
        ui.success("Global config file created successfully")

    project_cfg_path = project_config_path(project_path, home)
    if project_cfg_path.exists():
        ui.warning(f"Project config file already exists at {project_cfg_path}")
    else:
        ui.info(f"Creating project config file at {project_cfg_path}")
        save_project(default_project_config(), project_path, home)
        ui.success("Project config file created successfully")

    ui.info("Edit the config files to customize your environment")


async def update() -> None:
    """Pull the latest sandbox image."""
    image = get_settings().image
    ui.info(f"Updating {image}...")
    with docker_client() as client:
        await pull_image(client, image)
    ui.success("Image updated. Remove a project's container (docker rm -f) to pick it up.")
