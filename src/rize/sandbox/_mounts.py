"""Mount list construction for the sandbox container.

Host directories the sandbox needs are created on demand. Any filesystem
failure only drops the affected mount: losing shell history or a dotfile is
preferable to refusing to start.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Mapping
from pathlib import Path

from rize.config import project_state_dir
from rize.logger import logger
from rize.sandbox._environment import CLAUDE_CONFIG_DIR, CONTAINER_HOME
from rize.types import MountEntry

AGENTS_VOLUME = "rize-agents"
DOCKER_SOCKET = "/var/run/docker.sock"

CLAUDE_SUBDIRS = ("commands", "agents", "skills")

# host path under $HOME -> (path under the container home, read-only)
OPTIONAL_MOUNTS: dict[str, tuple[str, bool]] = {
    ".config/opencode": (".config/opencode", False),
    ".netrc": (".netrc", True),
    ".gitconfig": (".gitconfig", True),
    ".env": (".env", True),
}


def _ensure_dir(path: Path, mode: int = 0o755) -> bool:
    try:
        path.mkdir(mode=mode, parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning("Skipping mount, cannot create host directory", path=str(path), err=str(exc))
        return False
    return True


def build_mounts(
    cwd: str,
    workspace_dir: str,
    home: Path,
    env: Mapping[str, str],
    *,
    platform: str | None = None,
) -> list[MountEntry]:
    platform = platform or sys.platform
    mounts = [
        MountEntry.bind(cwd, workspace_dir),
        MountEntry.volume(AGENTS_VOLUME, f"{CONTAINER_HOME}/.agents"),
    ]

    ssh_dir = home / ".ssh"
    if _ensure_dir(ssh_dir, mode=0o700):
        mounts.append(MountEntry.bind(str(ssh_dir), f"{CONTAINER_HOME}/.ssh"))

    for sub in CLAUDE_SUBDIRS:
        host_path = home / ".claude" / sub
        if _ensure_dir(host_path):
            mounts.append(MountEntry.bind(str(host_path), f"{CLAUDE_CONFIG_DIR}/{sub}"))

    for host_suffix, (container_suffix, read_only) in OPTIONAL_MOUNTS.items():
        host_path = home / host_suffix
        if host_path.exists():
            mounts.append(
                MountEntry.bind(
                    str(host_path),
                    f"{CONTAINER_HOME}/{container_suffix}",
                    read_only=read_only,
                )
            )

    # Per-project state keeps shell history isolated between projects
    state_dir = project_state_dir(cwd, home)
    if _ensure_dir(state_dir):
        mounts.append(MountEntry.bind(str(state_dir), f"{CONTAINER_HOME}/.local/share/rize"))

    if platform != "win32" and os.path.exists(DOCKER_SOCKET):
        mounts.append(MountEntry.bind(DOCKER_SOCKET, DOCKER_SOCKET))

    ssh_auth_sock = env.get("SSH_AUTH_SOCK", "")
    if ssh_auth_sock:
        mounts.append(MountEntry.bind(ssh_auth_sock, ssh_auth_sock))

    return mounts
