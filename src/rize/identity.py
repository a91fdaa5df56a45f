"""Project identity: deterministic names derived from a project's path.

The same absolute path always maps to the same container name and the same
per-project state directory, so every invocation can re-find what a previous
one created without keeping any local bookkeeping.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass

CONTAINER_PREFIX = "rize"

_UNSAFE_CHARS = re.compile(r"[^a-z0-9\-_.]")


@dataclass(frozen=True)
class ProjectIdentity:
    absolute_path: str
    safe_name: str
    short_hash: str

    @property
    def slug(self) -> str:
        """Directory name used under ``~/.rize/projects``."""
        return f"{self.safe_name}-{self.short_hash}"

    @property
    def container_name(self) -> str:
        return f"{CONTAINER_PREFIX}-{self.slug}"


def sanitize_name(name: str) -> str:
    """Lower-case *name* and replace anything outside ``[a-z0-9-_.]`` with ``-``.

    Leading and trailing dashes are trimmed; an empty result becomes
    ``"project"``.
    """
    safe = _UNSAFE_CHARS.sub("-", name.lower()).strip("-")
    return safe or "project"


def short_hash(value: str) -> str:
    return hashlib.sha1(value.encode()).hexdigest()[:6]


def _absolute(path: str) -> str:
    try:
        return os.path.abspath(path)
    except OSError:
        # cwd vanished; hash the raw string rather than abort
        return path


def resolve(path: str | os.PathLike[str]) -> ProjectIdentity:
    """Derive the identity of the project rooted at *path*. Never raises."""
    abs_path = _absolute(os.fspath(path))
    basename = os.path.basename(abs_path.rstrip(os.sep)) or abs_path
    return ProjectIdentity(
        absolute_path=abs_path,
        safe_name=sanitize_name(basename),
        short_hash=short_hash(abs_path),
    )


def container_name(path: str | os.PathLike[str]) -> str:
    return resolve(path).container_name
