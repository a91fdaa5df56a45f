"""Error taxonomy for the sandbox engine.

``SandboxError`` means rize failed to orchestrate the container.
``CommandFailedError`` means orchestration worked and the user's command
exited non-zero; it deliberately does not inherit from ``SandboxError`` so
callers can tell the two apart.
"""

from __future__ import annotations


class SandboxError(Exception):
    """The container engine refused or failed an orchestration step."""


class ComposeError(SandboxError):
    """A ``docker compose`` invocation exited non-zero."""


class CommandFailedError(Exception):
    """The command run inside the sandbox exited with a non-zero code."""

    def __init__(self, exit_code: int) -> None:
        super().__init__(f"command exited with code {exit_code}")
        self.exit_code = exit_code
