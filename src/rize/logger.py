"""Diagnostic logging for rize (stderr, structlog).

User-facing status lines go through :mod:`rize.ui`; this logger is for
diagnostics only. It reads ``LOG_LEVEL`` straight from the environment so
it works before Settings is built, and defaults to WARNING so nothing
interleaves with the sandboxed program's terminal output.
"""

from __future__ import annotations

import logging
import os
import sys

import structlog


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.WARNING


def _setup_logging() -> structlog.typing.FilteringBoundLogger:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(_level_from_env()),
        # sys.stderr looked up per logger, not once at import
        logger_factory=lambda *_args: structlog.PrintLogger(sys.stderr),
        cache_logger_on_first_use=False,
    )
    return structlog.get_logger("rize")


logger = _setup_logging()


def bind_invocation(command: str | None) -> None:
    """Tag every later log line of this process with the CLI subcommand."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(command=command or "help")
