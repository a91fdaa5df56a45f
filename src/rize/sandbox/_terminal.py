"""Local terminal handling for interactive exec sessions."""

from __future__ import annotations

import os
import shutil
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

from rize.logger import logger


def _fileno(stream: IO) -> int | None:
    try:
        return stream.fileno()
    except (AttributeError, OSError, ValueError):
        return None


def is_terminal(stream: IO) -> bool:
    fd = _fileno(stream)
    return fd is not None and os.isatty(fd)


@contextmanager
def raw_terminal(stream: IO) -> Iterator[bool]:
    """Put *stream*'s terminal in raw mode for the duration of the block.

    Yields True if raw mode was entered. The saved attributes are restored on
    every exit path; a failed restore is logged, never raised. Non-terminals
    and platforms without termios are left alone.
    """
    fd = _fileno(stream)
    if fd is None or sys.platform == "win32" or not os.isatty(fd):
        yield False
        return

    import termios
    import tty

    try:
        saved = termios.tcgetattr(fd)
        tty.setraw(fd)
    except termios.error as exc:
        logger.warning("Could not switch terminal to raw mode", err=str(exc))
        yield False
        return

    try:
        yield True
    finally:
        try:
            termios.tcsetattr(fd, termios.TCSADRAIN, saved)
        except termios.error as exc:
            logger.warning("Failed to restore terminal state", err=str(exc))


def terminal_size(stream: IO) -> tuple[int, int]:
    """Return ``(rows, columns)`` of the terminal behind *stream*."""
    fd = _fileno(stream)
    if fd is not None:
        try:
            size = os.get_terminal_size(fd)
            return size.lines, size.columns
        except OSError:
            pass
    size = shutil.get_terminal_size()
    return size.lines, size.columns
