"""Interactive exec channel: run one command inside the running sandbox.

One session is: exec create -> (raw terminal) -> attach -> copy streams while
polling exec status -> translate the exit code. The exec status API is
inspect-based, so completion is detected by polling ``exec_inspect`` at a
fixed interval rather than waiting on an event.

Stream copies:
  output - worker thread reading the attach socket until the remote closes
           it, demultiplexed into stdout/stderr unless a TTY is allocated
           (TTY streams carry a single combined channel)
  input  - event-loop reader on the local stdin fd, interactive sessions only
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import signal
import socket
import sys
import threading
from typing import IO, BinaryIO

import docker
from docker.errors import APIError
from docker.utils.socket import STDERR, frames_iter

from rize.config import Config
from rize.logger import logger
from rize.sandbox._environment import build_exec_environment
from rize.sandbox._errors import CommandFailedError, SandboxError
from rize.sandbox._networks import ServiceLocator
from rize.sandbox._spec import ENTRYPOINT
from rize.sandbox._terminal import is_terminal, raw_terminal, terminal_size
from rize.types import ExecSession

EXEC_POLL_INTERVAL = 0.1  # seconds
OUTPUT_DRAIN_TIMEOUT = 2.0  # seconds to let trailing output arrive after exit
_READ_CHUNK = 4096


def _raw_socket(sock):
    """Underlying socket object of the attach stream (SocketIO wraps it)."""
    return getattr(sock, "_sock", sock)


def _copy_output(sock, tty: bool, stdout: BinaryIO, stderr: BinaryIO) -> None:
    try:
        for stream, data in frames_iter(sock, tty):
            target = stderr if stream == STDERR else stdout
            target.write(data)
            target.flush()
    except (OSError, ValueError) as exc:
        # stream torn down while a read was pending
        logger.debug("Exec output stream closed", err=str(exc))


class _InputCopier:
    """Forward local stdin to the attach socket.

    Uses an event-loop reader where the fd supports it (ttys, pipes); falls
    back to a daemon thread for fds the selector rejects (regular files).
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, stdin: IO, sock) -> None:
        self._loop = loop
        self._fd = stdin.fileno()
        self._sock = _raw_socket(sock)
        self._reader_installed = False
        self._stopped = threading.Event()

    def start(self) -> None:
        try:
            self._loop.add_reader(self._fd, self._on_readable)
            self._reader_installed = True
        except (OSError, ValueError, NotImplementedError):
            threading.Thread(target=self._pump, name="rize-stdin", daemon=True).start()

    def stop(self) -> None:
        self._stopped.set()
        if self._reader_installed:
            self._loop.remove_reader(self._fd)
            self._reader_installed = False

    def _forward(self, data: bytes) -> bool:
        if not data:
            with contextlib.suppress(OSError):
                self._sock.shutdown(socket.SHUT_WR)
            return False
        try:
            self._sock.sendall(data)
        except OSError as exc:
            logger.debug("Exec input stream closed", err=str(exc))
            return False
        return True

    def _on_readable(self) -> None:
        try:
            data = os.read(self._fd, _READ_CHUNK)
        except OSError:
            data = b""
        if not self._forward(data):
            self.stop()

    def _pump(self) -> None:
        while not self._stopped.is_set():
            try:
                data = os.read(self._fd, _READ_CHUNK)
            except OSError:
                data = b""
            if not self._forward(data):
                return


def _close_stream(sock) -> None:
    raw = _raw_socket(sock)
    with contextlib.suppress(OSError):
        raw.shutdown(socket.SHUT_RDWR)
    with contextlib.suppress(OSError):
        sock.close()


async def create_exec(
    client: docker.DockerClient,
    container_id: str,
    workspace_dir: str,
    command: list[str],
    environment: list[str],
    interactive: bool,
) -> ExecSession:
    try:
        resp = await asyncio.to_thread(
            client.api.exec_create,
            container_id,
            [ENTRYPOINT, *command],
            stdout=True,
            stderr=True,
            stdin=interactive,
            tty=interactive,
            environment=environment or None,
            workdir=workspace_dir,
        )
    except APIError as exc:
        raise SandboxError(f"failed to create exec: {exc}") from exc
    return ExecSession(exec_id=resp["Id"], tty=interactive, interactive=interactive)


async def wait_for_exec(
    client: docker.DockerClient,
    exec_id: str,
    poll_interval: float = EXEC_POLL_INTERVAL,
) -> int:
    """Poll until the exec process is no longer running; return its exit code."""
    while True:
        try:
            info = await asyncio.to_thread(client.api.exec_inspect, exec_id)
        except APIError as exc:
            raise SandboxError(f"failed to inspect exec: {exc}") from exc
        if not info.get("Running"):
            return int(info.get("ExitCode") or 0)
        await asyncio.sleep(poll_interval)


async def _resize(client: docker.DockerClient, exec_id: str, stdin: IO) -> None:
    rows, cols = terminal_size(stdin)
    try:
        await asyncio.to_thread(client.api.exec_resize, exec_id, height=rows, width=cols)
    except APIError as exc:
        logger.debug("Exec resize failed", err=str(exc))


def _watch_resize(loop: asyncio.AbstractEventLoop, callback) -> bool:
    sigwinch = getattr(signal, "SIGWINCH", None)
    if sigwinch is None:
        return False
    try:
        loop.add_signal_handler(sigwinch, callback)
    except (NotImplementedError, RuntimeError, ValueError):
        return False
    return True


async def _attach_and_wait(
    client: docker.DockerClient,
    session: ExecSession,
    stdin: IO,
    stdout: BinaryIO,
    stderr: BinaryIO,
    poll_interval: float,
) -> int:
    try:
        sock = await asyncio.to_thread(
            client.api.exec_start, session.exec_id, tty=session.tty, socket=True
        )
    except APIError as exc:
        raise SandboxError(f"failed to attach exec: {exc}") from exc

    loop = asyncio.get_running_loop()
    copier: _InputCopier | None = None
    resize_tasks: set[asyncio.Task] = set()
    watching_resize = False

    def _on_winch() -> None:
        task = loop.create_task(_resize(client, session.exec_id, stdin))
        resize_tasks.add(task)
        task.add_done_callback(resize_tasks.discard)

    output_task = asyncio.ensure_future(
        asyncio.to_thread(_copy_output, sock, session.tty, stdout, stderr)
    )
    try:
        if session.tty and is_terminal(stdin):
            await _resize(client, session.exec_id, stdin)
            watching_resize = _watch_resize(loop, _on_winch)
        if session.interactive:
            copier = _InputCopier(loop, stdin, sock)
            copier.start()

        exit_code = await wait_for_exec(client, session.exec_id, poll_interval)
        await asyncio.wait({output_task}, timeout=OUTPUT_DRAIN_TIMEOUT)
    finally:
        if copier is not None:
            copier.stop()
        if watching_resize:
            loop.remove_signal_handler(signal.SIGWINCH)
        _close_stream(sock)
        await asyncio.wait({output_task}, timeout=OUTPUT_DRAIN_TIMEOUT)

    return exit_code


async def exec_in_container(
    client: docker.DockerClient,
    container_id: str,
    workspace_dir: str,
    config: Config,
    command: list[str],
    interactive: bool,
    *,
    locator: ServiceLocator,
    stdin: IO | None = None,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
    poll_interval: float = EXEC_POLL_INTERVAL,
) -> None:
    """Run *command* in the container, wired to the local terminal.

    Raises:
        SandboxError: exec could not be created, attached or inspected
        CommandFailedError: the command exited non-zero
    """
    stdin = stdin if stdin is not None else sys.stdin
    stdout = stdout if stdout is not None else sys.stdout.buffer
    stderr = stderr if stderr is not None else sys.stderr.buffer

    environment = await build_exec_environment(config, locator)
    session = await create_exec(client, container_id, workspace_dir, command, environment, interactive)

    guard = raw_terminal(stdin) if session.tty else contextlib.nullcontext(False)
    with guard:
        exit_code = await _attach_and_wait(client, session, stdin, stdout, stderr, poll_interval)

    if exit_code != 0:
        raise CommandFailedError(exit_code)
