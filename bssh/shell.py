"""
Interactive shell forwarder

Shuttles bytes between the local terminal and a login shell running on an
interactive-shell channel. The forwarding loop waits until either the channel
or local stdin is readable and handles whichever fired first. The detach byte
(Ctrl-S by default) on local input stops the loop without closing the
channel, so a later ``run()`` resumes the same remote shell. When the remote
side reaches end of stream the shell is terminated for good.

States::

    SUSPENDED --run()--> FORWARDING --detach--> SUSPENDED
                                    --exit----> TERMINATED (absorbing)
"""

import asyncio
import logging
import os
import signal
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Tuple

import paramiko

from .channels import Channel, ChannelKind
from .errors import LocalIoError, ShellBusyError, ShellTerminatedError
from .terminal import TerminalMode, terminal_size
from .utils import run_blocking

logger = logging.getLogger(__name__)

DETACH_BYTE = 0x13
REMOTE_READ_SIZE = 4096
LOCAL_READ_SIZE = 1024

_REMOTE = "remote"
_LOCAL = "local"


class ShellState(str, Enum):
    SUSPENDED = "suspended"
    FORWARDING = "forwarding"
    TERMINATED = "terminated"


class _ReadHalf:
    def __init__(self, channel: Channel):
        self._channel = channel
        self.released = False

    def fileno(self) -> int:
        return self._channel.fileno()

    def read(self, size: int) -> bytes:
        if self.released:
            raise RuntimeError("read half used after the stream was reassembled")
        return self._channel.read(size)


class _WriteHalf:
    def __init__(self, channel: Channel):
        self._channel = channel
        self.released = False

    def write(self, data: bytes) -> None:
        if self.released:
            raise RuntimeError("write half used after the stream was reassembled")
        self._channel.write(data)


class ShellStream:
    """Duplex shell channel that lends out its read and write halves.

    ``halves()`` hands out a (reader, writer) pair for the duration of one
    forwarding loop and reassembles the stream when the block exits. Only one
    pair may be out at a time.
    """

    def __init__(self, channel: Channel):
        self.channel = channel
        self._lent = False

    @property
    def lent(self) -> bool:
        return self._lent

    @contextmanager
    def halves(self) -> Iterator[Tuple[_ReadHalf, _WriteHalf]]:
        if self._lent:
            raise ShellBusyError("a forwarding loop is already running on this shell")
        reader, writer = _ReadHalf(self.channel), _WriteHalf(self.channel)
        self._lent = True
        try:
            yield reader, writer
        finally:
            reader.released = True
            writer.released = True
            self._lent = False


@dataclass
class ShellForwardState:
    """A shell channel reused across detach/resume cycles"""

    channel: Channel
    active: bool = True
    state: ShellState = ShellState.SUSPENDED
    stream: ShellStream = field(init=False)

    def __post_init__(self):
        if self.channel.kind != ChannelKind.INTERACTIVE_SHELL:
            raise ValueError(f"{self.channel!r} is not an interactive shell channel")
        self.stream = ShellStream(self.channel)


class ShellForwarder:
    """Runs forwarding loops against one ShellForwardState"""

    def __init__(
        self,
        forward_state: ShellForwardState,
        stdin_fd: Optional[int] = None,
        stdout_fd: Optional[int] = None,
        detach_byte: int = DETACH_BYTE,
        alternate_screen: bool = False,
    ):
        self.forward_state = forward_state
        self.stdin_fd = sys.stdin.fileno() if stdin_fd is None else stdin_fd
        self.stdout_fd = sys.stdout.fileno() if stdout_fd is None else stdout_fd
        self.detach_byte = detach_byte
        self.alternate_screen = alternate_screen
        self._pty_size: Optional[Tuple[int, int]] = None

    @classmethod
    async def open(cls, session, initial_directory: Optional[str] = None, **kwargs) -> "ShellForwarder":
        """Open an interactive-shell channel on ``session`` and wrap it"""
        size = terminal_size()
        channel = await session.open_channel(
            ChannelKind.INTERACTIVE_SHELL,
            initial_directory=initial_directory,
            size=size,
        )
        forwarder = cls(ShellForwardState(channel), **kwargs)
        forwarder._pty_size = size
        return forwarder

    @property
    def state(self) -> ShellState:
        return self.forward_state.state

    @property
    def active(self) -> bool:
        return self.forward_state.active

    async def run(self) -> bool:
        """Forward until detach or remote exit.

        Returns True when the user detached (shell still running) and False
        when the remote shell ended. Raises ShellTerminatedError if the shell
        has already ended and ShellBusyError if another loop is running.
        """
        forward = self.forward_state
        if forward.state == ShellState.TERMINATED:
            raise ShellTerminatedError()

        detached: Optional[bool] = None
        with forward.stream.halves() as (reader, writer):
            forward.state = ShellState.FORWARDING
            logger.info(f"Forwarding shell on {forward.channel!r}")
            try:
                with TerminalMode(
                    self.stdin_fd,
                    self.stdout_fd,
                    raw=True,
                    alternate_screen=self.alternate_screen,
                ):
                    self._sync_pty_size()
                    with self._resize_on_sigwinch():
                        detached = await self._forward(reader, writer)
            finally:
                if detached is False or forward.channel.closed:
                    self._terminate()
                else:
                    forward.state = ShellState.SUSPENDED

        if detached:
            logger.info("Shell detached")
        return bool(detached)

    async def close(self) -> None:
        """Close the shell channel; the forwarder becomes terminated"""
        if self.forward_state.stream.lent:
            raise ShellBusyError("cannot close a shell while it is forwarding")
        if self.forward_state.state != ShellState.TERMINATED:
            await run_blocking(self.forward_state.channel.close)
            self._terminate()

    def _terminate(self) -> None:
        forward = self.forward_state
        forward.active = False
        forward.state = ShellState.TERMINATED
        if not forward.channel.closed:
            forward.channel.close()
        logger.info("Shell terminated")

    async def _wait_readable(self, remote_fd: int, watch_stdin: bool) -> str:
        loop = asyncio.get_running_loop()
        ready = loop.create_future()

        def mark(source: str) -> None:
            if not ready.done():
                ready.set_result(source)

        loop.add_reader(remote_fd, mark, _REMOTE)
        if watch_stdin:
            loop.add_reader(self.stdin_fd, mark, _LOCAL)
        try:
            return await ready
        finally:
            loop.remove_reader(remote_fd)
            if watch_stdin:
                loop.remove_reader(self.stdin_fd)

    async def _forward(self, reader: _ReadHalf, writer: _WriteHalf) -> bool:
        detach = bytes([self.detach_byte])
        remote_fd = reader.fileno()
        stdin_open = True

        while True:
            source = await self._wait_readable(remote_fd, stdin_open)

            if source == _REMOTE:
                try:
                    data = reader.read(REMOTE_READ_SIZE)
                except (OSError, EOFError, paramiko.SSHException) as e:
                    logger.info(f"Shell read failed: {e}")
                    return False
                if not data:
                    return False
                self._write_local(data)
                continue

            try:
                data = os.read(self.stdin_fd, LOCAL_READ_SIZE)
            except (BlockingIOError, InterruptedError):
                continue
            if not data:
                # stdin closed; keep showing remote output
                stdin_open = False
                continue

            index = data.find(detach)
            if index >= 0:
                if index and not await self._send(writer, data[:index]):
                    return False
                return True
            if not await self._send(writer, data):
                return False

    async def _send(self, writer: _WriteHalf, data: bytes) -> bool:
        try:
            await run_blocking(writer.write, data)
        except (OSError, EOFError, paramiko.SSHException) as e:
            logger.info(f"Shell write failed: {e}")
            return False
        return True

    def _write_local(self, data: bytes) -> None:
        view = memoryview(data)
        try:
            while view:
                written = os.write(self.stdout_fd, view)
                view = view[written:]
        except OSError as e:
            raise LocalIoError("write", "stdout", e.strerror or str(e)) from e

    def _sync_pty_size(self) -> None:
        if not os.isatty(self.stdout_fd):
            return
        size = terminal_size()
        if size == self._pty_size:
            return
        try:
            self.forward_state.channel.resize(*size)
            self._pty_size = size
        except (OSError, paramiko.SSHException) as e:
            logger.warning(f"Failed to resize remote pty: {e}")

    @contextmanager
    def _resize_on_sigwinch(self) -> Iterator[None]:
        if not os.isatty(self.stdout_fd):
            yield
            return
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGWINCH, self._sync_pty_size)
        except (RuntimeError, ValueError, NotImplementedError) as e:
            logger.debug(f"Terminal resize tracking unavailable: {e}")
            yield
            return
        try:
            yield
        finally:
            loop.remove_signal_handler(signal.SIGWINCH)
