"""
Channel protocol multiplexer

Every channel rides a plain SSH session channel; what makes it a file-transfer,
one-shot exec or interactive shell channel is the setup sequence run right
after it is opened. The sequences live in the per-kind setup functions below.
A failure at any step closes the half-built channel and raises one
``ChannelSetupError`` naming the step.
"""

import logging
import shlex
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import paramiko

from .errors import (
    ChannelSetupError,
    CommandFailedError,
    RemoteOperationError,
    Reason,
)
from .models.command import CommandResult
from .terminal import terminal_size
from .utils import run_blocking

logger = logging.getLogger(__name__)

READ_SIZE = 32768


class ChannelKind(str, Enum):
    FILE_TRANSFER = "file-transfer"
    ONE_SHOT_EXEC = "one-shot exec"
    INTERACTIVE_SHELL = "interactive shell"


class SetupStep(str, Enum):
    OPEN = "open session channel"
    PTY = "request pty"
    SUBSYSTEM = "negotiate sftp subsystem"
    SFTP_INIT = "initialize sftp session"
    EXEC = "request exec"


class Channel:
    """A session channel tagged with the kind of setup it went through"""

    def __init__(
        self,
        kind: ChannelKind,
        raw: paramiko.Channel,
        session,
        command: Optional[str] = None,
        sftp: Optional[paramiko.SFTPClient] = None,
    ):
        self.kind = kind
        self.raw = raw
        self.session = session
        self.command = command
        self.sftp = sftp

    def __repr__(self) -> str:
        return f"<Channel {self.kind.value} #{self.raw.get_id()}>"

    @property
    def closed(self) -> bool:
        return self.raw.closed

    def fileno(self) -> int:
        return self.raw.fileno()

    def read(self, size: int = READ_SIZE) -> bytes:
        data = self.raw.recv(size)
        self.session.touch()
        return data

    def write(self, data: bytes) -> None:
        self.raw.sendall(data)
        self.session.touch()

    def exit_status(self) -> Optional[int]:
        """Blocks until the exit status arrives; None if the server sent none"""
        status = self.raw.recv_exit_status()
        return None if status == -1 else status

    def resize(self, columns: int, rows: int) -> None:
        self.raw.resize_pty(width=columns, height=rows)

    def close(self) -> None:
        if self.sftp is not None:
            self.sftp.close()
        self.raw.close()


def shell_command(initial_directory: Optional[str]) -> str:
    """Login shell started in ``initial_directory``"""
    if not initial_directory:
        return "exec $SHELL -l"
    return f"cd {shlex.quote(initial_directory)} && exec $SHELL -l"


async def _setup_step(
    session,
    kind: ChannelKind,
    step: SetupStep,
    func: Callable[..., Any],
    *args,
    **kwargs,
) -> Any:
    try:
        return await run_blocking(func, *args, **kwargs)
    except (paramiko.SSHException, OSError, EOFError) as e:
        session.check_failure(e, f"{kind.value} channel: {step.value}")
        logger.error(f"{kind.value} channel setup failed at '{step.value}': {e}")
        detail = str(e) or type(e).__name__
        raise ChannelSetupError(kind.value, step.value, detail) from e


async def _request_pty(
    session,
    kind: ChannelKind,
    raw: paramiko.Channel,
    term: str,
    size: Optional[Tuple[int, int]],
) -> None:
    columns, rows = size or terminal_size()
    await _setup_step(
        session,
        kind,
        SetupStep.PTY,
        raw.get_pty,
        term=term,
        width=columns,
        height=rows,
    )


async def _setup_file_transfer(session, raw: paramiko.Channel, **options) -> Channel:
    kind = ChannelKind.FILE_TRANSFER
    await _setup_step(session, kind, SetupStep.SUBSYSTEM, raw.invoke_subsystem, "sftp")
    sftp = await _setup_step(
        session, kind, SetupStep.SFTP_INIT, paramiko.SFTPClient, raw
    )
    return Channel(kind, raw, session, sftp=sftp)


async def _setup_one_shot_exec(
    session,
    raw: paramiko.Channel,
    command: Optional[str] = None,
    term: Optional[str] = None,
    size: Optional[Tuple[int, int]] = None,
    **options,
) -> Channel:
    kind = ChannelKind.ONE_SHOT_EXEC
    if not command:
        raise ValueError("one-shot exec channel requires a command")
    await _request_pty(session, kind, raw, term or session.config.term, size)
    await _setup_step(session, kind, SetupStep.EXEC, raw.exec_command, command)
    return Channel(kind, raw, session, command=command)


async def _setup_interactive_shell(
    session,
    raw: paramiko.Channel,
    initial_directory: Optional[str] = None,
    term: Optional[str] = None,
    size: Optional[Tuple[int, int]] = None,
    **options,
) -> Channel:
    kind = ChannelKind.INTERACTIVE_SHELL
    command = shell_command(initial_directory)
    await _request_pty(session, kind, raw, term or session.config.term, size)
    await _setup_step(session, kind, SetupStep.EXEC, raw.exec_command, command)
    return Channel(kind, raw, session, command=command)


_SETUP: Dict[ChannelKind, Callable[..., Awaitable[Channel]]] = {
    ChannelKind.FILE_TRANSFER: _setup_file_transfer,
    ChannelKind.ONE_SHOT_EXEC: _setup_one_shot_exec,
    ChannelKind.INTERACTIVE_SHELL: _setup_interactive_shell,
}


async def open_channel(session, kind: ChannelKind, **options) -> Channel:
    """Open a session channel and run the setup sequence for ``kind``.

    Options: ``command`` (one-shot exec), ``initial_directory`` (shell),
    ``term`` and ``size`` as ``(columns, rows)`` for the PTY kinds.
    """
    kind = ChannelKind(kind)
    setup = _SETUP[kind]
    transport = session.ensure_usable()

    raw = await _setup_step(
        session,
        kind,
        SetupStep.OPEN,
        transport.open_session,
        timeout=session.config.connect_timeout,
    )
    try:
        channel = await setup(session, raw, **options)
    except BaseException:
        raw.close()
        raise

    session.touch()
    logger.info(
        f"Opened {kind.value} channel #{raw.get_id()} "
        f"on {session.params.display_name()}"
    )
    return channel


async def exec_one_shot(
    session,
    command: str,
    check: bool = True,
    **options,
) -> CommandResult:
    """Run ``command`` on a fresh PTY channel and collect its output.

    Raises CommandFailedError for a non-zero exit status when ``check`` is set,
    and TransportError when the connection dropped before the command finished.
    """
    start = time.monotonic()
    channel = await open_channel(
        session, ChannelKind.ONE_SHOT_EXEC, command=command, **options
    )
    chunks = []
    try:
        while True:
            try:
                data = await run_blocking(channel.read, READ_SIZE)
            except (paramiko.SSHException, OSError, EOFError) as e:
                session.check_failure(e, f"exec {command!r}")
                raise RemoteOperationError(
                    "exec", reason=Reason.FAILURE, detail=str(e)
                ) from e
            if not data:
                break
            chunks.append(data)
        # end of stream is also what a dropped connection looks like
        session.ensure_usable()
        exit_code = await run_blocking(channel.exit_status)
        if exit_code is None:
            session.ensure_usable()
    finally:
        await run_blocking(channel.close)

    output = b"".join(chunks).decode("utf-8", errors="replace")
    result = CommandResult(
        command=command,
        output=output,
        exit_code=exit_code,
        execution_time=time.monotonic() - start,
    )
    logger.info(f"Command {command!r} finished with exit code {exit_code}")
    if check and exit_code not in (None, 0):
        raise CommandFailedError(command, output, exit_code)
    return result
