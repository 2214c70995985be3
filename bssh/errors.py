"""
Error taxonomy

Every failure the engine expects to meet (unreachable host, rejected key,
refused channel request, missing remote file, unwritable local path) is raised
as one of the types below. ``str(error)`` is the short status line shown to
the user.
"""

import errno
from enum import Enum
from typing import Optional


class BsshError(Exception):
    """Base class for all bssh errors"""


class TransportError(BsshError):
    """Handshake or network failure; the session must be discarded"""


class AuthError(BsshError):
    """The identity could not be loaded or was rejected by the server"""


class ChannelSetupError(BsshError):
    """A channel setup step failed; no partial channel is returned"""

    def __init__(self, kind: str, step: str, detail: str = ""):
        self.kind = kind
        self.step = step
        self.detail = detail
        message = f"{kind} channel setup failed at '{step}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class Reason(str, Enum):
    NOT_FOUND = "not found"
    PERMISSION_DENIED = "permission denied"
    NOT_EMPTY = "directory not empty"
    ALREADY_EXISTS = "already exists"
    FAILURE = "failure"


_ERRNO_REASONS = {
    errno.ENOENT: Reason.NOT_FOUND,
    errno.EACCES: Reason.PERMISSION_DENIED,
    errno.EPERM: Reason.PERMISSION_DENIED,
    errno.ENOTEMPTY: Reason.NOT_EMPTY,
    errno.EEXIST: Reason.ALREADY_EXISTS,
}


def reason_from_exception(exc: BaseException, fallback: Reason = Reason.FAILURE) -> Reason:
    """Classify an OSError/IOError raised by paramiko or the local filesystem"""
    code = getattr(exc, "errno", None)
    if code in _ERRNO_REASONS:
        return _ERRNO_REASONS[code]
    return fallback


class RemoteOperationError(BsshError):
    """A single remote file or exec operation failed; the channel stays usable"""

    def __init__(
        self,
        operation: str,
        path: str = "",
        reason: Reason = Reason.FAILURE,
        detail: str = "",
    ):
        self.operation = operation
        self.path = path
        self.reason = reason
        self.detail = detail
        message = f"{operation} failed"
        if path:
            message += f" for {path}"
        message += f": {reason.value}"
        if detail and detail != reason.value:
            message += f" ({detail})"
        super().__init__(message)


class CommandFailedError(RemoteOperationError):
    """A one-shot command exited with a non-zero status"""

    def __init__(self, command: str, output: str, exit_code: int):
        self.command = command
        self.output = output
        self.exit_code = exit_code
        super().__init__("exec", reason=Reason.FAILURE, detail=f"exit code {exit_code}")
        self.args = (f"Command exited with code {exit_code}: {output.strip()}",)


class LocalIoError(BsshError):
    """Local filesystem access failed during a transfer"""

    def __init__(self, operation: str, path: str, detail: str = ""):
        self.operation = operation
        self.path = path
        self.detail = detail
        message = f"local {operation} failed for {path}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class ShellTerminatedError(BsshError):
    """The remote shell has exited and cannot be resumed"""

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or "shell has exited; open a new shell")


class ShellBusyError(BsshError):
    """A forwarding loop is already running against this shell"""


class TerminalBusyError(BsshError):
    """The local terminal's raw mode is already held by another owner"""
