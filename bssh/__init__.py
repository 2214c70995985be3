"""
bssh - remote file manager over SSH

Connects to a host over SSH, browses and transfers files through the SFTP
subsystem, runs one-shot commands and forwards an interactive shell that can
be detached and resumed on the same connection.
"""

from .errors import (
    BsshError,
    TransportError,
    AuthError,
    ChannelSetupError,
    RemoteOperationError,
    CommandFailedError,
    LocalIoError,
    ShellTerminatedError,
    ShellBusyError,
)
from .models import ConnectionParams, FileEntry, CommandResult, TransferDirection
from .transport import TransportSession
from .channels import ChannelKind
from .session import RemoteSession
from .shell import ShellForwarder, ShellForwardState, ShellState

__version__ = "0.1.0"
__all__ = [
    "BsshError",
    "TransportError",
    "AuthError",
    "ChannelSetupError",
    "RemoteOperationError",
    "CommandFailedError",
    "LocalIoError",
    "ShellTerminatedError",
    "ShellBusyError",
    "ConnectionParams",
    "FileEntry",
    "CommandResult",
    "TransferDirection",
    "TransportSession",
    "ChannelKind",
    "RemoteSession",
    "ShellForwarder",
    "ShellForwardState",
    "ShellState",
]
