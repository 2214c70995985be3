from .connection import ConnectionParams, ConnectionStatus, SavedConnection
from .command import CommandResult
from .file import FileEntry, TransferDirection, TransferResult

__all__ = [
    "ConnectionParams",
    "ConnectionStatus",
    "SavedConnection",
    "CommandResult",
    "FileEntry",
    "TransferDirection",
    "TransferResult",
]
