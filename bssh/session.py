"""
Remote session

The interface the browser and editor front-ends use: one authenticated
transport, the single file-transfer channel opened right after
authentication, and at most one live interactive shell.
"""

import logging
from typing import List, Optional

from .channels import ChannelKind, exec_one_shot
from .config import AppConfig
from .models.command import CommandResult
from .models.connection import ConnectionParams
from .models.file import FileEntry, TransferDirection, TransferResult
from .sftp import RemoteFile, SFTPChannel
from .shell import ShellForwarder
from .transport import TransportSession
from . import file_ops


class RemoteSession:
    """Connected session used by the front-end"""

    def __init__(self, transport: TransportSession, files: SFTPChannel):
        self.transport = transport
        self.files = files
        self.shell: Optional[ShellForwarder] = None
        self.logger = logging.getLogger(__name__)

    @classmethod
    async def connect(
        cls,
        params: ConnectionParams,
        config: Optional[AppConfig] = None,
        passphrase: Optional[str] = None,
    ) -> "RemoteSession":
        """Connect, authenticate and open the file-transfer channel"""
        transport = await TransportSession.connect(params, config, passphrase)
        try:
            channel = await transport.open_channel(ChannelKind.FILE_TRANSFER)
        except BaseException:
            await transport.close()
            raise
        return cls(transport, SFTPChannel(channel))

    @property
    def params(self) -> ConnectionParams:
        return self.transport.params

    @property
    def config(self) -> AppConfig:
        return self.transport.config

    async def list(self, path: str) -> List[FileEntry]:
        return await file_ops.list_directory(self.files, path)

    async def open(self, path: str) -> RemoteFile:
        """Remote file opened for reading"""
        return await self.files.open(path, "rb")

    async def create(self, path: str) -> RemoteFile:
        """Remote file created or truncated for writing"""
        return await self.files.open(path, "wb")

    async def read_text(self, path: str) -> str:
        return await file_ops.read_text(self.files, path)

    async def write_text(self, path: str, text: str) -> None:
        await file_ops.write_text(self.files, path, text)

    async def transfer(
        self, local_path: str, remote_path: str, direction: TransferDirection
    ) -> TransferResult:
        chunk_size = self.config.chunk_size
        if TransferDirection(direction) == TransferDirection.DOWNLOAD:
            return await file_ops.download(self.files, remote_path, local_path, chunk_size)
        return await file_ops.upload(self.files, local_path, remote_path, chunk_size)

    async def delete_file(self, path: str) -> None:
        await file_ops.delete_file(self.files, path)

    async def delete_directory(self, path: str) -> None:
        await file_ops.delete_directory(self.files, path)

    async def create_directory(self, path: str) -> None:
        await file_ops.create_directory(self.files, path)

    async def rename(self, old_path: str, new_path: str) -> None:
        await file_ops.rename(self.files, old_path, new_path)

    async def exec_one_shot(self, command: str, check: bool = True) -> CommandResult:
        return await exec_one_shot(self.transport, command, check=check)

    async def open_shell(self, initial_directory: Optional[str] = None, **kwargs) -> ShellForwarder:
        """The live shell if there is one, otherwise a new shell in ``initial_directory``"""
        if self.shell is not None and self.shell.active:
            return self.shell
        kwargs.setdefault("detach_byte", self.config.detach_byte)
        kwargs.setdefault("alternate_screen", self.config.alternate_screen)
        self.shell = await ShellForwarder.open(self.transport, initial_directory, **kwargs)
        return self.shell

    async def close(self) -> None:
        """Close the shell, the file-transfer channel and the connection"""
        try:
            if self.shell is not None and self.shell.active:
                await self.shell.close()
            if not self.files.closed:
                await self.files.close()
        except Exception as e:
            self.logger.error(f"Error closing channels on {self.params.display_name()}: {e}")
        finally:
            await self.transport.close()

    async def __aenter__(self) -> "RemoteSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
