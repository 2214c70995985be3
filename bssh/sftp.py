"""
Async adapter for the file-transfer channel

paramiko's ``SFTPClient`` is blocking and not safe to drive from several
threads at once, so every call on one channel goes through a single
``asyncio.Lock`` and runs on the default executor. Metadata for many paths is
fetched with pipelined STAT requests: a bounded window of requests stays in
flight, and responses are matched back to their request number.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Tuple, Union

import paramiko
from paramiko.sftp import CMD_ATTRS, CMD_STAT, CMD_STATUS

from .channels import Channel, ChannelKind
from .errors import RemoteOperationError, Reason, reason_from_exception
from .utils import run_blocking

logger = logging.getLogger(__name__)

StatResult = Union[paramiko.SFTPAttributes, RemoteOperationError]

MAX_OUTSTANDING_STATS = 128


class _ResponseCollector:
    """Receives pipelined responses keyed by request number"""

    def __init__(self):
        self.responses: Dict[int, Tuple[int, paramiko.Message]] = {}

    def _async_response(self, t: int, msg: paramiko.Message, num: int) -> None:
        self.responses[num] = (t, msg)


def _decode_stat(
    sftp: paramiko.SFTPClient,
    path: str,
    t: int,
    msg: paramiko.Message,
) -> StatResult:
    if t == CMD_ATTRS:
        return paramiko.SFTPAttributes._from_msg(msg)
    if t == CMD_STATUS:
        try:
            sftp._convert_status(msg)
        except (OSError, EOFError) as e:
            return RemoteOperationError("stat", path, reason_from_exception(e), str(e))
    return RemoteOperationError(
        "stat", path, Reason.FAILURE, f"unexpected response type {t}"
    )


def stat_pipelined(
    sftp: paramiko.SFTPClient,
    paths: List[str],
    window: int = MAX_OUTSTANDING_STATS,
) -> List[StatResult]:
    """STAT every path with up to ``window`` requests in flight.

    Results are in the order of ``paths``. Responses are read as soon as the
    window is full so the server never stalls on an unread channel.
    """
    collector = _ResponseCollector()
    requests = []
    for path in paths:
        while len(requests) - len(collector.responses) >= window:
            sftp._read_response()
        num = sftp._async_request(collector, CMD_STAT, sftp._adjust_cwd(path))
        requests.append(num)
    while len(collector.responses) < len(requests):
        sftp._read_response()
    return [
        _decode_stat(sftp, path, *collector.responses[num])
        for path, num in zip(paths, requests)
    ]


class RemoteFile:
    """Open remote file; each call is serialized on the owning channel"""

    def __init__(self, channel: "SFTPChannel", handle: paramiko.SFTPFile, path: str):
        self.channel = channel
        self.handle = handle
        self.path = path
        self.closed = False

    async def read(self, size: int) -> bytes:
        return await self.channel._call("read", self.path, self.handle.read, size)

    async def write(self, data: bytes) -> None:
        await self.channel._call("write", self.path, self.handle.write, data)

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            await self.channel._call("close", self.path, self.handle.close)

    async def __aenter__(self) -> "RemoteFile":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.close()
        else:
            # an error raised inside the block takes precedence over a close failure
            try:
                await self.close()
            except RemoteOperationError as close_error:
                logger.warning(f"Failed to close {self.path}: {close_error}")


class SFTPChannel:
    """File-transfer channel, opened once per session and reused by every call"""

    def __init__(self, channel: Channel):
        if channel.kind != ChannelKind.FILE_TRANSFER or channel.sftp is None:
            raise ValueError(f"{channel!r} is not a file-transfer channel")
        self.channel = channel
        self.sftp = channel.sftp
        self.session = channel.session
        self._lock = asyncio.Lock()

    @property
    def closed(self) -> bool:
        return self.channel.closed

    async def _call(
        self,
        operation: str,
        path: str,
        func: Callable[..., Any],
        *args: Any,
        fallback: Reason = Reason.FAILURE,
    ) -> Any:
        self.session.ensure_usable()
        async with self._lock:
            try:
                result = await run_blocking(func, *args)
            except (OSError, EOFError, paramiko.SSHException) as e:
                self.session.check_failure(e, f"sftp {operation}")
                reason = reason_from_exception(e, fallback)
                logger.error(f"SFTP {operation} failed for {path}: {e}")
                raise RemoteOperationError(operation, path, reason, str(e)) from e
        self.session.touch()
        return result

    async def listdir(self, path: str) -> List[str]:
        return await self._call("list", path, self.sftp.listdir, path)

    async def stat_many(self, paths: List[str]) -> List[StatResult]:
        """Per-path attributes or per-path error, aligned with ``paths``"""
        if not paths:
            return []
        label = ", ".join(paths[:3])
        return await self._call("stat", label, stat_pipelined, self.sftp, paths)

    async def open(self, path: str, mode: str = "rb") -> RemoteFile:
        handle = await self._call("open", path, self.sftp.open, path, mode)
        return RemoteFile(self, handle, path)

    async def remove(self, path: str) -> None:
        await self._call("delete file", path, self.sftp.remove, path)

    async def rmdir(self, path: str) -> None:
        # SFTPv3 reports a non-empty directory as a generic failure
        await self._call(
            "delete directory", path, self.sftp.rmdir, path, fallback=Reason.NOT_EMPTY
        )

    async def mkdir(self, path: str, mode: int = 0o777) -> None:
        await self._call(
            "create directory",
            path,
            self.sftp.mkdir,
            path,
            mode,
            fallback=Reason.ALREADY_EXISTS,
        )

    async def rename(self, old_path: str, new_path: str) -> None:
        await self._call("rename", old_path, self.sftp.rename, old_path, new_path)

    async def close(self) -> None:
        async with self._lock:
            await run_blocking(self.channel.close)
        logger.info("File-transfer channel closed")
