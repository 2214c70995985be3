"""
Directory listing and file transfer over the file-transfer channel
"""

import logging
import stat
import time
from datetime import datetime
from typing import List

import paramiko

from .errors import LocalIoError, RemoteOperationError
from .models.file import FileEntry, TransferDirection, TransferResult
from .sftp import SFTPChannel
from .utils import join_remote, parent_path, run_blocking

logger = logging.getLogger(__name__)

CHUNK_SIZE = 32768


def entry_from_attributes(name: str, path: str, attrs: paramiko.SFTPAttributes) -> FileEntry:
    mode = attrs.st_mode
    modified = None
    if attrs.st_mtime is not None:
        modified = datetime.fromtimestamp(attrs.st_mtime)
    return FileEntry(
        name=name,
        path=path,
        is_dir=mode is not None and stat.S_ISDIR(mode),
        size=attrs.st_size or 0,
        modified_time=modified,
        permissions=stat.filemode(mode) if mode is not None else None,
    )


def sort_entries(entries: List[FileEntry]) -> List[FileEntry]:
    """Directories first, then files; each group by name"""
    return sorted(entries, key=lambda entry: (not entry.is_dir, entry.name))


async def list_directory(channel: SFTPChannel, path: str) -> List[FileEntry]:
    """List ``path`` with metadata for every entry fetched concurrently.

    A failed stat on one entry yields a plain file entry of size 0 with no
    modification time; it never fails the listing.
    """
    names = [name for name in await channel.listdir(path) if name not in (".", "..")]
    paths = [join_remote(path, name) for name in names]
    results = await channel.stat_many(paths)

    entries: List[FileEntry] = []
    if path != "/":
        entries.append(FileEntry(name="..", path=parent_path(path), is_dir=True))

    for name, full_path, result in zip(names, paths, results):
        if isinstance(result, RemoteOperationError):
            logger.warning(f"stat failed for {full_path}, listing it as a file: {result}")
            entries.append(FileEntry(name=name, path=full_path))
        else:
            entries.append(entry_from_attributes(name, full_path, result))

    return sort_entries(entries)


def _open_local(path: str, mode: str):
    try:
        return open(path, mode)
    except OSError as e:
        operation = "open" if "r" in mode else "create"
        logger.error(f"Failed to {operation} local file {path}: {e}")
        raise LocalIoError(operation, path, e.strerror or str(e)) from e


async def _local_io(operation: str, path: str, func, *args):
    try:
        return await run_blocking(func, *args)
    except OSError as e:
        logger.error(f"Local {operation} failed for {path}: {e}")
        raise LocalIoError(operation, path, e.strerror or str(e)) from e


async def download(
    channel: SFTPChannel, remote_path: str, local_path: str, chunk_size: int = CHUNK_SIZE
) -> TransferResult:
    """Stream a remote file into a local file created or truncated for it.

    A failure part-way leaves the partial local file in place.
    """
    start = time.monotonic()
    transferred = 0
    async with await channel.open(remote_path, "rb") as remote:
        with _open_local(local_path, "wb") as local:
            while True:
                chunk = await remote.read(chunk_size)
                if not chunk:
                    break
                await _local_io("write", local_path, local.write, chunk)
                transferred += len(chunk)

    logger.info(f"Downloaded {remote_path} -> {local_path} ({transferred} bytes)")
    return TransferResult(
        direction=TransferDirection.DOWNLOAD,
        local_path=local_path,
        remote_path=remote_path,
        bytes_transferred=transferred,
        transfer_time=time.monotonic() - start,
    )


async def upload(
    channel: SFTPChannel, local_path: str, remote_path: str, chunk_size: int = CHUNK_SIZE
) -> TransferResult:
    """Stream a local file into a remote file created or truncated for it"""
    start = time.monotonic()
    transferred = 0
    with _open_local(local_path, "rb") as local:
        async with await channel.open(remote_path, "wb") as remote:
            while True:
                chunk = await _local_io("read", local_path, local.read, chunk_size)
                if not chunk:
                    break
                await remote.write(chunk)
                transferred += len(chunk)

    logger.info(f"Uploaded {local_path} -> {remote_path} ({transferred} bytes)")
    return TransferResult(
        direction=TransferDirection.UPLOAD,
        local_path=local_path,
        remote_path=remote_path,
        bytes_transferred=transferred,
        transfer_time=time.monotonic() - start,
    )


async def read_text(channel: SFTPChannel, path: str) -> str:
    chunks = []
    async with await channel.open(path, "rb") as remote:
        while True:
            chunk = await remote.read(CHUNK_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks).decode("utf-8", errors="replace")


async def write_text(channel: SFTPChannel, path: str, text: str) -> None:
    async with await channel.open(path, "wb") as remote:
        await remote.write(text.encode("utf-8"))
    logger.info(f"Saved {path}")


async def delete_file(channel: SFTPChannel, path: str) -> None:
    await channel.remove(path)
    logger.info(f"Deleted file {path}")


async def delete_directory(channel: SFTPChannel, path: str) -> None:
    await channel.rmdir(path)
    logger.info(f"Deleted directory {path}")


async def create_directory(channel: SFTPChannel, path: str) -> None:
    await channel.mkdir(path)
    logger.info(f"Created directory {path}")


async def rename(channel: SFTPChannel, old_path: str, new_path: str) -> None:
    await channel.rename(old_path, new_path)
    logger.info(f"Renamed {old_path} -> {new_path}")
