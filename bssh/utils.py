import asyncio
import functools
import posixpath
from typing import Any, Callable


async def run_blocking(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a blocking paramiko or filesystem call on the default executor"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))


def join_remote(directory: str, name: str) -> str:
    if directory.endswith("/"):
        return f"{directory}{name}"
    return f"{directory}/{name}"


def parent_path(path: str) -> str:
    """Parent of a remote absolute path; the root is its own parent"""
    stripped = path.rstrip("/")
    if not stripped:
        return "/"
    parent = posixpath.dirname(stripped)
    return parent or "/"
