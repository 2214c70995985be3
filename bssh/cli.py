"""
bssh command-line entry point

    bssh DESTINATION [-i IDENTITY] [-p PORT] [--save NAME] [ACTION ...]

DESTINATION is a saved connection name or ``[user@]host[:port]``.
"""

import argparse
import asyncio
import logging
import os
import posixpath
import sys
from typing import List, Optional

from .config import AppConfig, ConfigManager
from .errors import BsshError
from .models.connection import ConnectionParams, SavedConnection
from .models.file import FileEntry, TransferDirection
from .session import RemoteSession
from .state import SessionState
from .utils import run_blocking

logger = logging.getLogger(__name__)


def setup_logging(config: AppConfig) -> None:
    """Log to a file so records never interleave with a raw-mode shell"""
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_file = config.resolved_log_file()
    try:
        os.makedirs(os.path.dirname(log_file), exist_ok=True)
        logging.basicConfig(level=level, format=fmt, filename=log_file)
    except OSError:
        logging.basicConfig(level=level, format=fmt, stream=sys.stderr)
    logging.getLogger("paramiko").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bssh", description="Remote file manager and shell over SSH"
    )
    parser.add_argument("destination", help="saved connection name or [user@]host[:port]")
    parser.add_argument("-i", "--identity", help="private key file for authentication")
    parser.add_argument("-p", "--port", type=int, help="port to connect to on the remote host")
    parser.add_argument("--save", metavar="NAME", help="save this connection for future use")

    actions = parser.add_subparsers(dest="action", metavar="ACTION")
    ls = actions.add_parser("ls", help="list a remote directory")
    ls.add_argument("path", nargs="?")
    get = actions.add_parser("get", help="download a remote file")
    get.add_argument("remote")
    get.add_argument("local", nargs="?")
    put = actions.add_parser("put", help="upload a local file")
    put.add_argument("local")
    put.add_argument("remote")
    cat = actions.add_parser("cat", help="print a remote text file")
    cat.add_argument("path")
    rm = actions.add_parser("rm", help="delete a remote file")
    rm.add_argument("path")
    rmdir = actions.add_parser("rmdir", help="delete an empty remote directory")
    rmdir.add_argument("path")
    mkdir = actions.add_parser("mkdir", help="create a remote directory")
    mkdir.add_argument("path")
    mv = actions.add_parser("mv", help="rename a remote file or directory")
    mv.add_argument("old")
    mv.add_argument("new")
    exec_ = actions.add_parser("exec", help="run a command on the remote host")
    exec_.add_argument("command", nargs=argparse.REMAINDER)
    shell = actions.add_parser("shell", help="interactive shell (Ctrl-S returns to bssh)")
    shell.add_argument("path", nargs="?")
    return parser


def resolve_params(args: argparse.Namespace, manager: ConfigManager) -> ConnectionParams:
    saved = manager.get_connection(args.destination)
    if saved is not None:
        return saved.to_params()
    return ConnectionParams.parse(args.destination, port=args.port, identity_key_path=args.identity)


def format_entry(entry: FileEntry) -> str:
    kind = "d" if entry.is_dir else "-"
    modified = entry.modified_time.strftime("%Y-%m-%d %H:%M") if entry.modified_time else "-" * 16
    name = f"{entry.name}/" if entry.is_dir and not entry.is_parent else entry.name
    return f"{kind} {entry.size:>12} {modified} {name}"


def print_listing(entries: List[FileEntry]) -> None:
    for entry in entries:
        print(format_entry(entry))


def save_state(params: ConnectionParams, path: str) -> None:
    SessionState(
        host=params.host, port=params.port, username=params.username, current_path=path
    ).save()


async def interactive_shell(session: RemoteSession, directory: str) -> None:
    """Forward the shell; on detach show the directory and offer to resume"""
    shell = await session.open_shell(directory)
    while True:
        print(f"[bssh] shell on {session.params.display_name()}, Ctrl-S returns to bssh",
              file=sys.stderr)
        if not await shell.run():
            print("[bssh] shell exited", file=sys.stderr)
            return
        print_listing(await session.list(directory))
        answer = await run_blocking(input, "[bssh] Enter resumes the shell, q quits: ")
        if answer.strip().lower().startswith("q"):
            return


async def run_action(session: RemoteSession, args: argparse.Namespace) -> int:
    params = session.params
    action = args.action

    if action in (None, "ls"):
        path = getattr(args, "path", None)
        if path is None:
            state = SessionState.load(params.host, params.port, params.username)
            path = state.current_path if state else "/"
        print_listing(await session.list(path))
        save_state(params, path)
    elif action == "get":
        local = args.local or posixpath.basename(args.remote.rstrip("/"))
        result = await session.transfer(local, args.remote, TransferDirection.DOWNLOAD)
        print(f"Downloaded: {args.remote} ({result.bytes_transferred} bytes)")
    elif action == "put":
        result = await session.transfer(args.local, args.remote, TransferDirection.UPLOAD)
        print(f"Uploaded: {args.remote} ({result.bytes_transferred} bytes)")
    elif action == "cat":
        sys.stdout.write(await session.read_text(args.path))
    elif action == "rm":
        await session.delete_file(args.path)
        print(f"Deleted: {args.path}")
    elif action == "rmdir":
        await session.delete_directory(args.path)
        print(f"Deleted: {args.path}")
    elif action == "mkdir":
        await session.create_directory(args.path)
        print(f"Created: {args.path}")
    elif action == "mv":
        await session.rename(args.old, args.new)
        print(f"Renamed: {args.old} -> {args.new}")
    elif action == "exec":
        if not args.command:
            print("bssh: exec needs a command", file=sys.stderr)
            return 2
        result = await session.exec_one_shot(" ".join(args.command))
        sys.stdout.write(result.output)
    elif action == "shell":
        directory = args.path
        if directory is None:
            state = SessionState.load(params.host, params.port, params.username)
            directory = state.current_path if state else "/"
        await interactive_shell(session, directory)
    return 0


async def async_main(args: argparse.Namespace, manager: ConfigManager) -> int:
    params = resolve_params(args, manager)
    print(f"Connecting to {params.display_name()}...", file=sys.stderr)

    session = await RemoteSession.connect(
        params, manager.config, passphrase=os.getenv("BSSH_KEY_PASSPHRASE")
    )
    async with session:
        if args.save:
            saved = SavedConnection(
                name=args.save,
                host=params.host,
                port=params.port,
                username=params.username,
                identity_file=params.identity_key_path,
            )
            if manager.add_connection(saved):
                print(f"Connection saved as: {args.save}", file=sys.stderr)
            else:
                print("Warning: failed to save connection", file=sys.stderr)
        return await run_action(session, args)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        manager = ConfigManager()
    except ValueError as e:
        print(f"bssh: invalid configuration: {e}", file=sys.stderr)
        return 2
    setup_logging(manager.config)

    try:
        return asyncio.run(async_main(args, manager))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except (BsshError, ValueError) as e:
        logger.error(f"bssh failed: {e}")
        print(f"bssh: {e}", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(main())
