from datetime import datetime
from unittest.mock import AsyncMock, Mock

import pytest

from bssh import cli
from bssh.config import ConfigManager
from bssh.models.command import CommandResult
from bssh.models.connection import ConnectionParams, SavedConnection
from bssh.models.file import FileEntry, TransferDirection, TransferResult
from bssh.state import SessionState


@pytest.fixture(autouse=True)
def config_home(monkeypatch, tmp_path):
    monkeypatch.setenv("BSSH_CONFIG_DIR", str(tmp_path))
    for name in ("BSSH_HOST_KEY_POLICY", "BSSH_CHUNK_SIZE", "BSSH_DETACH_BYTE"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def session():
    """Mock RemoteSession"""
    session = Mock()
    session.params = ConnectionParams(host="example.com", username="alice")
    session.list = AsyncMock(return_value=[
        FileEntry(name="..", path="/", is_dir=True),
        FileEntry(name="www", path="/var/www", is_dir=True),
    ])
    for name in ("delete_file", "delete_directory", "create_directory", "rename", "read_text",
                 "exec_one_shot", "transfer"):
        setattr(session, name, AsyncMock())
    return session


class TestParser:
    """Test command-line parsing"""

    def test_defaults(self):
        args = cli.build_parser().parse_args(["alice@example.com"])
        assert args.destination == "alice@example.com"
        assert args.action is None
        assert args.identity is None

    def test_actions(self):
        parser = cli.build_parser()

        args = parser.parse_args(["-i", "~/.ssh/work", "-p", "2222", "host", "get", "/etc/hosts"])
        assert (args.identity, args.port, args.action, args.remote, args.local) == \
            ("~/.ssh/work", 2222, "get", "/etc/hosts", None)

        args = parser.parse_args(["host", "exec", "ls", "-la", "/tmp"])
        assert args.command == ["ls", "-la", "/tmp"]

        args = parser.parse_args(["host", "mv", "/a", "/b"])
        assert (args.old, args.new) == ("/a", "/b")

    def test_resolve_saved_connection(self, config_home):
        """Test that a saved name wins over parsing the destination"""
        manager = ConfigManager(str(config_home))
        manager.add_connection(SavedConnection(name="prod", host="10.0.0.5", username="deploy"))

        args = cli.build_parser().parse_args(["prod"])
        params = cli.resolve_params(args, manager)
        assert (params.host, params.username) == ("10.0.0.5", "deploy")

        args = cli.build_parser().parse_args(["-p", "2200", "bob@other.com"])
        params = cli.resolve_params(args, manager)
        assert (params.host, params.username, params.port) == ("other.com", "bob", 2200)


class TestFormatting:
    """Test listing output"""

    def test_format_entry(self):
        entry = FileEntry(
            name="notes.txt", path="/tmp/notes.txt", size=1234,
            modified_time=datetime(2024, 5, 1, 13, 45),
        )
        assert cli.format_entry(entry) == "- " + "1234".rjust(12) + " 2024-05-01 13:45 notes.txt"

    def test_format_directory(self):
        assert cli.format_entry(FileEntry(name="src", path="/src", is_dir=True)).endswith(" src/")
        assert cli.format_entry(FileEntry(name="..", path="/", is_dir=True)).endswith(" ..")


class TestRunAction:
    """Test dispatching actions onto the session"""

    def parse(self, *argv):
        return cli.build_parser().parse_args(["example.com", *argv])

    @pytest.mark.asyncio
    async def test_list_uses_saved_directory(self, session, config_home, capsys):
        """Test that the last directory is restored and remembered"""
        SessionState(host="example.com", port=22, username="alice", current_path="/var").save()

        assert await cli.run_action(session, self.parse()) == 0

        session.list.assert_awaited_once_with("/var")
        assert "www/" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_list_saves_directory(self, session, config_home):
        await cli.run_action(session, self.parse("ls", "/var/www"))

        state = SessionState.load("example.com", 22, "alice")
        assert state.current_path == "/var/www"

    @pytest.mark.asyncio
    async def test_list_defaults_to_root(self, session):
        await cli.run_action(session, self.parse("ls"))
        session.list.assert_awaited_once_with("/")

    @pytest.mark.asyncio
    async def test_get(self, session, capsys):
        session.transfer.return_value = TransferResult(
            direction=TransferDirection.DOWNLOAD, local_path="hosts", remote_path="/etc/hosts",
            bytes_transferred=42,
        )
        await cli.run_action(session, self.parse("get", "/etc/hosts"))

        session.transfer.assert_awaited_once_with("hosts", "/etc/hosts", TransferDirection.DOWNLOAD)
        assert "42 bytes" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_file_operations(self, session):
        await cli.run_action(session, self.parse("rm", "/tmp/a"))
        await cli.run_action(session, self.parse("rmdir", "/tmp/d"))
        await cli.run_action(session, self.parse("mkdir", "/tmp/n"))
        await cli.run_action(session, self.parse("mv", "/tmp/a", "/tmp/b"))

        session.delete_file.assert_awaited_once_with("/tmp/a")
        session.delete_directory.assert_awaited_once_with("/tmp/d")
        session.create_directory.assert_awaited_once_with("/tmp/n")
        session.rename.assert_awaited_once_with("/tmp/a", "/tmp/b")

    @pytest.mark.asyncio
    async def test_exec(self, session, capsys):
        session.exec_one_shot.return_value = CommandResult(command="uname -s", output="Linux\r\n", exit_code=0)

        assert await cli.run_action(session, self.parse("exec", "uname", "-s")) == 0
        session.exec_one_shot.assert_awaited_once_with("uname -s")
        assert "Linux" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_exec_without_command(self, session):
        assert await cli.run_action(session, self.parse("exec")) == 2
        session.exec_one_shot.assert_not_called()


class TestMain:
    """Test process exit codes"""

    def test_invalid_destination(self, capsys):
        assert cli.main(["alice@example.com:ssh"]) == 1
        assert "Invalid port number" in capsys.readouterr().err

    def test_invalid_config(self, monkeypatch):
        monkeypatch.setenv("BSSH_HOST_KEY_POLICY", "sometimes")
        assert cli.main(["example.com"]) == 2
