import errno
import os
import posixpath
import socket
import sys
import threading
from unittest.mock import Mock

import paramiko
import pytest
from paramiko.sftp import (
    CMD_ATTRS,
    CMD_STAT,
    CMD_STATUS,
    SFTP_NO_SUCH_FILE,
    SFTP_PERMISSION_DENIED,
)

# Add project root to Python path
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from bssh.channels import Channel, ChannelKind  # noqa: E402
from bssh.config import AppConfig  # noqa: E402
from bssh.models.connection import ConnectionParams  # noqa: E402
from bssh.sftp import SFTPChannel  # noqa: E402


class FakeSession:
    """Stands in for TransportSession where only bookkeeping is needed"""

    def __init__(self):
        self.touches = 0
        self.failure = None
        self.closed = False
        self.config = AppConfig(inactivity_timeout=0)
        self.params = ConnectionParams(host="example.com", username="alice")

    async def close(self):
        self.closed = True

    def touch(self):
        self.touches += 1

    def ensure_usable(self):
        if self.failure is not None:
            raise self.failure

    def check_failure(self, exc, context):
        if self.failure is not None:
            raise self.failure from exc


class FakeRemoteFile:
    def __init__(self, sftp, path, mode):
        self.sftp = sftp
        self.path = path
        self.offset = 0
        self.writable = "w" in mode

    def read(self, size):
        data = bytes(self.sftp.files[self.path][self.offset:self.offset + size])
        self.offset += len(data)
        return data

    def write(self, data):
        self.sftp.files[self.path] += bytes(data)

    def close(self):
        pass


class FakeSFTPClient:
    """In-memory SFTP server speaking paramiko's client API.

    Pipelined STAT responses are delivered newest-first so callers must match
    them to requests by number.
    """

    _convert_status = paramiko.SFTPClient._convert_status

    def __init__(self):
        self.dirs = {"/"}
        self.files = {}
        self.mtimes = {}
        self.stat_failures = set()
        self.stat_requests = []
        self._pending = []
        self.max_outstanding = None
        self.peak_outstanding = 0
        self._next_request = 1
        self._lock = threading.Lock()

    # filesystem helpers
    def add_dir(self, path):
        self.dirs.add(path)

    def add_file(self, path, data=b"", mtime=1700000000):
        self.files[path] = bytearray(data)
        self.mtimes[path] = mtime

    def _children(self, path):
        prefix = path.rstrip("/") + "/"
        names = set()
        for entry in list(self.dirs) + list(self.files):
            if entry != path and entry.startswith(prefix):
                names.add(entry[len(prefix):].split("/", 1)[0])
        return sorted(names)

    def _require_parent(self, path):
        if posixpath.dirname(path) not in self.dirs:
            raise IOError(errno.ENOENT, "No such file")

    # client API
    def _adjust_cwd(self, path):
        return path

    def _attributes(self, path):
        attrs = paramiko.SFTPAttributes()
        if path in self.dirs:
            attrs.st_mode = 0o040755
            attrs.st_size = 4096
        elif path in self.files:
            attrs.st_mode = 0o100644
            attrs.st_size = len(self.files[path])
        else:
            return None
        attrs.st_uid = attrs.st_gid = 1000
        attrs.st_atime = attrs.st_mtime = self.mtimes.get(path, 1700000000)
        return attrs

    def listdir(self, path):
        if path not in self.dirs:
            raise IOError(errno.ENOENT, "No such file")
        return [".", ".."] + self._children(path)

    def stat(self, path):
        attrs = self._attributes(path)
        if attrs is None:
            raise IOError(errno.ENOENT, "No such file")
        return attrs

    def _async_request(self, fileobj, t, *args):
        assert t == CMD_STAT
        with self._lock:
            num = self._next_request
            self._next_request += 1
        if self.max_outstanding is not None and len(self._pending) >= self.max_outstanding:
            raise paramiko.SSHException("request window full")
        path = args[0].decode() if isinstance(args[0], bytes) else args[0]
        self.stat_requests.append(path)
        self._pending.append((num, fileobj, path))
        self.peak_outstanding = max(self.peak_outstanding, len(self._pending))
        return num

    def _read_response(self, waitfor=None):
        num, fileobj, path = self._pending.pop()
        msg = paramiko.Message()
        attrs = None if path in self.stat_failures else self._attributes(path)
        if attrs is None:
            code = SFTP_PERMISSION_DENIED if path in self.stat_failures else SFTP_NO_SUCH_FILE
            msg.add_int(code)
            msg.add_string("stat failed")
            msg.add_string("")
            t = CMD_STATUS
        else:
            attrs._pack(msg)
            t = CMD_ATTRS
        msg.rewind()
        fileobj._async_response(t, msg, num)
        return None, None

    def open(self, path, mode="r"):
        if "w" in mode:
            if path in self.dirs:
                raise IOError("Failure")
            self._require_parent(path)
            self.files[path] = bytearray()
            self.mtimes[path] = 1700000000
        elif path not in self.files:
            raise IOError(errno.ENOENT, "No such file")
        return FakeRemoteFile(self, path, mode)

    def remove(self, path):
        if path not in self.files:
            raise IOError(errno.ENOENT, "No such file")
        del self.files[path]

    def rmdir(self, path):
        if path not in self.dirs:
            raise IOError(errno.ENOENT, "No such file")
        if self._children(path):
            raise IOError("Failure")
        self.dirs.discard(path)

    def mkdir(self, path, mode=0o777):
        if path in self.dirs or path in self.files:
            raise IOError("Failure")
        self._require_parent(path)
        self.dirs.add(path)

    def rename(self, old, new):
        if old in self.files:
            self.files[new] = self.files.pop(old)
            self.mtimes[new] = self.mtimes.pop(old, 1700000000)
        elif old in self.dirs:
            prefix = old.rstrip("/") + "/"
            self.dirs = {new + d[len(old):] if d == old or d.startswith(prefix) else d
                         for d in self.dirs}
            self.files = {new + f[len(old):] if f.startswith(prefix) else f: data
                          for f, data in self.files.items()}
        else:
            raise IOError(errno.ENOENT, "No such file")

    def close(self):
        pass


class SocketChannel:
    """paramiko.Channel look-alike backed by one end of a socketpair"""

    def __init__(self, sock):
        self.sock = sock
        self.closed = False
        self.pty_sizes = []

    def get_id(self):
        return 7

    def fileno(self):
        return self.sock.fileno()

    def recv(self, size):
        return self.sock.recv(size)

    def sendall(self, data):
        self.sock.sendall(data)

    def resize_pty(self, width=80, height=24):
        self.pty_sizes.append((width, height))

    def close(self):
        if not self.closed:
            self.closed = True
            self.sock.close()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def fake_sftp():
    return FakeSFTPClient()


@pytest.fixture
def sftp_channel(fake_session, fake_sftp):
    raw = Mock(closed=False)
    raw.get_id.return_value = 3
    channel = Channel(ChannelKind.FILE_TRANSFER, raw, fake_session, sftp=fake_sftp)
    return SFTPChannel(channel)


@pytest.fixture
def shell_pair(fake_session):
    """(shell Channel, remote socket) connected through a socketpair"""
    local, remote = socket.socketpair()
    remote.settimeout(5)
    channel = Channel(ChannelKind.INTERACTIVE_SHELL, SocketChannel(local), fake_session)
    yield channel, remote
    channel.close()
    remote.close()


@pytest.fixture
def pipes():
    """stdin (read, write) and stdout (read, write) pipe pairs"""
    stdin_r, stdin_w = os.pipe()
    stdout_r, stdout_w = os.pipe()
    yield (stdin_r, stdin_w), (stdout_r, stdout_w)
    for fd in (stdin_r, stdin_w, stdout_r, stdout_w):
        try:
            os.close(fd)
        except OSError:
            pass
