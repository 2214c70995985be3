import os
import termios

import pytest

from bssh.errors import TerminalBusyError
from bssh.terminal import (
    ENTER_ALTERNATE_SCREEN,
    LEAVE_ALTERNATE_SCREEN,
    TerminalMode,
    terminal_size,
)


@pytest.fixture
def pty_pair():
    try:
        master, slave = os.openpty()
    except OSError as e:
        pytest.skip(f"no pseudo-terminal available: {e}")
    yield master, slave
    os.close(master)
    os.close(slave)


class TestTerminalMode:
    """Test scoped ownership of the terminal mode"""

    def test_raw_mode_applied_and_restored(self, pty_pair):
        """Test that canonical mode is off inside the block and back after it"""
        _, slave = pty_pair
        before = termios.tcgetattr(slave)

        with TerminalMode(slave) as mode:
            assert mode.is_raw
            assert termios.tcgetattr(slave)[3] & termios.ICANON == 0
            assert TerminalMode.current_owner() is mode

        assert termios.tcgetattr(slave) == before
        assert TerminalMode.current_owner() is None

    def test_restored_on_error(self, pty_pair):
        _, slave = pty_pair
        before = termios.tcgetattr(slave)

        with pytest.raises(KeyError):
            with TerminalMode(slave):
                raise KeyError("boom")

        assert termios.tcgetattr(slave) == before
        assert TerminalMode.current_owner() is None

    def test_second_owner_rejected(self, pty_pair):
        """Test that only one owner may hold the terminal"""
        _, slave = pty_pair
        with TerminalMode(slave) as outer:
            with pytest.raises(TerminalBusyError):
                with TerminalMode(slave):
                    pass
            assert TerminalMode.current_owner() is outer
            assert termios.tcgetattr(slave)[3] & termios.ICANON == 0

    def test_alternate_screen(self, pty_pair):
        master, slave = pty_pair
        with TerminalMode(slave, slave, alternate_screen=True):
            assert ENTER_ALTERNATE_SCREEN in os.read(master, 64)
        assert LEAVE_ALTERNATE_SCREEN in os.read(master, 64)

    def test_not_a_tty(self):
        """Test that pipes pass through untouched while ownership is enforced"""
        read_fd, write_fd = os.pipe()
        try:
            with TerminalMode(read_fd, write_fd, alternate_screen=True) as mode:
                assert not mode.is_raw
                with pytest.raises(TerminalBusyError):
                    TerminalMode(read_fd).__enter__()
        finally:
            os.close(read_fd)
            os.close(write_fd)

    def test_terminal_size(self):
        columns, rows = terminal_size()
        assert columns > 0 and rows > 0
