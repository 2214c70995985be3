"""
Local terminal control

The terminal's raw-mode flag is process-wide state. ``TerminalMode`` is the
only way to change it: a context manager that holds exclusive ownership while
active and restores the saved attributes on every exit path.
"""

import logging
import os
import shutil
import termios
import threading
import tty
from typing import Optional, Tuple

from .errors import TerminalBusyError

logger = logging.getLogger(__name__)

ENTER_ALTERNATE_SCREEN = b"\x1b[?1049h"
LEAVE_ALTERNATE_SCREEN = b"\x1b[?1049l"

DEFAULT_SIZE = (80, 24)


def terminal_size() -> Tuple[int, int]:
    """(columns, rows) of the local terminal, 80x24 when there is none"""
    size = shutil.get_terminal_size(DEFAULT_SIZE)
    return size.columns, size.lines


class TerminalMode:
    """Scoped owner of the local terminal mode.

    Only one instance may be active at a time; entering a second one raises
    ``TerminalBusyError``. Raw mode is only applied when ``stdin_fd`` is a TTY,
    so pipes and test fixtures pass through untouched while ownership is still
    enforced.
    """

    _owner_lock = threading.Lock()
    _owner: Optional["TerminalMode"] = None

    def __init__(
        self,
        stdin_fd: int,
        stdout_fd: Optional[int] = None,
        raw: bool = True,
        alternate_screen: bool = False,
    ):
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd
        self.raw = raw
        self.alternate_screen = alternate_screen
        self._saved_attrs = None
        self._alternate_entered = False

    @classmethod
    def current_owner(cls) -> Optional["TerminalMode"]:
        with cls._owner_lock:
            return cls._owner

    @property
    def is_raw(self) -> bool:
        return self._saved_attrs is not None

    def __enter__(self) -> "TerminalMode":
        with TerminalMode._owner_lock:
            if TerminalMode._owner is not None:
                raise TerminalBusyError("terminal mode is already held by another owner")
            TerminalMode._owner = self

        try:
            if self.raw and os.isatty(self.stdin_fd):
                self._saved_attrs = termios.tcgetattr(self.stdin_fd)
                tty.setraw(self.stdin_fd)
            if (
                self.alternate_screen
                and self.stdout_fd is not None
                and os.isatty(self.stdout_fd)
            ):
                os.write(self.stdout_fd, ENTER_ALTERNATE_SCREEN)
                self._alternate_entered = True
        except BaseException:
            self._restore()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._restore()
        return False

    def _restore(self) -> None:
        try:
            if self._alternate_entered:
                self._alternate_entered = False
                os.write(self.stdout_fd, LEAVE_ALTERNATE_SCREEN)
            if self._saved_attrs is not None:
                attrs, self._saved_attrs = self._saved_attrs, None
                termios.tcsetattr(self.stdin_fd, termios.TCSADRAIN, attrs)
        finally:
            with TerminalMode._owner_lock:
                if TerminalMode._owner is self:
                    TerminalMode._owner = None
