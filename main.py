"""
bssh entry point

Connects to a remote host and runs one file-manager action or an interactive
shell; see ``bssh --help``.
"""

import sys

from bssh.cli import main

if __name__ == "__main__":
    sys.exit(main())
