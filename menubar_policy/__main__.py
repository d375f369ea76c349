"""Entry point for `python -m menubar_policy`."""

import sys

from .cli.commands import cli_main

if __name__ == "__main__":
    sys.exit(cli_main())
