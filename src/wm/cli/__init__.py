"""Command-line interface for wm.

Commands are grouped by category; each module registers its own
subcommands and imports its pipeline lazily so `wm hook ...` stays fast.
"""

import argparse
import logging
import sys
from functools import wraps

from .. import __version__


def reports_errors(func):
    """Decorator that turns command-level failures into `Error: ...` and exit 1."""
    @wraps(func)
    def wrapper(args):
        from ..oracle import OracleError
        from ..state import WmError

        try:
            return func(args)
        except (WmError, OracleError, OSError, ValueError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    return wrapper


def print_group_help(parser):
    """Default handler for a command group invoked without a subcommand."""
    def handler(args):
        parser.print_help()
        sys.exit(1)
    return handler


def main(argv=None):
    """Main entry point."""
    from ..oracle import is_disabled

    # Set for the oracle's own child process; a nested wm must do nothing
    if is_disabled():
        return

    parser = argparse.ArgumentParser(
        description="wm - Working memory for AI coding assistants",
        prog="wm",
    )
    parser.add_argument("--version", action="version", version=f"wm {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from . import hooks, pipeline, workspace

    workspace.register(subparsers)
    pipeline.register(subparsers)
    hooks.register(subparsers)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from ..state import configure_hook_log
    try:
        configure_hook_log()
    except OSError as e:
        if args.command != "hook":
            print(f"Warning: cannot open .wm/hook.log: {e}", file=sys.stderr)
        # Hooks stay silent without a log file too
        logging.getLogger("wm").addHandler(logging.NullHandler())

    args.func(args)


if __name__ == "__main__":
    main()
