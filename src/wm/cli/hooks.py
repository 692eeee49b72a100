"""Hook commands: called by the assistant's hooks, never fail loudly."""

from . import print_group_help


def cmd_hook_extract(args):
    from ..extract import run_hook

    run_hook()


def cmd_hook_compile(args):
    from ..compile import run_hook

    run_hook(args.session_id)


def register(subparsers):
    """Register hook commands."""
    hook_parser = subparsers.add_parser("hook", help="Hook entry points (silent)")
    hook_parser.set_defaults(func=print_group_help(hook_parser))
    sub = hook_parser.add_subparsers(dest="hook_command")

    p = sub.add_parser("extract", help="Extract from the current session transcript")
    p.set_defaults(func=cmd_hook_extract)

    p = sub.add_parser("compile", help="Emit the working set as hook JSON")
    p.add_argument("--session-id", required=True, help="Session ID")
    p.set_defaults(func=cmd_hook_compile)
