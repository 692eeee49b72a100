"""Workspace commands: init, show, pause, resume."""

from . import reports_errors

SHOW_TARGETS = ("state", "working", "sessions")


@reports_errors
def cmd_init(args):
    """Create .wm/ with empty documents."""
    from ..state import STATE_FILE, WmError, is_initialized, wm_dir, wm_path, write_working_set

    if is_initialized():
        raise WmError("Already initialized: .wm/ exists")

    wm_dir().mkdir(parents=True)
    wm_path(STATE_FILE).write_text("", encoding="utf-8")
    write_working_set("")
    print("Initialized .wm/ in current directory")


@reports_errors
def cmd_show(args):
    """Display state, working set, or sessions."""
    if args.what == "state":
        show_state()
    elif args.what == "working":
        show_working(args.session_id)
    else:
        show_sessions()


def show_state():
    from ..state import STATE_FILE, require_initialized, wm_path

    require_initialized()
    path = wm_path(STATE_FILE)
    if not path.exists():
        print("_No state.md found. Run 'wm init' first._")
        return
    content = path.read_text(encoding="utf-8")
    if not content.strip():
        print("_No knowledge captured yet. Run 'wm extract' after some conversations._")
        return
    print(content)


def show_working(session_id=None):
    from ..state import read_working_set, require_initialized

    require_initialized()
    content = read_working_set(session_id)
    if not content.strip() and session_id:
        print(
            f"_No working set for session {session_id}. "
            f"Run 'wm hook compile --session-id {session_id}' first._"
        )
        return
    if not content.strip():
        print("_No working set compiled yet. Run 'wm compile' first._")
        return
    print(content)


def show_sessions():
    from ..checkpoint import checkpoint_path
    from ..transcript.store import current_project_path, discover_sessions

    sessions = discover_sessions(current_project_path())
    if not sessions:
        print("_No Claude sessions found for this project._")
        return

    print(f"# Claude Sessions ({len(sessions)})")
    print()
    for s in sessions:
        marker = "●" if checkpoint_path(s.session_id).exists() else "○"
        modified = s.modified_at.strftime("%Y-%m-%d %H:%M")
        print(f"{marker} {s.session_id} ({format_size(s.size_bytes)}, {modified})")
    print()
    print("● = has wm state, ○ = not yet processed")


def format_size(size_bytes: int) -> str:
    """Human-readable size: B, KB or MB."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    if size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    return f"{size_bytes / (1024 * 1024):.1f} MB"


@reports_errors
def cmd_pause(args):
    """Pause an operation (or both)."""
    _set_operations(args.operation, enabled=False)


@reports_errors
def cmd_resume(args):
    """Resume an operation (or both)."""
    _set_operations(args.operation, enabled=True)


def _set_operations(operation, enabled):
    from ..config import OPERATIONS, set_operation_enabled
    from ..state import require_initialized

    require_initialized()
    operations = OPERATIONS if operation in (None, "all") else (operation,)
    for op in operations:
        set_operation_enabled(op, enabled)
        print(f"{op.capitalize()} {'resumed' if enabled else 'paused'}")


def register(subparsers):
    """Register workspace commands."""
    p = subparsers.add_parser("init", help="Initialize .wm/ in current project")
    p.set_defaults(func=cmd_init)

    p = subparsers.add_parser("show", help="Display state, working set, or sessions")
    p.add_argument("what", nargs="?", default="state", choices=SHOW_TARGETS)
    p.add_argument("--session-id", help="Session ID (for a session-specific working set)")
    p.set_defaults(func=cmd_show)

    for name, func, verb in (("pause", cmd_pause, "Pause"), ("resume", cmd_resume, "Resume")):
        p = subparsers.add_parser(name, help=f"{verb} extract and/or compile")
        p.add_argument("operation", nargs="?", default="all", choices=["extract", "compile", "all"])
        p.set_defaults(func=func)
