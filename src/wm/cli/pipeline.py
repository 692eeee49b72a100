"""Pipeline commands: extract, distill, compile, compress."""

import sys

from . import reports_errors


@reports_errors
def cmd_extract(args):
    """Extract tacit knowledge from new transcript content into state.md."""
    from ..extract import run

    print("Note: 'wm distill' processes every session in batch with categorization.", file=sys.stderr)
    run(args.transcript, args.session_id)


@reports_errors
def cmd_distill(args):
    """Distill guardrails and metis from all sessions."""
    from ..distill import DistillOptions, run

    run(DistillOptions(
        dry_run=args.dry_run,
        force=args.force,
        project=args.project,
        source=args.source,
    ))


@reports_errors
def cmd_compile(args):
    """Compile the working set."""
    from ..compile import run

    run()


@reports_errors
def cmd_compress(args):
    """Compress state.md."""
    from ..compress import run

    run()


def register(subparsers):
    """Register pipeline commands."""
    p = subparsers.add_parser("extract", help="Run extraction from a transcript")
    p.add_argument("--transcript", help="Path to transcript file")
    p.add_argument("--session-id", help="Session ID (for session-scoped extraction)")
    p.set_defaults(func=cmd_extract)

    p = subparsers.add_parser("distill", help="Batch-extract guardrails and metis from all sessions")
    p.add_argument("--dry-run", action="store_true", help="Show what would be processed")
    p.add_argument("--force", action="store_true", help="Re-extract even cached sessions")
    p.add_argument("--project", help="Project filter (substring match)")
    p.add_argument("--source", choices=["claude", "codex"], default="claude", help="Transcript source")
    p.set_defaults(func=cmd_distill)

    p = subparsers.add_parser("compile", help="Compile working set")
    p.set_defaults(func=cmd_compile)

    p = subparsers.add_parser("compress", help="Compress state.md into higher-level abstractions")
    p.set_defaults(func=cmd_compress)
