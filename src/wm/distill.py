"""distill.py — Two-pass batch distillation across all sessions of a project.

Pass 1 extracts insights from every session transcript independently,
reusing cached results for sessions whose file size has not changed.
Pass 2 asks the oracle to sort the accumulated insights into:

    guardrails  hard constraints that must never be violated
    metis       working wisdom about how to do things well here

Output lives in .wm/distill/:

    cache.json            per-session extraction cache
    errors.log            one line per failed session
    raw_extractions.md    pass 1 output, one "## Session: <id>" section each
    guardrails.md         pass 2 output
    metis.md              pass 2 output

One bad session never stops the batch: its failure is logged and the
remaining sessions are processed.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from wm.checkpoint import (
    CacheEntry,
    load_cache,
    log_extraction_error,
    needs_extraction,
    save_cache,
)
from wm.oracle import Oracle, RunContext, call_oracle, get_oracle, parse_marker_response
from wm.path_utils import format_timestamp, utc_now, write_text_atomic
from wm.state import WmError, distill_dir, require_initialized
from wm.transcript.formatter import format_context
from wm.transcript.records import TranscriptSchema
from wm.transcript.selector import select_since
from wm.transcript.store import (
    SessionDescriptor,
    current_project_path,
    discover_codex_sessions,
    discover_sessions,
    discover_sessions_in_dir,
    find_projects_by_filter,
    parse,
)

logger = logging.getLogger(__name__)

KNOWLEDGE_MARKER = "HAS_KNOWLEDGE"
RAW_EXTRACTIONS_FILE = "raw_extractions.md"
GUARDRAILS_FILE = "guardrails.md"
METIS_FILE = "metis.md"

SOURCES = ("claude", "codex")

SESSION_EXTRACTION_PROMPT = """You are extracting tacit knowledge from an AI coding session transcript.

Tacit knowledge is wisdom about HOW to work effectively, not WHAT was done. Look for:
- User preferences revealed through corrections or choices
- Patterns in how problems were approached
- Constraints discovered through friction
- Decisions and their rationale (WHY, not just WHAT)
- Quality standards implicit in feedback

OUTPUT FORMAT:

If you found tacit knowledge worth capturing, respond:
HAS_KNOWLEDGE: YES

Then list each insight as a separate bullet point:
- Insight 1
- Insight 2

Each insight should be self-contained, about HOW to work rather than WHAT happened, and useful for future AI sessions.

If nothing worth capturing, respond:
HAS_KNOWLEDGE: NO

Most sessions have little or no tacit knowledge. That's normal."""

CATEGORIZATION_PROMPT = """You are categorizing tacit knowledge into two types.

GUARDRAILS are hard constraints that must NEVER be violated:
- Prohibitions: "Never do X", "Always do Y before Z"
- Safety rules: anything that could cause data loss, security issues or broken builds
- Project-specific requirements that are non-negotiable

METIS is wisdom about HOW to work effectively:
- Preferences: how the user likes things done
- Patterns: approaches that work well in this codebase
- Context: why things are the way they are
- Soft guidance that may have exceptions

OUTPUT FORMAT:

GUARDRAILS:
- Item 1
- Item 2

METIS:
- Item 1
- Item 2

Rules:
1. Each item should be self-contained and actionable
2. Preserve the original meaning but clarify if needed
3. If an item could be both, choose based on severity (safety-critical = guardrail)
4. Empty sections are fine if nothing fits
5. Combine duplicates without losing distinct nuances"""


class DistillError(WmError):
    """Raised when distillation cannot start (bad filter, no projects)."""


@dataclass
class DistillOptions:
    dry_run: bool = False
    force: bool = False
    # Substring match against project ids (claude) or recorded cwd (codex)
    project: Optional[str] = None
    source: str = "claude"


@dataclass
class CategorizationResult:
    guardrails: list[str] = field(default_factory=list)
    metis: list[str] = field(default_factory=list)


@dataclass
class PassOneResult:
    extractions: list[CacheEntry] = field(default_factory=list)
    processed: int = 0
    cached: int = 0
    failed: int = 0


# =============================================================================
# ENTRY POINT
# =============================================================================

def run(
    options: DistillOptions,
    oracle: Optional[Oracle] = None,
    ctx: Optional[RunContext] = None,
) -> Optional[CategorizationResult]:
    """Distill every session of the selected project(s).

    Returns the categorization, or None when nothing reached pass 2
    (dry run, no sessions, no knowledge).
    """
    require_initialized()
    if options.source not in SOURCES:
        raise DistillError(f"Unknown source: {options.source}. Use: {', '.join(SOURCES)}")

    sessions = discover(options)
    if not sessions:
        if options.project:
            print(f"No sessions found for projects matching '{options.project}'.")
        else:
            print("No sessions found for project.")
        return None

    if options.project:
        print(f"Found {len(sessions)} session(s) matching project filter '{options.project}'")
    else:
        print(f"Found {len(sessions)} session(s)")

    if options.dry_run:
        print("\n[DRY RUN] Would process:")
        cache = load_cache()
        for session in sessions:
            print(f"  {_describe_session(session)} [{_session_status(session, cache, options.force)}]")
        return None

    oracle = oracle or get_oracle()
    ctx = ctx or RunContext()

    print("\n=== Pass 1: Extracting knowledge from sessions ===\n")
    pass_one = run_pass1(sessions, oracle, ctx, force=options.force)

    raw_content = accumulate_extractions(pass_one.extractions)
    if not raw_content:
        print("\nNo knowledge extracted from any session.")
        return None

    write_text_atomic(distill_dir() / RAW_EXTRACTIONS_FILE, raw_content)
    with_knowledge = sum(1 for e in pass_one.extractions if e.has_knowledge)
    print(f"\nPass 1 complete: {with_knowledge} session(s) with knowledge extracted.")
    print(f"Raw extractions written to .wm/distill/{RAW_EXTRACTIONS_FILE}")

    print("\n=== Pass 2: Categorizing into guardrails vs metis ===\n")
    return run_pass2(raw_content, oracle, ctx)


def discover(options: DistillOptions) -> list[SessionDescriptor]:
    if options.source == "codex":
        project_filter = options.project or str(current_project_path())
        return discover_codex_sessions(project_filter)

    if not options.project:
        return discover_sessions(current_project_path())

    projects = find_projects_by_filter(options.project)
    if not projects:
        raise DistillError(
            f"No projects found matching '{options.project}'. "
            "Use 'wm show sessions' to list available projects."
        )

    if len(projects) > 1:
        print(f"Matched {len(projects)} projects:")
        for project in projects:
            print(f"  {project.project_id} ({project.session_count} sessions)")
        print()
    else:
        print(f"Project: {projects[0].project_id}")

    sessions = []
    for project in projects:
        sessions.extend(discover_sessions_in_dir(project.project_dir))
    return sorted(sessions, key=lambda s: s.modified_at, reverse=True)


# =============================================================================
# PASS 1
# =============================================================================

def run_pass1(
    sessions: list[SessionDescriptor],
    oracle: Oracle,
    ctx: RunContext,
    force: bool = False,
) -> PassOneResult:
    """Extract from each session, newest first, isolating failures."""
    cache = load_cache()
    result = PassOneResult()

    for session in sessions:
        cached = cache.get(session.session_id)
        if not force and cached is not None and not needs_extraction(session, cache):
            print(f"  {session.session_id} [cached]")
            result.extractions.append(cached)
            result.cached += 1
            continue

        print(f"  {session.session_id} extracting...")
        try:
            extraction = extract_from_session(session, oracle, ctx)
        except Exception as e:
            logger.error("Extraction failed for session %s: %s", session.session_id, e)
            print(f"    ✗ error: {e}")
            log_extraction_error(session.session_id, e)
            result.failed += 1
            continue

        print("    ✓ knowledge found" if extraction.has_knowledge else "    ○ no knowledge")
        cache[session.session_id] = extraction
        result.extractions.append(extraction)
        result.processed += 1

    save_cache(cache)

    summary = [f"{result.processed} session(s) processed"]
    if result.cached:
        summary.append(f"{result.cached} from cache")
    if result.failed:
        summary.append(f"{result.failed} failed")
    print("\n" + ", ".join(summary))
    if result.failed:
        print("See .wm/distill/errors.log for failure details")

    return result


def extract_from_session(
    session: SessionDescriptor,
    oracle: Oracle,
    ctx: Optional[RunContext] = None,
) -> CacheEntry:
    """Run the extraction oracle over one whole session transcript."""
    logger.info("Extracting from session %s", session.session_id)

    records = parse(session.path, session.schema, session.session_id)
    messages = select_since(
        records,
        None,
        session.session_id,
        include_tools=session.schema is TranscriptSchema.FLAT,
    )
    if not messages:
        return CacheEntry.empty(session)

    transcript = format_context(messages)
    if not transcript.strip():
        return CacheEntry.empty(session)

    reply = call_oracle(
        oracle,
        SESSION_EXTRACTION_PROMPT,
        f"TRANSCRIPT:\n{transcript}\n\nOUTPUT:",
        ctx,
    )
    response = parse_marker_response(reply, KNOWLEDGE_MARKER)

    return CacheEntry(
        session_id=session.session_id,
        extracted_at=format_timestamp(utc_now()),
        has_knowledge=response.is_positive,
        content=response.content,
        file_size_bytes=session.size_bytes,
    )


def accumulate_extractions(extractions: list[CacheEntry]) -> str:
    sections = []
    for extraction in extractions:
        if extraction.has_knowledge and extraction.content.strip():
            sections.append(f"## Session: {extraction.session_id}\n\n{extraction.content}\n\n")
    return "".join(sections).strip()


# =============================================================================
# PASS 2
# =============================================================================

def run_pass2(raw_extractions: str, oracle: Oracle, ctx: Optional[RunContext] = None) -> CategorizationResult:
    reply = call_oracle(
        oracle,
        CATEGORIZATION_PROMPT,
        f"Categorize these extracted insights:\n\n{raw_extractions}\n\nOUTPUT:",
        ctx,
    )
    result = parse_categorization_response(reply)

    if result.guardrails:
        write_text_atomic(
            distill_dir() / GUARDRAILS_FILE,
            format_categorized_output("Guardrails", result.guardrails),
        )
        print(f"  ✓ {len(result.guardrails)} guardrail(s) written to .wm/distill/{GUARDRAILS_FILE}")
    else:
        print("  ○ No guardrails identified")

    if result.metis:
        write_text_atomic(
            distill_dir() / METIS_FILE,
            format_categorized_output("Metis", result.metis),
        )
        print(f"  ✓ {len(result.metis)} metis item(s) written to .wm/distill/{METIS_FILE}")
    else:
        print("  ○ No metis items identified")

    print(f"\nPass 2 complete: {len(result.guardrails)} guardrail(s), {len(result.metis)} metis item(s)")
    return result


def parse_categorization_response(response: str) -> CategorizationResult:
    """Split a GUARDRAILS:/METIS: reply into bullet items per section.

    Lines before the first section header are ignored.
    """
    result = CategorizationResult()
    section: Optional[list[str]] = None

    for line in response.splitlines():
        header = line.strip().lstrip("#* ").rstrip("* ")
        if header.startswith("GUARDRAILS:") or header == "GUARDRAILS":
            section = result.guardrails
            continue
        if header.startswith("METIS:") or header == "METIS":
            section = result.metis
            continue

        if section is not None:
            item = parse_bullet_item(line)
            if item:
                section.append(item)

    return result


def parse_bullet_item(line: str) -> Optional[str]:
    """Strip a leading -, * or • bullet; None for blank lines."""
    content = line.strip().lstrip("-").lstrip("*").lstrip("•").strip()
    return content or None


def format_categorized_output(title: str, items: list[str]) -> str:
    lines = [f"# {title}", ""]
    lines.extend(f"- {item}" for item in items)
    return "\n".join(lines) + "\n"


# ── Private helpers ──


def _session_status(session: SessionDescriptor, cache: dict[str, CacheEntry], force: bool) -> str:
    if force:
        return "force"
    if needs_extraction(session, cache):
        return "new/changed"
    return "cached"


def _describe_session(session: SessionDescriptor) -> str:
    size_kb = session.size_bytes // 1024
    modified = session.modified_at.strftime("%Y-%m-%d %H:%M")
    return f"{session.session_id} ({size_kb} KB, {modified})"
