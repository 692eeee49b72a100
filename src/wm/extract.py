"""extract.py — Incremental extraction of tacit knowledge from one session.

Each run only looks at what the session said since the last checkpoint,
plus a short carry-over window before it for continuity, and asks the
oracle to merge anything worth keeping into .wm/state.md.

The checkpoint is moved on every completed run, whether or not knowledge
was found, and always to the time captured *before* the transcript was
read: messages appended while the oracle is thinking belong to the next run.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from wm.checkpoint import read_checkpoint, write_checkpoint
from wm.config import is_operation_enabled
from wm.oracle import (
    EXTRACTION_PROMPT,
    Oracle,
    RunContext,
    build_extraction_message,
    call_oracle,
    get_oracle,
    parse_marker_response,
)
from wm.path_utils import utc_now
from wm.state import WmError, is_initialized, read_state, require_initialized, write_state
from wm.transcript.formatter import format_context
from wm.transcript.selector import carryover_bounds, select_since, select_window
from wm.transcript.store import claude_projects_dir, parse

logger = logging.getLogger(__name__)

KNOWLEDGE_MARKER = "HAS_KNOWLEDGE"
HOOK_TRANSCRIPT_NAME = "transcript.jsonl"


@dataclass
class ExtractionOutcome:
    """What one extraction run did."""
    messages_processed: int = 0
    has_knowledge: bool = False
    skipped: Optional[str] = None


def extract_from_transcript(
    transcript_path: Path,
    session_id: Optional[str],
    oracle: Oracle,
    ctx: Optional[RunContext] = None,
) -> ExtractionOutcome:
    """Run one incremental extraction pass over a transcript.

    Raises TranscriptReadError if the transcript cannot be read and
    OracleError if the oracle call fails; in both cases the checkpoint
    is left where it was.
    """
    logger.info("Starting extraction from %s (session: %s)", transcript_path, session_id)

    read_at = utc_now()
    current_state = read_state()
    cursor = read_checkpoint(session_id)
    logger.info("Last extracted: %s", cursor)

    records = parse(Path(transcript_path))
    logger.info("Parsed %d transcript records", len(records))

    carryover = None
    if cursor is not None:
        start, end = carryover_bounds(cursor)
        window = select_window(records, start, end, session_id)
        if window:
            logger.info("Including %d carry-over records", len(window))
            carryover = format_context(window) or None

    messages = select_since(records, cursor, session_id)
    if not messages:
        logger.info("No new messages for this session, skipping")
        return ExtractionOutcome(skipped="No new transcript content to extract from.")

    transcript = format_context(messages)
    if not transcript.strip():
        logger.info("Formatted transcript is empty, skipping")
        return ExtractionOutcome(skipped="No extractable content in new messages.")

    logger.info("Processing %d new messages", len(messages))
    reply = call_oracle(
        oracle,
        EXTRACTION_PROMPT,
        build_extraction_message(current_state, transcript, carryover),
        ctx,
    )
    result = parse_marker_response(reply, KNOWLEDGE_MARKER)

    has_knowledge = result.is_positive and bool(result.content.strip())
    if has_knowledge:
        write_state(result.content)
        logger.info("Complete: %d messages processed, knowledge extracted", len(messages))
    elif result.is_positive:
        logger.warning("Positive reply with no content, keeping current state")
    else:
        logger.info("Complete: %d messages processed, no new knowledge", len(messages))

    write_checkpoint(session_id, read_at)
    return ExtractionOutcome(messages_processed=len(messages), has_knowledge=has_knowledge)


def find_transcript(explicit_path: Optional[str] = None) -> Path:
    """Locate the transcript: explicit path, $CLAUDE_TRANSCRIPT_PATH, newest hook transcript."""
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise WmError(f"Transcript not found: {explicit_path}")

    env_path = os.environ.get("CLAUDE_TRANSCRIPT_PATH")
    if env_path and Path(env_path).exists():
        return Path(env_path)

    candidates = []
    projects_dir = claude_projects_dir()
    if projects_dir.is_dir():
        for project_dir in projects_dir.iterdir():
            transcript = project_dir / HOOK_TRANSCRIPT_NAME
            if transcript.is_file():
                candidates.append(transcript)
    if candidates:
        return max(candidates, key=lambda p: p.stat().st_mtime)

    raise WmError("Could not find transcript. Use --transcript <path> to specify.")


def run(
    transcript_path: Optional[str] = None,
    session_id: Optional[str] = None,
    oracle: Optional[Oracle] = None,
) -> ExtractionOutcome:
    """Interactive extraction: report progress, let errors surface."""
    require_initialized()

    if not is_operation_enabled("extract"):
        logger.info("Extract paused via config, skipping")
        print("Extract is paused. Use 'wm resume extract' to enable.")
        return ExtractionOutcome(skipped="paused")

    transcript = find_transcript(transcript_path)
    session_id = session_id or os.environ.get("CLAUDE_SESSION_ID")
    outcome = extract_from_transcript(transcript, session_id, oracle or get_oracle())

    session_label = session_id or "all"
    if outcome.skipped:
        print(outcome.skipped)
    elif outcome.has_knowledge:
        print(f"State updated ({outcome.messages_processed} messages processed, session: {session_label})")
    else:
        print(
            f"No new knowledge to extract ({outcome.messages_processed} "
            f"messages processed, session: {session_label})"
        )
    return outcome


def run_hook(oracle: Optional[Oracle] = None) -> None:
    """Hook-triggered extraction. Never prints, never raises."""
    if not is_initialized():
        return
    try:
        if not is_operation_enabled("extract"):
            logger.info("Extract paused via config, skipping")
            return
        transcript = find_transcript()
        session_id = os.environ.get("CLAUDE_SESSION_ID")
        extract_from_transcript(transcript, session_id, oracle or get_oracle())
    except Exception as e:
        logger.error("Hook extraction failed: %s", e)
