"""compile.py — Assemble the working set injected into new prompts.

Everything combined here is already curated (dive context from outside,
guardrails and metis from distill), so there is no oracle call:

    dive_context.md | OH_context.md  ->
    distill/guardrails.md            ->  joined by "---"  ->  working_set.md
    distill/metis.md                 ->
"""

import json
import logging
import sys
from typing import Optional, TextIO

from wm.config import is_operation_enabled
from wm.distill import GUARDRAILS_FILE, METIS_FILE
from wm.state import (
    distill_dir,
    is_initialized,
    read_document,
    require_initialized,
    wm_path,
    write_working_set,
)

logger = logging.getLogger(__name__)

HOOK_EVENT = "UserPromptSubmit"
SECTION_SEPARATOR = "\n\n---\n\n"
DIVE_CONTEXT_FILES = ("dive_context.md", "OH_context.md")


def read_dive_context() -> str:
    """Session grounding prepared outside wm; the legacy name is a fallback."""
    for name in DIVE_CONTEXT_FILES:
        path = wm_path(name)
        if path.exists():
            return read_document(path)
    return ""


def combine_context(dive_context: str, guardrails: str, metis: str) -> str:
    sections = [s.strip() for s in (dive_context, guardrails, metis) if s.strip()]
    return SECTION_SEPARATOR.join(sections)


def compile_working_set() -> str:
    dive_context = read_dive_context()
    guardrails = read_document(distill_dir() / GUARDRAILS_FILE)
    metis = read_document(distill_dir() / METIS_FILE)

    if dive_context.strip():
        logger.info("Dive context: %d bytes", len(dive_context))
    if guardrails.strip():
        logger.info("Guardrails: %d bytes", len(guardrails))
    if metis.strip():
        logger.info("Metis: %d bytes", len(metis))

    return combine_context(dive_context, guardrails, metis)


def hook_response(additional_context: Optional[str]) -> dict:
    """UserPromptSubmit hook payload; {} injects nothing."""
    if not additional_context:
        return {}
    return {
        "hookSpecificOutput": {
            "hookEventName": HOOK_EVENT,
            "additionalContext": additional_context,
        }
    }


def run() -> Optional[str]:
    """Interactive compile into .wm/working_set.md."""
    require_initialized()

    if not is_operation_enabled("compile"):
        print("Compile is paused. Use 'wm resume compile' to enable.")
        return None

    combined = compile_working_set()
    if not combined.strip():
        print("No distilled knowledge found. Run 'wm distill' first.")
        return None

    write_working_set(combined)
    print("Compiled working set to .wm/working_set.md")
    return combined


def run_hook(session_id: str, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
    """Prompt-submit hook: print the hook JSON. Never fails.

    The hook input on stdin (the user's prompt) is consumed but not used;
    distilled content is always relevant.
    """
    stdout = stdout or sys.stdout
    if not is_initialized():
        return

    response: dict = {}
    try:
        if not is_operation_enabled("compile"):
            logger.info("Compile paused via config, returning empty")
        else:
            logger.info("Hook fired (session: %s)", session_id)
            _consume_hook_input(stdin or sys.stdin)
            combined = compile_working_set()
            if combined.strip():
                write_working_set(combined, session_id)
                response = hook_response(combined)
                logger.info("Complete")
            else:
                logger.info("No distilled content found, returning empty")
    except Exception as e:
        logger.error("Hook compile failed: %s", e)
        response = {}

    stdout.write(json.dumps(response) + "\n")


def _consume_hook_input(stream: TextIO) -> None:
    if stream.isatty():
        return
    stream.read()
