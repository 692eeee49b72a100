"""compress.py — Rewrite state.md into fewer, higher-level insights.

The oracle merges related items, abstracts specific instances into
general patterns and drops superseded ones. The previous state is kept
in state.md.backup whenever a compressed version replaces it.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from wm.oracle import Oracle, RunContext, call_oracle, get_oracle, parse_marker_response
from wm.path_utils import write_text_atomic
from wm.state import STATE_FILE, read_state, require_initialized, wm_path, write_state

logger = logging.getLogger(__name__)

COMPRESSED_MARKER = "WAS_COMPRESSED"
BACKUP_FILE = "state.md.backup"

COMPRESSION_PROMPT = """You are compressing accumulated tacit knowledge into a more concise form.

WHAT WE ARE PRESERVING:
- Rationale behind decisions (WHY this approach)
- Paths rejected and why
- Constraints discovered through friction
- Preferences revealed by corrections
- Patterns followed without stating them

COMPRESSION STRATEGIES:
1. MERGE related items into broader principles
2. ABSTRACT specific instances into general patterns
3. REMOVE items superseded by later understanding or too specific to reuse
4. PRESERVE hard constraints, strongly corrected preferences and architectural decisions with clear rationale
5. CONSOLIDATE structure: group related items under clear headings and keep bullets short

THE GOAL: a new session six months from now should get the essential wisdom in fewer words. Compress aggressively but preserve meaning.

RESPONSE FORMAT:

If compression was possible, respond:
WAS_COMPRESSED: YES

<compressed markdown content>

If the state is already concise, respond:
WAS_COMPRESSED: NO"""


@dataclass
class CompressionOutcome:
    compressed: bool
    lines_before: int = 0
    lines_after: int = 0

    @property
    def reduction_percent(self) -> int:
        if not self.lines_before:
            return 0
        return 100 - (self.lines_after * 100 // self.lines_before)


def run(oracle: Optional[Oracle] = None, ctx: Optional[RunContext] = None) -> CompressionOutcome:
    require_initialized()

    current_state = read_state()
    if not current_state.strip():
        print("Nothing to compress - state.md is empty.")
        return CompressionOutcome(compressed=False)

    lines_before = len(current_state.splitlines())
    logger.info("Starting compression of %s (%d lines, %d chars)", STATE_FILE, lines_before, len(current_state))
    print(f"Compressing state.md ({lines_before} lines)...")

    reply = call_oracle(
        oracle or get_oracle(),
        COMPRESSION_PROMPT,
        f"CURRENT STATE TO COMPRESS:\n\n{current_state}\n\nOUTPUT:",
        ctx,
    )
    response = parse_marker_response(reply, COMPRESSED_MARKER)

    if not response.is_positive:
        logger.info("No compression possible, state already concise")
        print("State is already concise - no compression needed.")
        return CompressionOutcome(compressed=False, lines_before=lines_before, lines_after=lines_before)

    if not response.content.strip():
        logger.warning("Compression reply had no content, keeping current state")
        print("Compression returned no content - state.md left unchanged.")
        return CompressionOutcome(compressed=False, lines_before=lines_before, lines_after=lines_before)

    write_text_atomic(wm_path(BACKUP_FILE), current_state)
    write_state(response.content)

    outcome = CompressionOutcome(
        compressed=True,
        lines_before=lines_before,
        lines_after=len(response.content.splitlines()),
    )
    logger.info(
        "Compressed %d -> %d lines (%d%% reduction)",
        outcome.lines_before, outcome.lines_after, outcome.reduction_percent,
    )
    print(
        f"Compressed: {outcome.lines_before} → {outcome.lines_after} lines "
        f"({outcome.reduction_percent}% reduction)"
    )
    print(f"Backup saved to .wm/{BACKUP_FILE}")
    return outcome
