"""selector.py — Session- and time-scoped slices of a parsed transcript.

Two selections feed extraction:

  select_since   everything after the checkpoint cursor (the new work)
  select_window  the records in [start, end), used for carry-over context

Both apply the same session and content filters. Summaries are compacted
context with no natural position in time, so they pass the cursor check
and the session filter alike.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from wm.transcript.records import TranscriptRecord

CARRYOVER_WINDOW = timedelta(minutes=5)


def select_since(
    records: Iterable[TranscriptRecord],
    cursor: Optional[datetime],
    session_filter: Optional[str],
    include_tools: bool = False,
) -> list[TranscriptRecord]:
    """Records newer than ``cursor`` (all matching records when None).

    Summaries and records without a parseable timestamp always pass the
    cursor check.
    """
    selected = []
    for record in records:
        if not _matches(record, session_filter, include_tools):
            continue
        if cursor is not None and not record.is_summary():
            ts = record.parsed_timestamp()
            if ts is not None and ts <= cursor:
                continue
        selected.append(record)
    return selected


def select_window(
    records: Iterable[TranscriptRecord],
    start: datetime,
    end: datetime,
    session_filter: Optional[str],
    include_tools: bool = False,
) -> list[TranscriptRecord]:
    """Records whose timestamp falls in ``[start, end)``.

    Unlike select_since, a record without a timestamp never qualifies.
    """
    selected = []
    for record in records:
        if not _matches(record, session_filter, include_tools):
            continue
        ts = record.parsed_timestamp()
        if ts is None or not (start <= ts < end):
            continue
        selected.append(record)
    return selected


def carryover_bounds(cursor: datetime) -> tuple[datetime, datetime]:
    """The overlap window re-read before a checkpoint for continuity."""
    return cursor - CARRYOVER_WINDOW, cursor


def _matches(record: TranscriptRecord, session_filter: Optional[str], include_tools: bool) -> bool:
    if not record.is_known():
        return False
    if record.is_summary():
        return True
    if session_filter is not None and record.session_id != session_filter:
        return False
    if record.is_message():
        return True
    return include_tools and record.is_tool_record()
