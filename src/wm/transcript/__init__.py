"""Transcript ingestion: records, discovery/parsing, selection and formatting."""

from wm.transcript.formatter import format_context
from wm.transcript.records import (
    AssistantMessage,
    MalformedRecordError,
    SessionMetadata,
    SessionSummary,
    ToolCall,
    ToolInvocation,
    ToolResult,
    TranscriptRecord,
    TranscriptSchema,
    Unknown,
    UserMessage,
)
from wm.transcript.selector import carryover_bounds, select_since, select_window
from wm.transcript.store import (
    SessionDescriptor,
    TranscriptReadError,
    detect_schema,
    discover_codex_sessions,
    discover_sessions,
    parse,
)

__all__ = [
    "AssistantMessage",
    "MalformedRecordError",
    "SessionDescriptor",
    "SessionMetadata",
    "SessionSummary",
    "ToolCall",
    "ToolInvocation",
    "ToolResult",
    "TranscriptReadError",
    "TranscriptRecord",
    "TranscriptSchema",
    "Unknown",
    "UserMessage",
    "carryover_bounds",
    "detect_schema",
    "discover_codex_sessions",
    "discover_sessions",
    "format_context",
    "parse",
    "select_since",
    "select_window",
]
