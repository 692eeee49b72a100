"""records.py — Typed transcript records for both session log schemas.

Two schema families are decoded onto the same closed set of record types:

  rich session (Claude Code, ~/.claude/projects/<id>/<uuid>.jsonl):
    {"type": "user"|"assistant"|"summary"|..., "uuid", "parentUuid",
     "sessionId", "timestamp", "message": {"role", "content"}}
    content is a string or a list of text / tool_use / tool_result /
    thinking blocks.

  flat event (Codex, ~/.codex/sessions/YYYY/MM/DD/rollout-*.jsonl):
    {"timestamp", "type": "session_meta"|"event_msg"|"response_item"|...,
     "payload": {"type", ...}}

Raw dicts never leave this module. Anything we do not recognise decodes to
Unknown, which every consumer filters out; the log producers are versioned
independently of us, so new record shapes must not break parsing.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from wm.path_utils import parse_timestamp


class TranscriptSchema(str, Enum):
    RICH = "rich"
    FLAT = "flat"


class MalformedRecordError(ValueError):
    """A line that is not even a well-formed record envelope."""


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation: name plus its argument blob.

    Rich transcripts carry arguments as a JSON object, flat transcripts as
    a JSON-encoded string. ``arguments()`` hides the difference.
    """
    name: str
    input: Any = None

    def arguments(self) -> dict:
        value = self.input
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return {}
        return value if isinstance(value, dict) else {}


# =============================================================================
# RECORD TYPES
# =============================================================================

@dataclass(frozen=True)
class TranscriptRecord:
    """Base record. Capability queries answer for every variant."""
    timestamp: Optional[str] = None
    session_id: Optional[str] = None

    def parsed_timestamp(self) -> Optional[datetime]:
        return parse_timestamp(self.timestamp)

    def is_user_message(self) -> bool:
        return False

    def is_assistant_message(self) -> bool:
        return False

    def is_message(self) -> bool:
        return self.is_user_message() or self.is_assistant_message()

    def is_summary(self) -> bool:
        return False

    def is_tool_record(self) -> bool:
        return False

    def is_known(self) -> bool:
        return True

    def text_content(self) -> str:
        return ""

    def thinking(self) -> str:
        return ""

    def tool_calls(self) -> tuple[ToolCall, ...]:
        return ()

    def tool_results(self) -> tuple[str, ...]:
        return ()

    def with_session(self, session_id: Optional[str]) -> "TranscriptRecord":
        """Copy of this record stamped with a session id (if it has none)."""
        if self.session_id or not session_id:
            return self
        return replace(self, session_id=session_id)


@dataclass(frozen=True)
class UserMessage(TranscriptRecord):
    text: str = ""
    results: tuple[str, ...] = ()

    def is_user_message(self) -> bool:
        return True

    def text_content(self) -> str:
        return self.text

    def tool_results(self) -> tuple[str, ...]:
        return self.results


@dataclass(frozen=True)
class AssistantMessage(TranscriptRecord):
    text: str = ""
    reasoning: str = ""
    calls: tuple[ToolCall, ...] = ()

    def is_assistant_message(self) -> bool:
        return True

    def text_content(self) -> str:
        return self.text

    def thinking(self) -> str:
        return self.reasoning

    def tool_calls(self) -> tuple[ToolCall, ...]:
        return self.calls


@dataclass(frozen=True)
class SessionSummary(TranscriptRecord):
    summary: str = ""

    def is_summary(self) -> bool:
        return True

    def text_content(self) -> str:
        return self.summary


@dataclass(frozen=True)
class SessionMetadata(TranscriptRecord):
    cwd: Optional[str] = None


@dataclass(frozen=True)
class ToolInvocation(TranscriptRecord):
    call: ToolCall = field(default_factory=lambda: ToolCall(name=""))

    def is_tool_record(self) -> bool:
        return True

    def tool_calls(self) -> tuple[ToolCall, ...]:
        return (self.call,)


@dataclass(frozen=True)
class ToolResult(TranscriptRecord):
    output: str = ""

    def is_tool_record(self) -> bool:
        return True

    def text_content(self) -> str:
        return self.output

    def tool_results(self) -> tuple[str, ...]:
        return (self.output,)


@dataclass(frozen=True)
class Unknown(TranscriptRecord):
    record_type: str = ""

    def is_known(self) -> bool:
        return False


# =============================================================================
# DECODING
# =============================================================================

def decode_line(line: str, schema: TranscriptSchema) -> TranscriptRecord:
    """Decode one JSONL line.

    Raises MalformedRecordError if the line is not valid JSON or not a
    well-formed envelope for the schema. Envelope-valid lines always
    decode, falling back to Unknown.
    """
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise MalformedRecordError(f"invalid JSON: {e}") from e

    if schema is TranscriptSchema.FLAT:
        return decode_flat(obj)
    return decode_rich(obj)


def decode_rich(obj: Any) -> TranscriptRecord:
    """Decode a rich-session record (role-tagged messages with blocks)."""
    if not isinstance(obj, dict) or not isinstance(obj.get("type"), str):
        raise MalformedRecordError("rich record must be an object with a string 'type'")

    record_type = obj["type"]
    timestamp = _str_or_none(obj.get("timestamp"))
    session_id = _str_or_none(obj.get("sessionId"))

    if record_type == "summary":
        summary = obj.get("summary")
        if not isinstance(summary, str):
            return Unknown(timestamp=timestamp, session_id=session_id, record_type=record_type)
        return SessionSummary(timestamp=timestamp, session_id=session_id, summary=summary)

    message = obj.get("message")
    if record_type not in ("user", "assistant") or not isinstance(message, dict):
        return Unknown(timestamp=timestamp, session_id=session_id, record_type=record_type)

    content = message.get("content", "")

    if record_type == "user":
        return UserMessage(
            timestamp=timestamp,
            session_id=session_id,
            text=_join_blocks(content, "text"),
            results=_tool_result_blocks(content),
        )

    return AssistantMessage(
        timestamp=timestamp,
        session_id=session_id,
        text=_join_blocks(content, "text"),
        reasoning=_join_blocks(content, "thinking", key="thinking"),
        calls=_tool_use_blocks(content),
    )


def decode_flat(obj: Any) -> TranscriptRecord:
    """Decode a flat-event record ({timestamp, type, payload})."""
    if (
        not isinstance(obj, dict)
        or not isinstance(obj.get("timestamp"), str)
        or not isinstance(obj.get("type"), str)
        or not isinstance(obj.get("payload"), dict)
    ):
        raise MalformedRecordError(
            "flat record must be an object with 'timestamp', 'type' and object 'payload'"
        )

    entry_type = obj["type"]
    timestamp = obj["timestamp"]
    payload = obj["payload"]
    payload_type = payload.get("type")

    if entry_type == "session_meta":
        return SessionMetadata(
            timestamp=timestamp,
            session_id=_str_or_none(payload.get("id")),
            cwd=_str_or_none(payload.get("cwd")),
        )

    if entry_type == "event_msg":
        if payload_type == "user_message" and isinstance(payload.get("message"), str):
            return UserMessage(timestamp=timestamp, text=payload["message"])
        if payload_type == "agent_message" and isinstance(payload.get("message"), str):
            return AssistantMessage(timestamp=timestamp, text=payload["message"])
        if payload_type == "agent_reasoning" and isinstance(payload.get("text"), str):
            return AssistantMessage(timestamp=timestamp, reasoning=payload["text"])

    if entry_type == "response_item":
        if payload_type == "function_call" and isinstance(payload.get("name"), str):
            return ToolInvocation(
                timestamp=timestamp,
                call=ToolCall(name=payload["name"], input=payload.get("arguments")),
            )
        if payload_type == "function_call_output" and "output" in payload:
            output = payload["output"]
            if not isinstance(output, str):
                output = json.dumps(output)
            return ToolResult(timestamp=timestamp, output=output)

    return Unknown(timestamp=timestamp, record_type=f"{entry_type}/{payload_type}")


# ── Private helpers ──


def _str_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def _join_blocks(content: Any, block_type: str, key: str = "text") -> str:
    """Join the text of all blocks of one type. Plain-string content is text."""
    if isinstance(content, str):
        return content if block_type == "text" else ""
    if not isinstance(content, list):
        return ""
    parts = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == block_type:
            value = block.get(key)
            if isinstance(value, str) and value:
                parts.append(value)
    return "\n".join(parts)


def _tool_result_blocks(content: Any) -> tuple[str, ...]:
    if not isinstance(content, list):
        return ()
    results = []
    for block in content:
        if not isinstance(block, dict) or block.get("type") != "tool_result":
            continue
        inner = block.get("content", "")
        if isinstance(inner, str):
            results.append(inner)
        elif isinstance(inner, list):
            results.append(_join_blocks(inner, "text"))
        elif inner is not None:
            results.append(json.dumps(inner))
    return tuple(results)


def _tool_use_blocks(content: Any) -> tuple[ToolCall, ...]:
    if not isinstance(content, list):
        return ()
    return tuple(
        ToolCall(name=block.get("name", ""), input=block.get("input"))
        for block in content
        if isinstance(block, dict) and block.get("type") == "tool_use"
    )
