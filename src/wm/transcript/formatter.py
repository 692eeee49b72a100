"""formatter.py — Render selected records as plain-text context for the oracle.

Each record becomes one or more labeled blocks, separated by blank lines:

    USER: ...          user text, with injected reminder/environment blocks removed
    ASSISTANT: ...     assistant text
    THINKING: ...      assistant reasoning
    TOOL: Name(arg)    tool invocation with a short argument summary
    TOOL_RESULT: ...   tool output, truncated to TOOL_OUTPUT_LIMIT bytes
    SUMMARY: ...       compacted-session summary
"""

from typing import Iterable, Optional

from wm.transcript.records import ToolCall, TranscriptRecord

TOOL_OUTPUT_LIMIT = 500
TRUNCATION_MARKER = "...[truncated]"

# Injected boilerplate, not authored content
INJECTED_TAGS = (
    ("<system-reminder>", "</system-reminder>"),
    ("<environment_context>", "</environment_context>"),
)

# Tool name -> argument key holding the interesting bit
TOOL_SUMMARY_KEYS = {
    "Edit": "file_path",
    "Write": "file_path",
    "Read": "file_path",
    "Bash": "command",
    "Glob": "pattern",
    "Grep": "pattern",
    "shell": "command",
    "read_file": "path",
    "write_file": "path",
    "edit_file": "target_file",
}


def format_context(records: Iterable[TranscriptRecord]) -> str:
    """Render records in order. Empty input renders as ""."""
    blocks: list[str] = []
    for record in records:
        blocks.extend(_render(record))
    return "\n\n".join(blocks)


def strip_injected(text: str) -> str:
    """Remove every injected tag block; an unclosed tag drops the rest of the text."""
    for open_tag, close_tag in INJECTED_TAGS:
        text = _strip_tag(text, open_tag, close_tag)
    return text.strip()


def truncate_output(text: str, limit: int = TOOL_OUTPUT_LIMIT) -> str:
    """Cut text to at most ``limit`` UTF-8 bytes on a character boundary."""
    encoded = text.encode("utf-8")
    if len(encoded) <= limit:
        return text
    return encoded[:limit].decode("utf-8", errors="ignore") + TRUNCATION_MARKER


def tool_summary(call: ToolCall) -> str:
    key = TOOL_SUMMARY_KEYS.get(call.name)
    if key is None:
        return ""
    value = call.arguments().get(key)
    # shell commands arrive as argv, e.g. ["zsh", "-lc", "pytest -x"]
    if isinstance(value, list):
        value = value[-1] if value else None
    return value if isinstance(value, str) else ""


# ── Private helpers ──


def _render(record: TranscriptRecord) -> list[str]:
    if record.is_summary():
        return _labeled("SUMMARY", record.text_content())

    blocks: list[str] = []
    for output in record.tool_results():
        blocks += _labeled("TOOL_RESULT", truncate_output(output))

    if record.is_user_message():
        blocks += _labeled("USER", strip_injected(record.text_content()))
        return blocks

    blocks += _labeled("THINKING", record.thinking())
    for call in record.tool_calls():
        blocks.append(_render_call(call))
    if record.is_assistant_message():
        blocks += _labeled("ASSISTANT", record.text_content())
    return blocks


def _render_call(call: ToolCall) -> str:
    summary = tool_summary(call)
    if summary:
        return f"TOOL: {call.name}({summary})"
    return f"TOOL: {call.name}"


def _labeled(label: str, text: Optional[str]) -> list[str]:
    if not text or not text.strip():
        return []
    return [f"{label}: {text}"]


def _strip_tag(text: str, open_tag: str, close_tag: str) -> str:
    parts = []
    rest = text
    while True:
        start = rest.find(open_tag)
        if start == -1:
            parts.append(rest)
            break
        parts.append(rest[:start])
        end = rest.find(close_tag, start + len(open_tag))
        if end == -1:
            break
        rest = rest[end + len(close_tag):]
    return "".join(parts)
