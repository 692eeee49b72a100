"""Tests for transcript record decoding (rich and flat schemas)."""

import json

import pytest

from wm.transcript.records import (
    AssistantMessage,
    MalformedRecordError,
    SessionMetadata,
    SessionSummary,
    ToolCall,
    ToolInvocation,
    ToolResult,
    TranscriptSchema,
    Unknown,
    UserMessage,
    decode_flat,
    decode_line,
    decode_rich,
)


def _rich(record_type: str, content, **extra) -> dict:
    return {
        "type": record_type,
        "uuid": "u-1",
        "parentUuid": None,
        "sessionId": "sess-1",
        "timestamp": "2025-01-01T10:00:00.000Z",
        "message": {"role": record_type, "content": content},
        **extra,
    }


def _flat(entry_type: str, payload: dict) -> dict:
    return {"timestamp": "2025-01-01T10:00:00.000Z", "type": entry_type, "payload": payload}


# ---------------------------------------------------------------------------
# Rich session schema
# ---------------------------------------------------------------------------


class TestDecodeRich:
    def test_user_string_content(self):
        record = decode_rich(_rich("user", "Hello there"))
        assert isinstance(record, UserMessage)
        assert record.text_content() == "Hello there"
        assert record.session_id == "sess-1"
        assert record.is_message()
        assert record.is_user_message()

    def test_user_text_blocks_and_tool_results(self):
        record = decode_rich(_rich("user", [
            {"type": "text", "text": "first"},
            {"type": "tool_result", "tool_use_id": "t1", "content": "file contents"},
            {"type": "text", "text": "second"},
        ]))
        assert record.text_content() == "first\nsecond"
        assert record.tool_results() == ("file contents",)

    def test_tool_result_with_block_content(self):
        record = decode_rich(_rich("user", [
            {"type": "tool_result", "content": [{"type": "text", "text": "nested"}]},
        ]))
        assert record.tool_results() == ("nested",)
        assert record.text_content() == ""

    def test_assistant_blocks(self):
        record = decode_rich(_rich("assistant", [
            {"type": "thinking", "thinking": "Let me look"},
            {"type": "text", "text": "Reading the file"},
            {"type": "tool_use", "id": "t1", "name": "Read", "input": {"file_path": "/a.py"}},
        ]))
        assert isinstance(record, AssistantMessage)
        assert record.thinking() == "Let me look"
        assert record.text_content() == "Reading the file"
        assert record.tool_calls() == (ToolCall(name="Read", input={"file_path": "/a.py"}),)

    def test_summary(self):
        record = decode_rich({"type": "summary", "summary": "Refactored config", "leafUuid": "x"})
        assert isinstance(record, SessionSummary)
        assert record.is_summary()
        assert not record.is_message()
        assert record.timestamp is None
        assert record.text_content() == "Refactored config"

    def test_unrecognised_type_is_unknown(self):
        record = decode_rich({"type": "file-history-snapshot", "snapshot": {}})
        assert isinstance(record, Unknown)
        assert not record.is_known()
        assert record.record_type == "file-history-snapshot"

    def test_user_without_message_is_unknown(self):
        assert isinstance(decode_rich({"type": "user"}), Unknown)

    def test_missing_type_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            decode_rich({"message": {"content": "x"}})

    def test_non_object_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            decode_rich(["user"])


# ---------------------------------------------------------------------------
# Flat event schema
# ---------------------------------------------------------------------------


class TestDecodeFlat:
    def test_session_meta(self):
        record = decode_flat(_flat("session_meta", {"id": "abc", "cwd": "/work/proj"}))
        assert isinstance(record, SessionMetadata)
        assert record.session_id == "abc"
        assert record.cwd == "/work/proj"
        assert not record.is_message()

    def test_user_message(self):
        record = decode_flat(_flat("event_msg", {"type": "user_message", "message": "run tests"}))
        assert isinstance(record, UserMessage)
        assert record.text_content() == "run tests"

    def test_agent_message(self):
        record = decode_flat(_flat("event_msg", {"type": "agent_message", "message": "done"}))
        assert isinstance(record, AssistantMessage)
        assert record.text_content() == "done"

    def test_agent_reasoning_is_thinking_only(self):
        record = decode_flat(_flat("event_msg", {"type": "agent_reasoning", "text": "hmm"}))
        assert record.is_assistant_message()
        assert record.thinking() == "hmm"
        assert record.text_content() == ""

    def test_function_call(self):
        args = json.dumps({"command": ["bash", "-lc", "ls"]})
        record = decode_flat(_flat("response_item", {"type": "function_call", "name": "shell", "arguments": args}))
        assert isinstance(record, ToolInvocation)
        assert record.is_tool_record()
        assert not record.is_message()
        assert record.tool_calls()[0].arguments() == {"command": ["bash", "-lc", "ls"]}

    def test_function_call_output_non_string(self):
        record = decode_flat(_flat("response_item", {"type": "function_call_output", "output": {"ok": True}}))
        assert isinstance(record, ToolResult)
        assert record.tool_results() == ('{"ok": true}',)

    def test_token_count_is_unknown(self):
        record = decode_flat(_flat("event_msg", {"type": "token_count", "info": {}}))
        assert isinstance(record, Unknown)
        assert record.record_type == "event_msg/token_count"

    def test_missing_payload_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            decode_flat({"timestamp": "2025-01-01T10:00:00Z", "type": "event_msg"})


class TestDecodeLine:
    def test_invalid_json_is_malformed(self):
        with pytest.raises(MalformedRecordError):
            decode_line("{not json", TranscriptSchema.RICH)

    def test_dispatches_by_schema(self):
        line = json.dumps(_flat("event_msg", {"type": "user_message", "message": "hi"}))
        assert isinstance(decode_line(line, TranscriptSchema.FLAT), UserMessage)


class TestRecordHelpers:
    def test_tool_call_arguments_bad_json(self):
        assert ToolCall(name="shell", input="{broken").arguments() == {}

    def test_tool_call_arguments_non_dict(self):
        assert ToolCall(name="Bash", input=["a"]).arguments() == {}

    def test_with_session_stamps_missing_id(self):
        record = UserMessage(text="hi").with_session("s1")
        assert record.session_id == "s1"
        assert record.text_content() == "hi"

    def test_with_session_keeps_existing_id(self):
        record = UserMessage(session_id="orig", text="hi")
        assert record.with_session("other") is record

    def test_parsed_timestamp(self):
        record = UserMessage(timestamp="2025-01-01T10:00:00.123456789Z")
        ts = record.parsed_timestamp()
        assert ts is not None
        assert (ts.hour, ts.microsecond) == (10, 123456)

    def test_unparseable_timestamp(self):
        assert UserMessage(timestamp="yesterday").parsed_timestamp() is None
