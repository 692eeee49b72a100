"""Tests for incremental single-session extraction."""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from wm.checkpoint import read_checkpoint, write_checkpoint
from wm.config import set_operation_enabled
from wm.extract import extract_from_transcript, find_transcript, run, run_hook
from wm.oracle import CARRYOVER_BEGIN, OracleError, RunContext
from wm.state import InvalidSessionIdError, NotInitializedError, WmError
from wm.transcript.store import TranscriptReadError

T0 = datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)
READ_AT = T0 + timedelta(hours=1)


def _ts(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def _user(text: str, at: datetime, session_id: str = "s1") -> dict:
    return {
        "type": "user",
        "sessionId": session_id,
        "timestamp": _ts(at),
        "message": {"role": "user", "content": text},
    }


def _assistant(text: str, at: datetime, session_id: str = "s1") -> dict:
    return {
        "type": "assistant",
        "sessionId": session_id,
        "timestamp": _ts(at),
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
    }


def _write_transcript(tmp_path, entries: list[dict], name: str = "transcript.jsonl"):
    path = tmp_path / name
    path.write_text("\n".join(json.dumps(e) for e in entries) + "\n")
    return path


@pytest.fixture
def frozen_now():
    with patch("wm.extract.utc_now", return_value=READ_AT):
        yield READ_AT


class TestExtractFromTranscript:
    def test_first_run_writes_state_and_checkpoint(self, wm_root, tmp_path, fake_oracle, frozen_now):
        transcript = _write_transcript(tmp_path, [
            _user("Never use print for logging here", T0),
            _assistant("Switching to the logger", T0 + timedelta(minutes=1)),
        ])
        oracle = fake_oracle("HAS_KNOWLEDGE: YES\n# Preferences\n- Use logging, not print")

        outcome = extract_from_transcript(transcript, "s1", oracle)

        assert outcome.has_knowledge
        assert outcome.messages_processed == 2
        assert (wm_root / "state.md").read_text() == "# Preferences\n- Use logging, not print"
        assert read_checkpoint("s1") == READ_AT

        message = oracle.calls[0]["message"]
        assert message.startswith("CURRENT STATE:\n")
        assert "USER: Never use print for logging here" in message
        assert "ASSISTANT: Switching to the logger" in message
        assert CARRYOVER_BEGIN not in message
        assert message.endswith("OUTPUT:")

    def test_checkpoint_moves_even_without_knowledge(self, wm_root, tmp_path, fake_oracle, frozen_now):
        (wm_root / "state.md").write_text("existing")
        transcript = _write_transcript(tmp_path, [_user("hello", T0)])

        outcome = extract_from_transcript(transcript, "s1", fake_oracle("HAS_KNOWLEDGE: NO"))

        assert not outcome.has_knowledge
        assert (wm_root / "state.md").read_text() == "existing"
        assert read_checkpoint("s1") == READ_AT

    def test_unmarked_reply_is_no_knowledge(self, wm_root, tmp_path, fake_oracle, frozen_now):
        (wm_root / "state.md").write_text("existing")
        transcript = _write_transcript(tmp_path, [_user("hello", T0)])

        extract_from_transcript(transcript, "s1", fake_oracle("I could not decide."))

        assert (wm_root / "state.md").read_text() == "existing"
        assert read_checkpoint("s1") == READ_AT

    def test_positive_without_content_keeps_state(self, wm_root, tmp_path, fake_oracle, frozen_now):
        (wm_root / "state.md").write_text("- accumulated")
        transcript = _write_transcript(tmp_path, [_user("hello", T0)])

        outcome = extract_from_transcript(transcript, "s1", fake_oracle("HAS_KNOWLEDGE: YES\n\n  "))

        assert not outcome.has_knowledge
        assert (wm_root / "state.md").read_text() == "- accumulated"
        assert read_checkpoint("s1") == READ_AT

    def test_rejects_path_like_session_id(self, wm_root, tmp_path, fake_oracle):
        transcript = _write_transcript(tmp_path, [_user("hello", T0, "../../x")])
        oracle = fake_oracle()

        with pytest.raises(InvalidSessionIdError):
            extract_from_transcript(transcript, "../../x", oracle)

        assert oracle.calls == []

    def test_current_state_is_sent(self, wm_root, tmp_path, fake_oracle, frozen_now):
        (wm_root / "state.md").write_text("- prefers small PRs")
        transcript = _write_transcript(tmp_path, [_user("hello", T0)])
        oracle = fake_oracle()

        extract_from_transcript(transcript, "s1", oracle)

        assert oracle.calls[0]["message"].startswith("CURRENT STATE:\n- prefers small PRs\n\n")

    def test_nothing_new_skips_oracle_and_checkpoint(self, wm_root, tmp_path, fake_oracle, frozen_now):
        cursor = T0 + timedelta(minutes=30)
        write_checkpoint("s1", cursor)
        transcript = _write_transcript(tmp_path, [_user("old", T0)])
        oracle = fake_oracle()

        outcome = extract_from_transcript(transcript, "s1", oracle)

        assert outcome.skipped
        assert oracle.calls == []
        assert read_checkpoint("s1") == cursor

    def test_only_new_messages_with_carryover(self, wm_root, tmp_path, fake_oracle, frozen_now):
        cursor = T0 + timedelta(minutes=5)
        write_checkpoint("s1", cursor)
        transcript = _write_transcript(tmp_path, [
            _user("ancient", T0 - timedelta(hours=1)),
            _user("just before the cursor", T0 + timedelta(minutes=2)),
            _user("after the cursor", T0 + timedelta(minutes=10)),
        ])
        oracle = fake_oracle()

        outcome = extract_from_transcript(transcript, "s1", oracle)

        assert outcome.messages_processed == 1
        message = oracle.calls[0]["message"]
        carryover, new = message.split("NEW TRANSCRIPT:\n")
        assert CARRYOVER_BEGIN in carryover
        assert "USER: just before the cursor" in carryover
        assert "ancient" not in message
        assert "USER: after the cursor" in new
        assert "just before the cursor" not in new

    def test_other_sessions_are_ignored(self, wm_root, tmp_path, fake_oracle, frozen_now):
        transcript = _write_transcript(tmp_path, [
            _user("mine", T0, "s1"),
            _user("theirs", T0, "s2"),
        ])
        oracle = fake_oracle()

        extract_from_transcript(transcript, "s1", oracle)

        assert "mine" in oracle.calls[0]["message"]
        assert "theirs" not in oracle.calls[0]["message"]

    def test_oracle_failure_leaves_checkpoint(self, wm_root, tmp_path, fake_oracle, frozen_now):
        transcript = _write_transcript(tmp_path, [_user("hello", T0)])

        with pytest.raises(OracleError):
            extract_from_transcript(transcript, "s1", fake_oracle(OracleError("exit 1")))

        assert read_checkpoint("s1") is None

    def test_reentry_suppressed_only_during_call(self, wm_root, tmp_path, fake_oracle, frozen_now):
        transcript = _write_transcript(tmp_path, [_user("hello", T0)])
        oracle = fake_oracle()
        ctx = RunContext(base_env={})

        extract_from_transcript(transcript, "s1", oracle, ctx)

        assert oracle.calls[0]["reentry_suppressed"]
        assert oracle.calls[0]["env"] == {"WM_DISABLED": "1", "SUPEREGO_DISABLED": "1"}
        assert not ctx.reentry_suppressed
        assert "WM_DISABLED" not in os.environ

    def test_unreadable_transcript(self, wm_root, tmp_path, fake_oracle):
        with pytest.raises(TranscriptReadError):
            extract_from_transcript(tmp_path / "gone.jsonl", "s1", fake_oracle())


class TestFindTranscript:
    def test_explicit_path(self, tmp_path):
        path = _write_transcript(tmp_path, [])
        assert find_transcript(str(path)) == path

    def test_explicit_missing(self, tmp_path):
        with pytest.raises(WmError, match="Transcript not found"):
            find_transcript(str(tmp_path / "missing.jsonl"))

    def test_env_var(self, tmp_path, monkeypatch, home_dir):
        path = _write_transcript(tmp_path, [])
        monkeypatch.setenv("CLAUDE_TRANSCRIPT_PATH", str(path))
        assert find_transcript() == path

    def test_newest_in_projects_dir(self, home_dir, monkeypatch):
        monkeypatch.delenv("CLAUDE_TRANSCRIPT_PATH", raising=False)
        projects = home_dir / ".claude" / "projects"
        older = projects / "-a" / "transcript.jsonl"
        newer = projects / "-b" / "transcript.jsonl"
        for path, mtime in ((older, 1_700_000_000), (newer, 1_700_000_900)):
            path.parent.mkdir(parents=True)
            path.write_text("")
            os.utime(path, (mtime, mtime))
        assert find_transcript() == newer

    def test_nothing_found(self, home_dir, monkeypatch):
        monkeypatch.delenv("CLAUDE_TRANSCRIPT_PATH", raising=False)
        with pytest.raises(WmError, match="Could not find transcript"):
            find_transcript()


class TestRun:
    def test_requires_init(self, project_dir, fake_oracle):
        with pytest.raises(NotInitializedError):
            run(oracle=fake_oracle())

    def test_paused(self, wm_root, fake_oracle, capsys):
        set_operation_enabled("extract", False)
        oracle = fake_oracle()
        run(oracle=oracle)
        assert oracle.calls == []
        assert "paused" in capsys.readouterr().out

    def test_uses_session_env(self, wm_root, tmp_path, fake_oracle, monkeypatch, capsys, frozen_now):
        transcript = _write_transcript(tmp_path, [_user("hello", T0, "env-session")])
        monkeypatch.setenv("CLAUDE_SESSION_ID", "env-session")

        run(str(transcript), oracle=fake_oracle("HAS_KNOWLEDGE: YES\n- x"))

        assert read_checkpoint("env-session") == READ_AT
        assert "State updated (1 messages processed, session: env-session)" in capsys.readouterr().out


class TestRunHook:
    def test_uninitialized_is_silent(self, project_dir, fake_oracle, capsys):
        oracle = fake_oracle()
        run_hook(oracle)
        assert oracle.calls == []
        assert capsys.readouterr() == ("", "")

    def test_errors_are_logged_not_raised(self, wm_root, tmp_path, fake_oracle, monkeypatch, capsys, caplog):
        transcript = _write_transcript(tmp_path, [_user("hello", T0)])
        monkeypatch.setenv("CLAUDE_TRANSCRIPT_PATH", str(transcript))
        monkeypatch.setenv("CLAUDE_SESSION_ID", "s1")

        with caplog.at_level(logging.ERROR, logger="wm.extract"):
            run_hook(fake_oracle(OracleError("exit 1")))

        assert "Hook extraction failed" in caplog.text
        assert capsys.readouterr() == ("", "")

    def test_paused(self, wm_root, fake_oracle, monkeypatch):
        set_operation_enabled("extract", False)
        oracle = fake_oracle()
        run_hook(oracle)
        assert oracle.calls == []

    def test_runs_extraction(self, wm_root, tmp_path, fake_oracle, monkeypatch, frozen_now):
        transcript = _write_transcript(tmp_path, [_user("hello", T0)])
        monkeypatch.setenv("CLAUDE_TRANSCRIPT_PATH", str(transcript))
        monkeypatch.setenv("CLAUDE_SESSION_ID", "s1")

        run_hook(fake_oracle("HAS_KNOWLEDGE: YES\n- learned"))

        assert (wm_root / "state.md").read_text() == "- learned"
        assert read_checkpoint("s1") == READ_AT
