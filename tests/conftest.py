"""Pytest fixtures for wm tests."""

import logging

import pytest

from wm.oracle import Oracle


class FakeOracle(Oracle):
    """Oracle double that records every call.

    ``reply`` is a string, a list of strings (one per call) or a callable
    taking (system_prompt, message). Exceptions are raised, not returned.
    """

    name = "fake"

    def __init__(self, reply="HAS_KNOWLEDGE: NO"):
        self.reply = reply
        self.calls = []

    def complete(self, system_prompt, message, ctx):
        self.calls.append({
            "system_prompt": system_prompt,
            "message": message,
            "reentry_suppressed": ctx.reentry_suppressed,
            "env": ctx.child_env(),
        })
        reply = self.reply
        if isinstance(reply, list):
            reply = reply[min(len(self.calls), len(reply)) - 1]
        if callable(reply):
            reply = reply(system_prompt, message)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def fake_oracle():
    """Factory for FakeOracle instances."""
    return FakeOracle


@pytest.fixture
def home_dir(tmp_path, monkeypatch):
    """An isolated home directory (~/.claude, ~/.codex live here)."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def project_dir(tmp_path, monkeypatch, home_dir):
    """A project directory that wm resolves .wm/ against."""
    project = tmp_path / "project"
    project.mkdir()
    monkeypatch.setenv("CLAUDE_PROJECT_DIR", str(project))
    for var in ("WM_DISABLED", "SUPEREGO_DISABLED", "CLAUDE_SESSION_ID", "CLAUDE_TRANSCRIPT_PATH"):
        monkeypatch.delenv(var, raising=False)
    return project


@pytest.fixture
def wm_root(project_dir):
    """An initialized .wm/ directory."""
    root = project_dir / ".wm"
    root.mkdir()
    (root / "state.md").write_text("")
    return root


@pytest.fixture(autouse=True)
def _detach_wm_log_handlers():
    """Drop file handlers the CLI attaches to the wm logger."""
    logger = logging.getLogger("wm")
    before = list(logger.handlers)
    level = logger.level
    yield
    for handler in list(logger.handlers):
        if handler not in before:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
