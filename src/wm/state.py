"""state.py — Layout of the project-local .wm/ directory.

    .wm/
      config.toml            operations + oracle settings
      state.md               accumulated tacit knowledge (extract/compress)
      working_set.md         last compiled working set
      hook.log               log of hook-triggered runs
      sessions/<id>/         per-session checkpoint + working set
      distill/               batch cache, raw extractions, guardrails, metis

The directory is resolved on every call: hooks run with CLAUDE_PROJECT_DIR
set, interactive commands fall back to the current working directory.
"""

import logging
import os
from pathlib import Path

from wm.path_utils import write_text_atomic

WM_DIR = ".wm"
STATE_FILE = "state.md"
WORKING_SET_FILE = "working_set.md"
HOOK_LOG_FILE = "hook.log"
SESSIONS_DIR = "sessions"
DISTILL_DIR = "distill"

_HOOK_LOG_FORMAT = "[%(asctime)s] [%(name)s] %(message)s"


class WmError(Exception):
    """Base class for command-level failures reported to the user."""


class NotInitializedError(WmError):
    """Raised when a command needs .wm/ and it does not exist."""

    def __init__(self):
        super().__init__("Not initialized. Run 'wm init' first.")


class InvalidSessionIdError(WmError):
    """Raised for a session id that cannot be used as a directory name."""

    def __init__(self, session_id: str):
        super().__init__(f"Invalid session id: {session_id!r}")


def wm_dir() -> Path:
    """Get the .wm directory for the current project."""
    project_dir = os.environ.get("CLAUDE_PROJECT_DIR")
    if project_dir:
        return Path(project_dir) / WM_DIR
    return Path(WM_DIR)


def wm_path(*parts: str) -> Path:
    """Get a path inside .wm/."""
    return wm_dir().joinpath(*parts)


def is_initialized() -> bool:
    return wm_dir().is_dir()


def require_initialized() -> None:
    if not is_initialized():
        raise NotInitializedError()


def validate_session_id(session_id: str) -> str:
    """Reject ids that could resolve outside .wm/sessions/."""
    if (
        not session_id
        or ".." in session_id
        or any(sep in session_id for sep in ("/", "\\", "\0"))
    ):
        raise InvalidSessionIdError(session_id)
    return session_id


def session_dir(session_id: str) -> Path:
    return wm_path(SESSIONS_DIR, validate_session_id(session_id))


def distill_dir() -> Path:
    return wm_path(DISTILL_DIR)


def read_document(path: Path) -> str:
    """Read a markdown document, treating a missing file as empty."""
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return ""


def read_state() -> str:
    return read_document(wm_path(STATE_FILE))


def write_state(content: str) -> None:
    write_text_atomic(wm_path(STATE_FILE), content)


def read_working_set(session_id: str | None = None) -> str:
    if session_id:
        return read_document(session_dir(session_id) / WORKING_SET_FILE)
    return read_document(wm_path(WORKING_SET_FILE))


def write_working_set(content: str, session_id: str | None = None) -> Path:
    """Write the working set, per session when an id is given.

    Per-session files keep concurrent sessions in one project from
    overwriting each other's compiled context.
    """
    if session_id:
        path = session_dir(session_id) / WORKING_SET_FILE
    else:
        path = wm_path(WORKING_SET_FILE)
    write_text_atomic(path, content)
    return path


def configure_hook_log(level: int = logging.INFO) -> logging.Handler | None:
    """Attach a .wm/hook.log file handler to the ``wm`` logger.

    Does nothing when the project is not initialized, so hooks fired in
    projects without .wm/ leave no trace. Returns the handler (or None).
    """
    if not is_initialized():
        return None

    logger = logging.getLogger("wm")
    log_path = wm_path(HOOK_LOG_FILE).resolve()
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_path:
            return handler

    handler = logging.FileHandler(log_path, encoding="utf-8")
    handler.setFormatter(logging.Formatter(_HOOK_LOG_FORMAT, datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler
