"""store.py — Session discovery and transcript parsing.

Rich-schema sessions live as UUID-named files directly in the project's
directory under ~/.claude/projects/. The project id is the absolute project
path with slashes replaced by dashes:

    /Users/alice/code/wm  ->  ~/.claude/projects/-Users-alice-code-wm/<uuid>.jsonl

Flat-schema sessions are date-partitioned and carry their working directory
in a session_meta record, so filtering by project means peeking into files:

    ~/.codex/sessions/YYYY/MM/DD/rollout-<timestamp>-<uuid>.jsonl

Discovery is stateless: descriptors are rebuilt on every scan and always
returned newest-modified first.
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from wm.transcript.records import (
    MalformedRecordError,
    SessionMetadata,
    TranscriptRecord,
    TranscriptSchema,
    decode_line,
)

logger = logging.getLogger(__name__)

CODEX_PREFIX = "rollout-"
TRANSCRIPT_SUFFIX = ".jsonl"

# session_meta is normally the first line; don't read further than this
META_SCAN_LINES = 5


class TranscriptReadError(OSError):
    """A transcript file could not be opened or read."""


@dataclass(frozen=True)
class SessionDescriptor:
    """A discovered session transcript."""
    session_id: str
    path: Path
    modified_at: datetime
    size_bytes: int
    schema: TranscriptSchema = TranscriptSchema.RICH
    cwd: Optional[str] = None


@dataclass(frozen=True)
class ProjectInfo:
    """A project directory under ~/.claude/projects/."""
    project_id: str
    project_dir: Path
    session_count: int


# =============================================================================
# PATHS
# =============================================================================

def claude_projects_dir() -> Path:
    return Path.home() / ".claude" / "projects"


def codex_sessions_dir() -> Path:
    return Path.home() / ".codex" / "sessions"


def current_project_path() -> Path:
    """CLAUDE_PROJECT_DIR when run from a hook, else the working directory."""
    project_dir = os.environ.get("CLAUDE_PROJECT_DIR")
    if project_dir:
        return Path(project_dir)
    return Path.cwd()


def compute_project_id(project_path: Path) -> str:
    """Absolute (symlink-resolved) path with '/' replaced by '-'."""
    try:
        abs_path = Path(project_path).resolve()
    except OSError:
        abs_path = Path(project_path).absolute()
    return str(abs_path).replace("/", "-")


def get_project_dir(project_path: Path) -> Optional[Path]:
    project_dir = claude_projects_dir() / compute_project_id(project_path)
    return project_dir if project_dir.is_dir() else None


# =============================================================================
# DISCOVERY
# =============================================================================

def discover_sessions(project_path: Path) -> list[SessionDescriptor]:
    """Discover all rich-schema transcripts for a project, newest first.

    A project with no transcript directory yields an empty list.
    """
    project_dir = get_project_dir(project_path)
    if project_dir is None:
        logger.info("No transcript directory for %s", project_path)
        return []
    return discover_sessions_in_dir(project_dir)


def discover_sessions_in_dir(project_dir: Path) -> list[SessionDescriptor]:
    """Discover all *.jsonl transcripts directly inside one directory."""
    sessions = []
    for path in _list_dir(project_dir):
        if path.suffix != TRANSCRIPT_SUFFIX:
            continue
        stat = _stat_file(path)
        if stat is None:
            continue
        sessions.append(SessionDescriptor(
            session_id=path.stem,
            path=path.absolute(),
            modified_at=_mtime(stat),
            size_bytes=stat.st_size,
        ))
    return _newest_first(sessions)


def find_projects_by_filter(filter_text: str) -> list[ProjectInfo]:
    """Find project directories whose id contains ``filter_text``."""
    if not filter_text.strip():
        raise ValueError("Project filter cannot be empty")

    projects = []
    for project_dir in _list_dir(claude_projects_dir()):
        if not project_dir.is_dir() or filter_text not in project_dir.name:
            continue
        count = sum(1 for p in _list_dir(project_dir) if p.suffix == TRANSCRIPT_SUFFIX)
        projects.append(ProjectInfo(
            project_id=project_dir.name,
            project_dir=project_dir,
            session_count=count,
        ))
    return projects


def discover_codex_sessions(project_filter: Optional[str] = None) -> list[SessionDescriptor]:
    """Discover flat-schema sessions under ~/.codex/sessions/, newest first.

    With ``project_filter``, only sessions whose recorded cwd contains the
    filter are returned; sessions without a cwd are skipped when filtering.
    """
    sessions = []
    for year in _subdirs(codex_sessions_dir()):
        for month in _subdirs(year):
            for day in _subdirs(month):
                for path in _list_dir(day):
                    if not is_codex_session_file(path):
                        continue
                    info = _codex_session_info(path)
                    if info is None:
                        continue
                    if project_filter is not None and (
                        info.cwd is None or project_filter not in info.cwd
                    ):
                        continue
                    sessions.append(info)
    return _newest_first(sessions)


def is_codex_session_file(path: Path) -> bool:
    return path.name.startswith(CODEX_PREFIX) and path.name.endswith(TRANSCRIPT_SUFFIX)


def detect_schema(path: Path) -> TranscriptSchema:
    """Pick the schema family from the file naming convention."""
    if is_codex_session_file(Path(path)):
        return TranscriptSchema.FLAT
    return TranscriptSchema.RICH


# =============================================================================
# PARSING
# =============================================================================

def parse(
    path: Path,
    schema: Optional[TranscriptSchema] = None,
    session_id: Optional[str] = None,
) -> list[TranscriptRecord]:
    """Parse a transcript into records, in file order.

    Each non-blank line is decoded independently. Lines that are not a
    well-formed envelope are logged and skipped (the file may be mid-write).
    Only failing to open or read the file raises TranscriptReadError.

    Flat-schema records carry no session id of their own; they inherit
    ``session_id`` when given (a discovered descriptor's id), else the id
    from the file's session_meta or the file name. Rich records keep their own.
    """
    path = Path(path)
    schema = schema or detect_schema(path)
    records: list[TranscriptRecord] = []

    for line_num, line in _read_lines(path):
        if not line.strip():
            continue
        try:
            records.append(decode_line(line, schema))
        except MalformedRecordError as e:
            logger.warning(
                "Skipping malformed line %d in %s: %s", line_num, path.name, e
            )

    if schema is TranscriptSchema.FLAT:
        session_id = session_id or _flat_session_id(path, records)
        records = [record.with_session(session_id) for record in records]

    return records


# ── Private helpers ──


def _read_lines(path: Path) -> Iterator[tuple[int, str]]:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line_num, line in enumerate(f, start=1):
                yield line_num, line
    except OSError as e:
        raise TranscriptReadError(f"Failed to read transcript {path}: {e}") from e


def _flat_session_id(path: Path, records: list[TranscriptRecord]) -> str:
    for record in records:
        if isinstance(record, SessionMetadata) and record.session_id:
            return record.session_id
    return _codex_id_from_name(path)


def _codex_id_from_name(path: Path) -> str:
    stem = path.name[: -len(TRANSCRIPT_SUFFIX)] if path.name.endswith(TRANSCRIPT_SUFFIX) else path.stem
    return stem[len(CODEX_PREFIX):] if stem.startswith(CODEX_PREFIX) else stem


def _codex_session_info(path: Path) -> Optional[SessionDescriptor]:
    stat = _stat_file(path)
    if stat is None:
        return None
    meta = _read_session_meta(path)
    session_id = (meta.session_id if meta else None) or _codex_id_from_name(path)
    return SessionDescriptor(
        session_id=session_id,
        path=path.absolute(),
        modified_at=_mtime(stat),
        size_bytes=stat.st_size,
        schema=TranscriptSchema.FLAT,
        cwd=meta.cwd if meta else None,
    )


def _read_session_meta(path: Path) -> Optional[SessionMetadata]:
    """Look for session_meta in the first few lines; None if absent/unreadable."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for _, line in zip(range(META_SCAN_LINES), f):
                if not line.strip():
                    continue
                try:
                    record = decode_line(line, TranscriptSchema.FLAT)
                except MalformedRecordError:
                    continue
                if isinstance(record, SessionMetadata):
                    return record
    except OSError as e:
        logger.warning("Could not read session metadata from %s: %s", path, e)
    return None


def _list_dir(directory: Path) -> list[Path]:
    """Sorted directory listing; missing or unreadable directories are empty."""
    try:
        return sorted(directory.iterdir())
    except OSError:
        return []


def _subdirs(directory: Path) -> list[Path]:
    return [p for p in _list_dir(directory) if p.is_dir()]


def _stat_file(path: Path) -> Optional[os.stat_result]:
    try:
        stat = path.stat()
    except OSError as e:
        logger.warning("Skipping unreadable transcript %s: %s", path, e)
        return None
    if not path.is_file():
        return None
    return stat


def _mtime(stat: os.stat_result) -> datetime:
    return datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)


def _newest_first(sessions: list[SessionDescriptor]) -> list[SessionDescriptor]:
    return sorted(sessions, key=lambda s: s.modified_at, reverse=True)
