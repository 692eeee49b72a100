"""checkpoint.py — Extraction cursors and the batch extraction cache.

Single-session mode keeps a cursor per session:

    .wm/sessions/<id>/extraction_state.json   {"last_extracted": "<RFC-3339>"}
    .wm/extraction_state.json                 (no session id)

Batch mode keeps one cache keyed by session id:

    .wm/distill/cache.json    {"<id>": {session_id, extracted_at, has_knowledge,
                                        content, file_size_bytes}}
    .wm/distill/errors.log    [YYYY-MM-DD HH:MM:SS] Session <id>: <error>

Transcripts are append-only, so a changed file size is taken to mean new
content. Truncation or rotation to the same size goes unnoticed.
"""

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from wm.path_utils import format_timestamp, parse_timestamp, utc_now, write_text_atomic
from wm.state import distill_dir, session_dir, wm_path
from wm.transcript.store import SessionDescriptor

logger = logging.getLogger(__name__)

CHECKPOINT_FILE = "extraction_state.json"
CACHE_FILE = "cache.json"
ERROR_LOG_FILE = "errors.log"


# =============================================================================
# CHECKPOINTS
# =============================================================================

def checkpoint_path(session_id: Optional[str] = None) -> Path:
    if session_id:
        return session_dir(session_id) / CHECKPOINT_FILE
    return wm_path(CHECKPOINT_FILE)


def read_checkpoint(session_id: Optional[str] = None) -> Optional[datetime]:
    """Last extraction time for a session, or None (extract everything)."""
    path = checkpoint_path(session_id)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring unreadable checkpoint %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        return None
    return parse_timestamp(data.get("last_extracted"))


def write_checkpoint(session_id: Optional[str], timestamp: datetime) -> None:
    path = checkpoint_path(session_id)
    payload = {"last_extracted": format_timestamp(timestamp)}
    write_text_atomic(path, json.dumps(payload, indent=2))


# =============================================================================
# BATCH CACHE
# =============================================================================

@dataclass
class CacheEntry:
    """Result of extracting one whole session during distillation."""
    session_id: str
    extracted_at: str
    has_knowledge: bool
    content: str
    file_size_bytes: int

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEntry":
        return cls(
            session_id=str(data["session_id"]),
            extracted_at=str(data["extracted_at"]),
            has_knowledge=bool(data["has_knowledge"]),
            content=str(data.get("content", "")),
            file_size_bytes=int(data["file_size_bytes"]),
        )

    @classmethod
    def empty(cls, session: SessionDescriptor) -> "CacheEntry":
        return cls(
            session_id=session.session_id,
            extracted_at=format_timestamp(utc_now()),
            has_knowledge=False,
            content="",
            file_size_bytes=session.size_bytes,
        )


def cache_path() -> Path:
    return distill_dir() / CACHE_FILE


def load_cache() -> dict[str, CacheEntry]:
    """Load the extraction cache. Missing or corrupt cache means empty."""
    path = cache_path()
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Ignoring corrupt extraction cache %s: %s", path, e)
        return {}
    if not isinstance(raw, dict):
        return {}

    cache = {}
    for session_id, data in raw.items():
        try:
            cache[session_id] = CacheEntry.from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Dropping malformed cache entry for session %s", session_id)
    return cache


def needs_extraction(session: SessionDescriptor, cache: dict[str, CacheEntry]) -> bool:
    """True when the session is not cached or its file size changed."""
    cached = cache.get(session.session_id)
    if cached is None:
        return True
    return cached.file_size_bytes != session.size_bytes


def save_cache(cache: dict[str, CacheEntry]) -> None:
    payload = {session_id: asdict(entry) for session_id, entry in cache.items()}
    write_text_atomic(cache_path(), json.dumps(payload, indent=2))


def log_extraction_error(session_id: str, error: object) -> None:
    """Append a one-line failure record to errors.log (best effort)."""
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    message = str(error).replace("\n", " | ")
    path = distill_dir() / ERROR_LOG_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"[{timestamp}] Session {session_id}: {message}\n")
    except OSError as e:
        logger.warning("Could not write %s: %s", path, e)
