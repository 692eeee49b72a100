"""File and timestamp helpers shared by the pipeline.

atomic_write: documents are replaced via tmp file + os.replace so a reader
never sees a half-written file. There is no lock; concurrent
writers from separate hook processes are last-writer-wins.

parse_timestamp / format_timestamp: transcript and checkpoint timestamps are
RFC-3339 strings, normalized here to timezone-aware UTC datetimes.
"""

import os
import re
import tempfile
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

_FRACTION = re.compile(r"\.(\d+)")


@contextmanager
def atomic_write(filepath: Path, mode: str = "w"):
    """Write to a file atomically using tmp + os.replace pattern.

    The temp file lives next to the target so the rename stays on one
    filesystem. On any failure the temp file is removed and the target is
    left untouched.

    Usage:
        with atomic_write(Path("state.md")) as f:
            f.write("content")
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(
        dir=filepath.parent,
        prefix=f".{filepath.name}.",
        suffix=".tmp",
    )
    try:
        encoding = None if "b" in mode else "utf-8"
        with os.fdopen(fd, mode, encoding=encoding) as f:
            yield f
        os.replace(tmp_path, filepath)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def write_text_atomic(filepath: Path, content: str) -> None:
    """Replace a text file wholesale."""
    with atomic_write(filepath) as f:
        f.write(content)


def parse_timestamp(ts: Union[str, int, float, datetime, None]) -> Optional[datetime]:
    """Normalize a timestamp to a timezone-aware UTC datetime.

    Handles:
    - RFC-3339 / ISO-format strings (with or without tz, trailing "Z")
    - Unix timestamps (int/float)
    - datetime objects (adds UTC if naive)

    Returns None for missing or unparseable input instead of guessing.
    """
    if ts is None or isinstance(ts, bool):
        return None

    if isinstance(ts, datetime):
        if ts.tzinfo is None:
            return ts.replace(tzinfo=timezone.utc)
        return ts.astimezone(timezone.utc)

    if isinstance(ts, (int, float)):
        return datetime.fromtimestamp(ts, tz=timezone.utc)

    if isinstance(ts, str):
        text = ts.strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        # fromisoformat on 3.10 only takes 3 or 6 fractional digits
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text)
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    return None


def format_timestamp(dt: datetime) -> str:
    """Serialize a datetime as RFC-3339 in UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)
