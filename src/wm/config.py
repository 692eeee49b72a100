"""config.py — Configuration loading from .wm/config.toml."""

import copy
import re

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib  # type: ignore[no-redef]

from wm.path_utils import write_text_atomic
from wm.state import wm_path

CONFIG_FILE = "config.toml"

OPERATIONS = ("extract", "compile")

_TABLE_HEADER = re.compile(r"^\s*\[\[?([^\]]+)\]")

_DEFAULTS = {
    "operations": {
        "extract": True,
        "compile": True,
    },
    "oracle": {
        "backend": "claude",
        "command": "claude",
        "ollama_url": "http://localhost:11434",
        "model": "llama3.2:3b",
        "timeout": 300.0,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Merge override into base, recursing into nested dicts."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def get_config() -> dict:
    """Load config from .wm/config.toml, merged with defaults.

    A missing or unparseable file yields the defaults; hooks must keep
    working even if someone hand-edits the file into an invalid state.
    """
    path = wm_path(CONFIG_FILE)
    try:
        with open(path, "rb") as f:
            user_config = tomllib.load(f)
    except (FileNotFoundError, tomllib.TOMLDecodeError):
        return copy.deepcopy(_DEFAULTS)
    return _deep_merge(copy.deepcopy(_DEFAULTS), user_config)


def is_operation_enabled(operation: str) -> bool:
    return bool(get_config()["operations"].get(operation, True))


def set_operation_enabled(operation: str, enabled: bool) -> None:
    """Pause or resume an operation.

    Only the key inside [operations] is touched; every other line of the
    file is kept as written. Raises ValueError for an unknown operation or
    a config file that is not valid TOML.
    """
    if operation not in OPERATIONS:
        raise ValueError(
            f"Unknown operation: {operation}. Use: {', '.join(OPERATIONS)}"
        )

    path = wm_path(CONFIG_FILE)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        text = ""
    _parse(text, path)

    updated = _set_table_key(text, "operations", operation, "true" if enabled else "false")
    operations = _parse(updated, path).get("operations")
    if not isinstance(operations, dict) or operations.get(operation) is not enabled:
        raise ValueError(f"Could not update [operations] {operation} in {path}")
    write_text_atomic(path, updated)


def _parse(text: str, path) -> dict:
    try:
        return tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid config {path}: {e}") from e


def _set_table_key(text: str, table: str, key: str, value: str) -> str:
    """Set ``key = value`` inside ``[table]``, appending the table if absent."""
    lines = text.splitlines()
    key_line = re.compile(rf"^\s*{re.escape(key)}\s*=")
    in_table = False
    insert_at = None

    for i, line in enumerate(lines):
        header = _TABLE_HEADER.match(line)
        if header:
            in_table = header.group(1).strip() == table
            if in_table:
                insert_at = i + 1
            continue
        if not in_table:
            continue
        if key_line.match(line):
            lines[i] = f"{key} = {value}"
            return "\n".join(lines) + "\n"
        if line.strip():
            insert_at = i + 1

    if insert_at is not None:
        lines.insert(insert_at, f"{key} = {value}")
    else:
        if lines and lines[-1].strip():
            lines.append("")
        lines.extend([f"[{table}]", f"{key} = {value}"])
    return "\n".join(lines) + "\n"
