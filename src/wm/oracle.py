"""oracle.py — Text-generation backends and the marker response protocol.

Oracle backends (both single-shot, no retry):
1. ClaudeCliOracle: `claude -p --output-format json ...`, reads the "result" field
2. OllamaOracle: local Ollama REST API via httpx, reads the "response" field

The oracle answers in free text, so replies are decoded with a lenient
line-based marker grammar rather than structured JSON:

    HAS_KNOWLEDGE: YES
    <content>

Re-entry: the Claude CLI fires the same hooks that invoke wm. Calls made
under suppress_reentry() hand the child process WM_DISABLED=1 and
SUPEREGO_DISABLED=1 through an explicit environment, so the nested session
exits immediately. Our own os.environ is never touched.
"""

import json
import logging
import os
import re
import subprocess
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional

import httpx

logger = logging.getLogger(__name__)

REENTRY_GUARD_VARS = ("WM_DISABLED", "SUPEREGO_DISABLED")

DEFAULT_COMMAND = "claude"
OLLAMA_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "llama3.2:3b"
REQUEST_TIMEOUT = 300.0

EXTRACTION_PROMPT = """You are capturing tacit knowledge that will help future AI sessions.

Tacit knowledge is the wisdom that emerges from HOW someone works, not what they explicitly say. The user might not realize they're teaching you these patterns.

CAPTURE:
- Rationale behind decisions (WHY this approach, not just WHAT was done)
- Paths rejected and why
- Constraints discovered through friction
- Preferences revealed by corrections
- Patterns the user follows without stating them

DO NOT CAPTURE:
- What happened ("Fixed X", "Updated Y")
- Explicit requests or questions
- Tool outputs or code snippets
- Anything the assistant said

THE TEST: would a new session find this useful six months from now? Is it about HOW to work with this user and codebase, not WHAT happened today?

Most sessions have no tacit insights worth capturing. That's normal.

RESPONSE FORMAT:

If you found tacit knowledge worth capturing, respond:
HAS_KNOWLEDGE: YES

<your markdown content here: existing state merged with the new insights>

If nothing worth capturing, respond:
HAS_KNOWLEDGE: NO"""

CARRYOVER_BEGIN = "--- PREVIOUS CONTEXT (for continuity) ---"
CARRYOVER_END = "--- END PREVIOUS CONTEXT ---"


class OracleError(Exception):
    """Raised when an oracle call fails (spawn, transport, status or payload)."""


# =============================================================================
# CALL CONTEXT
# =============================================================================

@dataclass
class RunContext:
    """Per-invocation context threaded through oracle calls.

    ``base_env`` defaults to a snapshot of os.environ taken at call time.
    """
    reentry_suppressed: bool = False
    base_env: Optional[dict[str, str]] = field(default=None, repr=False)

    def child_env(self) -> dict[str, str]:
        env = dict(os.environ if self.base_env is None else self.base_env)
        if self.reentry_suppressed:
            for var in REENTRY_GUARD_VARS:
                env[var] = "1"
        return env


@contextmanager
def suppress_reentry(ctx: RunContext) -> Iterator[RunContext]:
    """Mark ``ctx`` as re-entry suppressed; the previous value is always restored."""
    previous = ctx.reentry_suppressed
    ctx.reentry_suppressed = True
    try:
        yield ctx
    finally:
        ctx.reentry_suppressed = previous


def is_disabled(env: Optional[dict[str, str]] = None) -> bool:
    """True when we are running inside an oracle call and must not recurse."""
    env = os.environ if env is None else env
    return bool(env.get("WM_DISABLED"))


# =============================================================================
# BACKENDS
# =============================================================================

class Oracle:
    """Opaque request/response text generator."""

    name = "oracle"

    def complete(self, system_prompt: str, message: str, ctx: RunContext) -> str:
        raise NotImplementedError


class ClaudeCliOracle(Oracle):
    name = "claude"

    def __init__(self, command: str = DEFAULT_COMMAND, timeout: Optional[float] = REQUEST_TIMEOUT):
        self.command = command
        self.timeout = timeout

    def build_args(self, system_prompt: str, message: str) -> list[str]:
        return [
            self.command,
            "-p",
            "--output-format", "json",
            "--no-session-persistence",
            "--system-prompt", system_prompt,
            message,
        ]

    def complete(self, system_prompt: str, message: str, ctx: RunContext) -> str:
        try:
            proc = subprocess.run(
                self.build_args(system_prompt, message),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                env=ctx.child_env(),
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            raise OracleError(f"{self.command} CLI timed out after {self.timeout}s")
        except OSError as e:
            raise OracleError(f"Failed to spawn {self.command} CLI: {e}") from e

        if proc.returncode != 0:
            raise OracleError(
                f"{self.command} CLI failed (exit {proc.returncode}):\n"
                f"stderr: {proc.stderr}\nstdout: {proc.stdout}"
            )

        try:
            payload = json.loads(proc.stdout)
        except json.JSONDecodeError as e:
            raise OracleError(f"Failed to parse {self.command} CLI response: {e}") from e

        result = payload.get("result") if isinstance(payload, dict) else None
        if not isinstance(result, str):
            raise OracleError(f"{self.command} CLI response missing 'result' field")
        return result


class OllamaOracle(Oracle):
    name = "ollama"

    def __init__(
        self,
        base_url: str = OLLAMA_BASE_URL,
        model: str = DEFAULT_MODEL,
        timeout: Optional[float] = REQUEST_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout

    def complete(self, system_prompt: str, message: str, ctx: RunContext) -> str:
        try:
            response = httpx.post(
                f"{self.base_url}/api/generate",
                json={
                    "model": self.model,
                    "system": system_prompt,
                    "prompt": message,
                    "stream": False,
                    "options": {"temperature": 0.1},
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.ConnectError:
            raise OracleError(f"Ollama not running at {self.base_url}")
        except httpx.HTTPStatusError as e:
            raise OracleError(f"Ollama error: {e.response.status_code}")
        except httpx.HTTPError as e:
            raise OracleError(f"Ollama request failed: {e}") from e
        except ValueError as e:
            raise OracleError(f"Failed to parse Ollama response: {e}") from e

        result = payload.get("response") if isinstance(payload, dict) else None
        if not isinstance(result, str):
            raise OracleError("Ollama response missing 'response' field")
        return result


def get_oracle(config: Optional[dict] = None) -> Oracle:
    """Build the configured backend from the [oracle] config table."""
    if config is None:
        from wm.config import get_config
        config = get_config()

    settings = config.get("oracle", {})
    backend = settings.get("backend", "claude")
    timeout = settings.get("timeout", REQUEST_TIMEOUT)

    if backend == "claude":
        return ClaudeCliOracle(command=settings.get("command", DEFAULT_COMMAND), timeout=timeout)
    if backend == "ollama":
        return OllamaOracle(
            base_url=settings.get("ollama_url", OLLAMA_BASE_URL),
            model=settings.get("model", DEFAULT_MODEL),
            timeout=timeout,
        )
    raise OracleError(f"Unknown oracle backend: {backend}. Use: claude, ollama")


def call_oracle(
    oracle: Oracle,
    system_prompt: str,
    message: str,
    ctx: Optional[RunContext] = None,
) -> str:
    """Make exactly one oracle call with re-entry suppressed.

    Raises OracleError on any failure; the caller decides whether that is
    fatal or means "no new knowledge".
    """
    ctx = ctx or RunContext()
    logger.info("Calling %s (message: %d bytes)", oracle.name, len(message.encode("utf-8")))
    with suppress_reentry(ctx):
        return oracle.complete(system_prompt, message, ctx)


# =============================================================================
# REQUEST / RESPONSE
# =============================================================================

def build_extraction_message(
    current_state: str,
    transcript: str,
    carryover: Optional[str] = None,
) -> str:
    carryover_section = ""
    if carryover and carryover.strip():
        carryover_section = f"{CARRYOVER_BEGIN}\n{carryover}\n{CARRYOVER_END}\n\n"
    return (
        f"CURRENT STATE:\n{current_state}\n\n"
        f"{carryover_section}"
        f"NEW TRANSCRIPT:\n{transcript}\n\n"
        "OUTPUT:"
    )


@dataclass(frozen=True)
class MarkerResponse:
    is_positive: bool
    content: str = ""


_AFFIRMATIVE = ("YES", "TRUE")


def parse_marker_response(text: str, marker: str) -> MarkerResponse:
    """Decode a ``MARKER: YES|NO|TRUE|FALSE`` reply.

    The first line carrying the marker decides. Markdown decoration
    (headings, blockquotes, emphasis) around it is ignored and matching is
    case-insensitive. A positive marker yields everything after its line,
    trimmed. No marker at all is a negative answer, never an error.
    """
    pattern = re.compile(rf"^{re.escape(marker)}[*_]*\s*:(.*)$", re.IGNORECASE)
    lines = text.splitlines()

    for i, line in enumerate(lines):
        match = pattern.match(_strip_markdown_prefix(line))
        if not match:
            continue
        value = match.group(1).strip().strip("*_").strip().upper()
        if value in _AFFIRMATIVE:
            return MarkerResponse(True, "\n".join(lines[i + 1:]).strip())
        return MarkerResponse(False)

    logger.info("No %s marker found in response, treating as negative", marker)
    return MarkerResponse(False)


def _strip_markdown_prefix(line: str) -> str:
    return line.strip().lstrip("#>*_ \t")
