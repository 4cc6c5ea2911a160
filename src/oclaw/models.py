"""Data models for oclaw."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class VerboseLevel(Enum):
    """How much tool-call detail the transcript view renders."""
    SUMMARY = "summary"
    FULL = "full"
    OFF = "off"

    def next(self) -> "VerboseLevel":
        """Cycle summary -> full -> off -> summary."""
        order = list(VerboseLevel)
        return order[(order.index(self) + 1) % len(order)]

    @classmethod
    def parse(cls, value: str | None, default: "VerboseLevel | None" = None) -> "VerboseLevel":
        """Parse a config/env value, falling back to default (SUMMARY)."""
        if value:
            try:
                return cls(value.lower())
            except ValueError:
                pass
        return default or cls.SUMMARY


# Canonical message roles produced by the normalizer
ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL_CALL = "tool_call"
ROLE_TOOL_RESULT = "tool_result"

TOOL_ROLES = (ROLE_TOOL_CALL, ROLE_TOOL_RESULT)


def _truncate(text: str, max_len: int) -> str:
    """Truncate text to max length."""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class CanonicalMessage:
    """A normalized transcript message (user, assistant, tool call or tool result)."""

    role: str
    text: str = ""
    model: str = ""
    tool_name: str = ""
    tool_args: str = ""  # Short argument summary, paired from the call for results
    tool_error: bool = False
    timestamp: int = 0  # Epoch milliseconds, 0 if unknown

    @property
    def is_tool(self) -> bool:
        return self.role in TOOL_ROLES


@dataclass
class Session:
    """An OpenClaw agent session as reported by the gateway."""

    key: str
    kind: str = ""
    channel: str = ""
    display_name_raw: str = ""
    label: str = ""
    model: str = ""
    updated_at: int = 0       # Epoch ms
    age_ms: int = 0
    session_id: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    context_tokens: int = 0
    transcript_path: str = ""
    aborted_last_run: bool = False
    status: str = ""
    error_message: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "Session":
        """Build a session from gateway JSON (camelCase keys).

        Raises:
            ValueError: If data is not a mapping or has no usable key.
        """
        if not isinstance(data, dict):
            raise ValueError(f"session entry is {type(data).__name__}, not an object")
        key = _as_str(data.get("key")) or _as_str(data.get("sessionId"))
        if not key:
            raise ValueError("session entry has no key")
        return cls(
            key=key,
            kind=_as_str(data.get("kind")),
            channel=_as_str(data.get("channel")),
            display_name_raw=_as_str(data.get("displayName")),
            label=_as_str(data.get("label")),
            model=_as_str(data.get("model")),
            updated_at=_as_int(data.get("updatedAt")),
            age_ms=_as_int(data.get("ageMs")),
            session_id=_as_str(data.get("sessionId")),
            input_tokens=_as_int(data.get("inputTokens")),
            output_tokens=_as_int(data.get("outputTokens")),
            total_tokens=_as_int(data.get("totalTokens")),
            context_tokens=_as_int(data.get("contextTokens")),
            transcript_path=_as_str(data.get("transcriptPath")),
            aborted_last_run=bool(data.get("abortedLastRun", False)),
            status=_as_str(data.get("status")),
            error_message=_as_str(data.get("errorMessage")),
        )

    @property
    def display_name(self) -> str:
        """Short display name: label, then displayName, then kind#hash, then key."""
        if self.label:
            return self.label
        if self.display_name_raw:
            return self.display_name_raw
        if self.kind and self.channel:
            return f"{self.kind}#{self.session_id[-4:]}"
        return self.key[:20]

    @property
    def is_main(self) -> bool:
        """Whether this is the root session new agents are spawned from."""
        return self.kind == "main" or self.key.endswith(":main")

    def age_seconds(self, now_ms: int | None = None) -> float | None:
        """Seconds since the last update, or None if unknown."""
        if self.age_ms > 0:
            return self.age_ms / 1000
        if self.updated_at > 0:
            now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
            return max(0, now_ms - self.updated_at) / 1000
        return None


def session_status(session: Session, now_ms: int | None = None) -> str:
    """Derive a display status: running, completed, failed or idle."""
    if session.error_message or session.status in ("failed", "error"):
        return "failed"
    if session.status in ("completed", "done"):
        return "completed"
    if session.aborted_last_run:
        return "failed"
    age = session.age_seconds(now_ms)
    if age is not None and age < 5 * 60:
        return "running"
    return "idle"


@dataclass
class Process:
    """A worker process running on behalf of a session."""

    session_name: str
    status: str = ""
    runtime: str = ""
    command: str = ""


@dataclass(frozen=True)
class ArchivedRun:
    """A finished run whose transcript is still on disk."""

    session_id: str
    label: str
    size: int
    modified_at: int  # Epoch ms
    path: str

    @property
    def display_label(self) -> str:
        return self.label or self.session_id[:12]


@dataclass(frozen=True)
class Health:
    """Gateway health check result."""

    ok: bool
    duration_ms: int
    ts: int


@dataclass(frozen=True)
class ModelOption:
    """A configured model with optional alias."""

    id: str
    alias: str = ""

    @property
    def display(self) -> str:
        return f"{self.id}  ({self.alias})" if self.alias else self.id


@dataclass
class SpawnResult:
    """Result of spawning a new agent session."""

    session_id: str = ""
    label: str = ""
    model: str = ""


@dataclass
class NormalizeResult:
    """Normalized messages plus how many malformed records were dropped."""

    messages: list[CanonicalMessage] = field(default_factory=list)
    skipped: int = 0


MODEL_ALIASES = {
    "claude-opus-4-6": "opus",
    "claude-opus-4": "opus",
    "claude-sonnet-4": "sonnet",
    "claude-3-5-sonnet": "sonnet-3.5",
    "claude-3-5-haiku": "haiku-3.5",
    "claude-3-haiku": "haiku",
    "kimi-coding/k2p5": "k2p5",
    "gpt-4o": "4o",
    "gpt-4o-mini": "4o-mini",
    "o1": "o1",
    "o1-mini": "o1-mini",
    "o3": "o3",
    "o3-mini": "o3-mini",
    "gemini-2.5-pro": "gem-pro",
    "gemini-2.5-flash": "gem-flash",
    "deepseek-chat": "ds-chat",
    "deepseek-reasoner": "ds-r1",
}


def model_alias(model: str) -> str:
    """Return a short alias for a model id.

    Example: anthropic/claude-sonnet-4 → sonnet
    Example: openrouter/some-vendor/very-long-model-name → very-long-mo
    """
    if model in MODEL_ALIASES:
        return MODEL_ALIASES[model]
    # Longest keys first so "gpt-4o-mini" wins over "gpt-4o"
    for key in sorted(MODEL_ALIASES, key=len, reverse=True):
        alias = MODEL_ALIASES[key]
        if len(key) > 5 and len(model) > len(key) and model.endswith(key):
            return alias
        if len(key) > 8 and key in model:
            return alias
    parts = [p for p in model.replace(":", "/").split("/") if p]
    short = parts[-1] if parts else model
    return short[:12]


def format_duration(seconds: float) -> str:
    """Compact duration: 42s, 5m, 3h."""
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds / 60)}m"
    return f"{int(seconds / 3600)}h"


def format_tokens(count: int) -> str:
    """Compact token count: 950, 12k, 1.2M."""
    if count <= 0:
        return ""
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1000:
        return f"{count // 1000}k"
    return str(count)
