"""Clean, compress and format transcripts for the log panel.

The pipeline is format → clean → compress. Each stage is a pure string
function so it can be re-run cheaply when the verbosity or source filter changes.
"""

import re
from collections import deque
from typing import Iterable

from .models import (
    ROLE_ASSISTANT,
    ROLE_TOOL_CALL,
    ROLE_TOOL_RESULT,
    ROLE_USER,
    CanonicalMessage,
    VerboseLevel,
)

# CSI (ESC [ ... final), OSC (ESC ] ... BEL or ST) and two-byte escapes
_ANSI_RE = re.compile(
    r"\x1b\[[0-9;?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
)

_BOX_HORIZONTAL = frozenset((0x2500, 0x2501, 0x2504, 0x2505, 0x2508, 0x2509, 0x254C, 0x254D))
_BOX_VERTICAL = frozenset((0x2502, 0x2503, 0x2506, 0x2507, 0x250A, 0x250B, 0x254E, 0x254F))

# "─── ASSISTANT (model) ───" / "--- USER ---"
_ROLE_BANNER_RE = re.compile(r"^(?:───|---)\s*(?:ASSISTANT|USER)(?:\s*\([^)]*\))?\s*(?:───|---)$")

FILLER_PREFIXES = (
    "now let's", "now let me", "now i'll", "now i need to",
    "now update", "now we need", "now we'll",
    "let me now", "let's now",
    "next, i'll", "next, let's", "next i'll", "next let's",
    "i'll now", "i need to now",
)

ERROR_PREVIEW_LINES = 6
ERROR_INDENT = "   "

TOOL_GLYPHS = {
    "read": "📖", "file_read": "📖",
    "write": "✍️", "file_write": "✍️",
    "edit": "✏️", "file_edit": "✏️",
    "exec": "🛠️", "bash": "🛠️", "shell": "🛠️",
    "web_search": "🔎", "search": "🔎",
    "web_fetch": "🌐", "fetch": "🌐",
    "browser": "🖥️",
    "message": "💬",
    "image": "🖼️",
    "tts": "🔊",
    "process": "⚙️",
    "nodes": "📱",
    "canvas": "🎨",
}
DEFAULT_TOOL_GLYPH = "🔧"

_ROLE_LABELS = {
    ROLE_USER: "USER",
    ROLE_ASSISTANT: "ASSISTANT",
    ROLE_TOOL_CALL: "TOOL CALL",
    ROLE_TOOL_RESULT: "TOOL RESULT",
}

_CHANNEL_RE = re.compile(r"^\s*\[(signal|matrix|telegram|discord|whatsapp|slack)\b", re.IGNORECASE)

SOURCE_FILTERS = ("", "signal", "matrix")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences; no ESC byte survives."""
    return _ANSI_RE.sub("", text).replace("\x1b", "")


def _remap_char(ch: str) -> str:
    code = ord(ch)
    if 0x2500 <= code <= 0x257F:
        if code in _BOX_HORIZONTAL:
            return "-"
        if code in _BOX_VERTICAL:
            return "|"
        return "+"
    if 0x2580 <= code <= 0x259F:
        return "#"
    if 0x2800 <= code <= 0x28FF:
        return "."
    return ch


def clean_content(content: str) -> str:
    """Normalize line endings, strip escapes and replace glyphs that break the layout."""
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    content = strip_ansi(content)
    return "".join(_remap_char(ch) for ch in content)


def is_role_banner(line: str) -> bool:
    return bool(_ROLE_BANNER_RE.match(line.strip()))


def is_planning_filler(line: str) -> bool:
    """Narration like "Now let me check the config:" that precedes a tool call."""
    stripped = line.strip()
    lower = stripped.lower()
    return lower.startswith(FILLER_PREFIXES) and stripped.endswith(":")


def compress_content(content: str) -> str:
    """Drop role banners and planning filler, collapse blank runs."""
    out: list[str] = []
    prev_blank = False
    for line in content.split("\n"):
        if is_role_banner(line) or is_planning_filler(line):
            continue
        if not line.strip():
            if prev_blank:
                continue
            prev_blank = True
        else:
            prev_blank = False
        out.append(line)
    return "\n".join(out)


def tool_glyph(name: str) -> str:
    return TOOL_GLYPHS.get(name.lower(), DEFAULT_TOOL_GLYPH)


def shorten_path(path: str, keep: int = 3) -> str:
    """Keep the last few path components: /a/b/c/d/e.py → …/c/d/e.py"""
    parts = [p for p in path.split("/") if p]
    if len(parts) <= keep:
        return path
    return "…/" + "/".join(parts[-keep:])


def summarize_tool(msg: CanonicalMessage) -> str:
    """One-line summary of a tool invocation, by tool name."""
    name = msg.tool_name or "tool"
    key = name.lower()
    args = msg.tool_args
    if key in ("read", "file_read", "write", "file_write", "edit", "file_edit"):
        verb = key.removeprefix("file_")
        return f"{verb} {shorten_path(args)}".rstrip()
    if key in ("exec", "bash", "shell"):
        summary = f"$ {args}".rstrip()
        return f"{summary} (failed)" if msg.tool_error else summary
    if key in ("web_search", "search"):
        return f'search "{args}"'
    if key in ("web_fetch", "fetch"):
        return f"fetch {args}".rstrip()
    return f"{name} {args}".rstrip()


def _banner(msg: CanonicalMessage) -> str:
    role = _ROLE_LABELS.get(msg.role, msg.role.upper())
    detail = msg.tool_name if msg.is_tool else msg.model
    if detail:
        return f"─── {role} ({detail}) ───"
    return f"─── {role} ───"


def _render_block(msg: CanonicalMessage, lines: list[str]) -> None:
    lines.append(_banner(msg))
    body = msg.text
    if not body and msg.role == ROLE_TOOL_CALL:
        body = msg.tool_args
    if body:
        lines.append(body)
    lines.append("")


def _render_result_summary(msg: CanonicalMessage, lines: list[str]) -> None:
    status = "✗" if msg.tool_error else "✓"
    lines.append(f" {status} {tool_glyph(msg.tool_name or 'tool')} {summarize_tool(msg)}")
    if msg.tool_error and msg.text:
        err_lines = msg.text.split("\n")
        for line in err_lines[:ERROR_PREVIEW_LINES]:
            lines.append(ERROR_INDENT + line)
        if len(err_lines) > ERROR_PREVIEW_LINES:
            lines.append(ERROR_INDENT + "…")


def format_messages(messages: Iterable[CanonicalMessage], verbose: VerboseLevel) -> str:
    """Render canonical messages as text for the given verbosity level.

    Summary mode buffers tool calls; each result consumes the oldest buffered
    call and renders as one line. Calls left without a result are shown as
    call-only lines at the end.
    """
    lines: list[str] = []
    pending_calls: deque[CanonicalMessage] = deque()

    for msg in messages:
        if not msg.is_tool:
            _render_block(msg, lines)
            continue
        if verbose == VerboseLevel.OFF:
            continue
        if verbose == VerboseLevel.FULL:
            _render_block(msg, lines)
            continue
        if msg.role == ROLE_TOOL_CALL:
            pending_calls.append(msg)
            continue
        if pending_calls:
            pending_calls.popleft()
        _render_result_summary(msg, lines)

    for call in pending_calls:
        name = call.tool_name or "tool"
        lines.append(f" {tool_glyph(name)} {name} {call.tool_args}".rstrip())

    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def extract_query(content: str) -> str:
    """Find the first user message in formatted content, for the query line."""
    lines = content.split("\n")
    for i, line in enumerate(lines):
        if "USER" not in line and "user:" not in line and "[user]" not in line:
            continue
        for following in lines[i + 1:]:
            candidate = following.strip()
            if not candidate:
                continue
            if not candidate.startswith("—") and not is_role_banner(candidate):
                return candidate
            break
        if ":" in line:
            return line.split(":", 1)[1].strip()
    return ""


def detect_channel(text: str) -> str:
    """Channel tag a relayed message starts with, e.g. "[Signal +1555…]" → "signal"."""
    m = _CHANNEL_RE.match(text)
    return m.group(1).lower() if m else ""


def filter_by_source(messages: list[CanonicalMessage], source: str) -> list[CanonicalMessage]:
    """Keep turns that came from the given channel.

    A user message tagged with another channel hides itself and every message
    up to the next user message. Untagged messages are always kept. Tool results
    follow their call: a result paired with a hidden call is hidden too.
    """
    if not source:
        return messages
    out: list[CanonicalMessage] = []
    hiding = False
    # Hidden flag per pending call, consumed oldest-first like the normalizer pairs them
    pending_calls: deque[bool] = deque()
    for msg in messages:
        if msg.role == ROLE_USER:
            channel = detect_channel(msg.text)
            hiding = bool(channel) and channel != source
        if msg.role == ROLE_TOOL_CALL:
            pending_calls.append(hiding)
        elif msg.role == ROLE_TOOL_RESULT and pending_calls:
            if pending_calls.popleft():
                continue
        if not hiding:
            out.append(msg)
    return out


def next_source_filter(current: str) -> str:
    """Cycle all → signal → matrix → all."""
    idx = SOURCE_FILTERS.index(current) if current in SOURCE_FILTERS else 0
    return SOURCE_FILTERS[(idx + 1) % len(SOURCE_FILTERS)]


def render_transcript(
    messages: list[CanonicalMessage],
    verbose: VerboseLevel,
    source: str = "",
) -> tuple[str, str]:
    """Run the full pipeline over messages, returning (content, query).

    The query is taken before compression, while role banners are still present.
    """
    cleaned = clean_content(format_messages(filter_by_source(messages, source), verbose))
    return compress_content(cleaned), extract_query(cleaned)


def render_process_log(text: str) -> tuple[str, str]:
    """Process logs are only cleaned; they carry no role structure to compress."""
    cleaned = clean_content(text)
    return cleaned, extract_query(cleaned)
