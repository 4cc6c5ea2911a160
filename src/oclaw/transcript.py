"""Normalize gateway history records and transcript files into canonical messages."""

import json
import logging
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from .models import (
    ROLE_ASSISTANT,
    ROLE_TOOL_CALL,
    ROLE_TOOL_RESULT,
    ROLE_USER,
    CanonicalMessage,
    NormalizeResult,
    _truncate,
)

logger = logging.getLogger(__name__)

# Argument keys that best describe a tool call, in priority order
ARG_PRIORITY_KEYS = ("command", "file_path", "path", "query", "url", "action", "tool")
ARG_MAX_LEN = 50
LABEL_MAX_LEN = 60

_ROLE_ALIASES = {
    "toolResult": ROLE_TOOL_RESULT,
    "tool_result": ROLE_TOOL_RESULT,
    "tool": ROLE_TOOL_RESULT,
    "toolUse": ROLE_TOOL_CALL,
    "toolCall": ROLE_TOOL_CALL,
    "tool_use": ROLE_TOOL_CALL,
    "tool_call": ROLE_TOOL_CALL,
}

_TOOL_CALL_BLOCKS = ("toolCall", "tool_use")
_TOOL_RESULT_BLOCKS = ("toolResult", "tool_result")


class MalformedRecord(ValueError):
    """A record that cannot be turned into messages."""


def canonical_role(role: str) -> str:
    """Map upstream role spellings onto canonical roles."""
    return _ROLE_ALIASES.get(role, role)


def _format_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def summarize_tool_args(args: Any) -> str:
    """Build a short summary of tool arguments.

    Every priority key present contributes, joined by spaces. If none is present
    the first value is used. Each part is truncated to ARG_MAX_LEN characters.
    String arguments holding JSON (OpenAI-style) are decoded first.
    """
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            return ""
    if not isinstance(args, dict) or not args:
        return ""

    parts = [
        _truncate(_format_value(args[key]), ARG_MAX_LEN)
        for key in ARG_PRIORITY_KEYS
        if key in args
    ]
    if not parts:
        first = next(iter(args.values()))
        parts.append(_truncate(_format_value(first), ARG_MAX_LEN))
    return " ".join(parts)


def _parse_timestamp(value: Any) -> int:
    """Parse epoch-ms or ISO 8601 timestamps into epoch milliseconds (0 if unknown)."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value:
        ts = value[:-1] + "+00:00" if value.endswith("Z") else value
        try:
            return int(datetime.fromisoformat(ts).timestamp() * 1000)
        except ValueError:
            return 0
    return 0


def _content_blocks(content: Any) -> list[dict[str, Any]]:
    """Return content as a list of blocks; a bare string is one text block."""
    if content is None:
        return []
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    if isinstance(content, list):
        return [b for b in content if isinstance(b, dict)]
    raise MalformedRecord(f"content is {type(content).__name__}")


def _join_text(blocks: list[dict[str, Any]]) -> str:
    texts = [
        b["text"] for b in blocks
        if b.get("type") == "text" and isinstance(b.get("text"), str) and b["text"]
    ]
    return "\n".join(texts)


def _result_block_text(block: dict[str, Any]) -> str:
    """Text of an embedded tool_result block (content may be a string or blocks)."""
    content = block.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return _join_text([b for b in content if isinstance(b, dict)])
    return ""


def _unwrap(record: Any) -> dict[str, Any] | None:
    """Flatten a transcript-file wrapper into a flat record.

    Returns None for entries that are not messages (session headers, etc.).

    Raises:
        MalformedRecord: If the record is not an object or carries no role.
    """
    if not isinstance(record, dict):
        raise MalformedRecord(f"record is {type(record).__name__}")

    entry_type = record.get("type")
    if isinstance(entry_type, str) and entry_type and entry_type != "message":
        return None

    inner = record.get("message")
    if isinstance(inner, dict) and inner.get("role"):
        flat = dict(inner)
        for key in ("model", "timestamp", "toolName", "isError", "args", "input"):
            if key not in flat and key in record:
                flat[key] = record[key]
        record = flat

    role = record.get("role")
    if not isinstance(role, str) or not role:
        raise MalformedRecord("record has no role")
    return record


class MessageNormalizer:
    """Turns raw records into canonical messages, pairing tool calls with results.

    Pending tool calls are kept in a FIFO queue; each tool result consumes the
    oldest one. Calls still pending at the end of the stream stay call-only.
    """

    def __init__(self) -> None:
        self._pending: deque[CanonicalMessage] = deque()
        self.messages: list[CanonicalMessage] = []
        self.skipped = 0

    def feed(self, record: Any) -> None:
        """Normalize one record; malformed records are counted and dropped."""
        try:
            flat = _unwrap(record)
            if flat is None:
                return
            self.messages.extend(self._normalize(flat))
        except MalformedRecord as e:
            self.skipped += 1
            logger.debug(f"Skipping malformed transcript record: {e}")

    def result(self) -> NormalizeResult:
        return NormalizeResult(messages=list(self.messages), skipped=self.skipped)

    def _normalize(self, record: dict[str, Any]) -> list[CanonicalMessage]:
        role = canonical_role(record["role"])
        blocks = _content_blocks(record.get("content"))
        model = record.get("model") if isinstance(record.get("model"), str) else ""
        timestamp = _parse_timestamp(record.get("timestamp"))

        if role == ROLE_ASSISTANT:
            return self._assistant(blocks, model, timestamp)
        if role == ROLE_TOOL_CALL:
            return [self._call(
                _record_tool_name(record),
                summarize_tool_args(_record_args(record)),
                timestamp,
            )]
        if role == ROLE_TOOL_RESULT:
            return [self._result(
                text=_join_text(blocks),
                tool_name=_record_tool_name(record),
                is_error=bool(record.get("isError") or record.get("is_error")),
                own_args=_record_args(record),
                timestamp=timestamp,
            )]
        return self._user(role, blocks, model, timestamp)

    def _assistant(self, blocks: list[dict[str, Any]], model: str, timestamp: int) -> list[CanonicalMessage]:
        out: list[CanonicalMessage] = []
        for block in blocks:
            if block.get("type") in _TOOL_CALL_BLOCKS:
                name = block.get("name") or block.get("toolName") or ""
                args = block.get("arguments", block.get("input", block.get("args")))
                out.append(self._call(
                    name if isinstance(name, str) else "",
                    summarize_tool_args(args),
                    timestamp,
                ))
        # Text follows the calls; an empty message still marks the turn boundary
        out.append(CanonicalMessage(
            role=ROLE_ASSISTANT,
            text=_join_text(blocks),
            model=model,
            timestamp=timestamp,
        ))
        if len(out) > 1 and not out[-1].text:
            out.pop()
        return out

    def _user(self, role: str, blocks: list[dict[str, Any]], model: str, timestamp: int) -> list[CanonicalMessage]:
        out: list[CanonicalMessage] = []
        # Anthropic-style transcripts carry tool results inside user records
        for block in blocks:
            if block.get("type") in _TOOL_RESULT_BLOCKS:
                out.append(self._result(
                    text=_result_block_text(block),
                    tool_name="",
                    is_error=bool(block.get("is_error") or block.get("isError")),
                    own_args=None,
                    timestamp=timestamp,
                ))
        text = _join_text(blocks)
        if text or not out:
            out.append(CanonicalMessage(role=role, text=text, model=model, timestamp=timestamp))
        return out

    def _call(self, name: str, args: str, timestamp: int) -> CanonicalMessage:
        msg = CanonicalMessage(role=ROLE_TOOL_CALL, tool_name=name, tool_args=args, timestamp=timestamp)
        self._pending.append(msg)
        return msg

    def _result(
        self,
        text: str,
        tool_name: str,
        is_error: bool,
        own_args: Any,
        timestamp: int,
    ) -> CanonicalMessage:
        if self._pending:
            call = self._pending.popleft()
            args = call.tool_args
            tool_name = tool_name or call.tool_name
        else:
            args = summarize_tool_args(own_args)
        return CanonicalMessage(
            role=ROLE_TOOL_RESULT,
            text=text,
            tool_name=tool_name,
            tool_args=args,
            tool_error=is_error,
            timestamp=timestamp,
        )


def _record_tool_name(record: dict[str, Any]) -> str:
    for key in ("toolName", "tool_name", "name"):
        value = record.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _record_args(record: dict[str, Any]) -> Any:
    return record.get("args", record.get("input"))


def normalize_records(records: Iterable[Any]) -> NormalizeResult:
    """Normalize a batch of raw records (history API or transcript entries)."""
    normalizer = MessageNormalizer()
    for record in records:
        normalizer.feed(record)
    return normalizer.result()


def parse_transcript_lines(lines: Iterable[str]) -> NormalizeResult:
    """Normalize JSONL transcript lines; undecodable lines count as skipped."""
    normalizer = MessageNormalizer()
    for line in lines:
        line = line.strip()
        if not line:
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            normalizer.skipped += 1
            continue
        normalizer.feed(entry)
    return normalizer.result()


def read_transcript(path: str | Path) -> NormalizeResult:
    """Read and normalize a transcript file.

    Raises:
        OSError: If the file cannot be read.
    """
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        result = parse_transcript_lines(f)
    if result.skipped:
        logger.debug(f"Dropped {result.skipped} malformed lines from {Path(path).name}")
    return result


def read_transcript_label(path: str | Path) -> str:
    """First line of the first user message in a transcript, for list labels."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                try:
                    entry = json.loads(line)
                    record = _unwrap(entry)
                except (json.JSONDecodeError, MalformedRecord):
                    continue
                if record is None or record.get("role") != ROLE_USER:
                    continue
                try:
                    blocks = _content_blocks(record.get("content"))
                except MalformedRecord:
                    continue
                for block in blocks:
                    text = block.get("text")
                    if block.get("type") == "text" and isinstance(text, str) and text:
                        first_line = text.split("\n", 1)[0]
                        return _truncate(first_line, LABEL_MAX_LEN)
    except OSError:
        return ""
    return ""
