"""Tests for history/transcript normalization and tool-call pairing."""

import json

import pytest

from oclaw.models import ROLE_ASSISTANT, ROLE_TOOL_CALL, ROLE_TOOL_RESULT, ROLE_USER
from oclaw.transcript import (
    ARG_MAX_LEN,
    canonical_role,
    normalize_records,
    parse_transcript_lines,
    read_transcript,
    read_transcript_label,
    summarize_tool_args,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _text(text):
    return [{"type": "text", "text": text}]


def _call(name, **args):
    """Gateway-style tool call record."""
    return {"role": "toolUse", "toolName": name, "args": args}


def _result(text="", **kwargs):
    """Gateway-style tool result record."""
    return {"role": "toolResult", "content": _text(text), **kwargs}


def _wrapped(role, content, **kwargs):
    """Transcript-file entry wrapping a message."""
    return {"type": "message", "message": {"role": role, "content": content, **kwargs}}


# ---------------------------------------------------------------------------
# summarize_tool_args
# ---------------------------------------------------------------------------

class TestSummarizeToolArgs:

    def test_priority_keys_joined_in_order(self):
        assert summarize_tool_args({"path": "/tmp", "command": "ls"}) == "ls /tmp"

    def test_first_value_when_no_priority_key(self):
        assert summarize_tool_args({"text": "hello"}) == "hello"

    def test_long_value_truncated(self):
        summary = summarize_tool_args({"command": "x" * 80})
        assert len(summary) == ARG_MAX_LEN
        assert summary.endswith("...")

    def test_json_string_arguments_decoded(self):
        assert summarize_tool_args(json.dumps({"url": "https://example.com"})) == "https://example.com"

    def test_empty_and_invalid(self):
        assert summarize_tool_args(None) == ""
        assert summarize_tool_args({}) == ""
        assert summarize_tool_args("not json") == ""


def test_canonical_role_aliases():
    assert canonical_role("toolResult") == ROLE_TOOL_RESULT
    assert canonical_role("tool") == ROLE_TOOL_RESULT
    assert canonical_role("toolUse") == ROLE_TOOL_CALL
    assert canonical_role("user") == ROLE_USER


# ---------------------------------------------------------------------------
# Pairing
# ---------------------------------------------------------------------------

class TestToolPairing:
    """Results consume pending calls oldest-first."""

    def test_interleaved_calls_pair_fifo(self):
        result = normalize_records([
            _call("read", path="/a"),
            _call("exec", command="ls"),
            _result("A"),
            _result("B"),
        ])
        results = [m for m in result.messages if m.role == ROLE_TOOL_RESULT]
        assert [(r.tool_name, r.tool_args, r.text) for r in results] == [
            ("read", "/a", "A"),
            ("exec", "ls", "B"),
        ]

    def test_pairing_survives_interleaved_messages(self):
        result = normalize_records([
            _call("read", path="/a"),
            _call("exec", command="ls"),
            {"role": "user", "content": _text("still there?")},
            {"role": "assistant", "content": _text("Working on it.")},
            _result("A"),
            _result("B"),
        ])
        assert [m.role for m in result.messages] == [
            ROLE_TOOL_CALL, ROLE_TOOL_CALL, ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL_RESULT, ROLE_TOOL_RESULT,
        ]
        results = [m for m in result.messages if m.role == ROLE_TOOL_RESULT]
        assert [(r.tool_name, r.tool_args, r.text) for r in results] == [
            ("read", "/a", "A"),
            ("exec", "ls", "B"),
        ]

    def test_result_keeps_its_own_tool_name(self):
        result = normalize_records([_call("exec", command="ls"), _result("ok", toolName="bash")])
        assert result.messages[-1].tool_name == "bash"
        assert result.messages[-1].tool_args == "ls"

    def test_unpaired_result_uses_its_own_args(self):
        result = normalize_records([_result("out", toolName="exec", args={"command": "pwd"})])
        assert result.messages[0].tool_args == "pwd"

    def test_unpaired_call_stays_call_only(self):
        result = normalize_records([_call("read", path="/a")])
        assert [m.role for m in result.messages] == [ROLE_TOOL_CALL]

    def test_error_flag_carried(self):
        result = normalize_records([_call("exec", command="false"), _result("boom", isError=True)])
        assert result.messages[-1].tool_error is True

    def test_anthropic_blocks_pair(self):
        records = [
            _wrapped("assistant", [
                {"type": "text", "text": "Checking."},
                {"type": "tool_use", "name": "read", "input": {"file_path": "/etc/hosts"}},
            ], model="claude-sonnet-4"),
            _wrapped("user", [{"type": "tool_result", "content": "127.0.0.1 localhost"}]),
        ]
        result = normalize_records(records)
        roles = [m.role for m in result.messages]
        assert roles == [ROLE_TOOL_CALL, ROLE_ASSISTANT, ROLE_TOOL_RESULT]
        assert result.messages[1].model == "claude-sonnet-4"
        assert result.messages[2].tool_name == "read"
        assert result.messages[2].tool_args == "/etc/hosts"
        assert result.messages[2].text == "127.0.0.1 localhost"


# ---------------------------------------------------------------------------
# Record shapes
# ---------------------------------------------------------------------------

class TestRecordShapes:

    def test_string_content_is_one_text_block(self):
        result = normalize_records([{"role": "user", "content": "hello"}])
        assert result.messages[0].text == "hello"

    def test_assistant_tool_call_blocks(self):
        result = normalize_records([{
            "role": "assistant",
            "content": [{"type": "toolCall", "name": "exec", "arguments": {"command": "make"}}],
        }])
        assert len(result.messages) == 1
        assert result.messages[0].role == ROLE_TOOL_CALL
        assert result.messages[0].tool_args == "make"

    def test_multiple_text_blocks_joined(self):
        result = normalize_records([{"role": "assistant", "content": _text("a") + _text("b")}])
        assert result.messages[0].text == "a\nb"

    def test_malformed_records_skipped(self):
        result = normalize_records([
            42,
            {"content": "no role"},
            {"role": "user", "content": 7},
            {"role": "user", "content": "kept"},
        ])
        assert result.skipped == 3
        assert [m.text for m in result.messages] == ["kept"]

    def test_non_message_entries_ignored(self):
        result = normalize_records([{"type": "session", "id": "abc"}, _wrapped("user", _text("hi"))])
        assert result.skipped == 0
        assert [m.text for m in result.messages] == ["hi"]

    def test_iso_timestamp_parsed(self):
        result = normalize_records([{"role": "user", "content": "x", "timestamp": "2025-01-01T00:00:00Z"}])
        assert result.messages[0].timestamp == 1735689600000


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------

class TestTranscriptFiles:

    def _write(self, path, lines):
        path.write_text("\n".join(lines) + "\n")
        return path

    def test_bad_lines_counted(self):
        result = parse_transcript_lines([json.dumps(_wrapped("user", _text("hi"))), "{broken", ""])
        assert result.skipped == 1
        assert len(result.messages) == 1

    def test_read_transcript(self, tmp_path):
        path = self._write(tmp_path / "s.jsonl", [
            json.dumps({"type": "session", "id": "s"}),
            json.dumps(_wrapped("user", _text("Fix the build"))),
            json.dumps(_wrapped("assistant", _text("On it"))),
        ])
        result = read_transcript(path)
        assert [m.role for m in result.messages] == [ROLE_USER, ROLE_ASSISTANT]

    def test_read_missing_transcript_raises(self, tmp_path):
        with pytest.raises(OSError):
            read_transcript(tmp_path / "missing.jsonl")

    def test_label_is_first_user_line(self, tmp_path):
        path = self._write(tmp_path / "s.jsonl", [
            json.dumps(_wrapped("assistant", _text("ignored"))),
            json.dumps(_wrapped("user", _text("Deploy the site\nwith details"))),
        ])
        assert read_transcript_label(path) == "Deploy the site"

    def test_label_truncated(self, tmp_path):
        path = self._write(tmp_path / "s.jsonl", [json.dumps(_wrapped("user", _text("y" * 100)))])
        label = read_transcript_label(path)
        assert len(label) == 60
        assert label.endswith("...")

    def test_label_missing_file(self, tmp_path):
        assert read_transcript_label(tmp_path / "nope.jsonl") == ""
