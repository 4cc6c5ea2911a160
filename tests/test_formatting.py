"""Tests for the clean → compress → format content pipeline."""

from oclaw.formatting import (
    clean_content,
    compress_content,
    detect_channel,
    extract_query,
    filter_by_source,
    format_messages,
    is_planning_filler,
    next_source_filter,
    render_process_log,
    render_transcript,
    shorten_path,
    strip_ansi,
    summarize_tool,
)
from oclaw.models import CanonicalMessage, VerboseLevel


def _user(text):
    return CanonicalMessage(role="user", text=text)


def _assistant(text, model=""):
    return CanonicalMessage(role="assistant", text=text, model=model)


def _call(name, args):
    return CanonicalMessage(role="tool_call", tool_name=name, tool_args=args)


def _result(name, args, text="", error=False):
    return CanonicalMessage(role="tool_result", tool_name=name, tool_args=args, text=text, tool_error=error)


def _conversation():
    return [
        _user("List the files"),
        _call("exec", "ls"),
        _result("exec", "ls", "a.txt\nb.txt"),
        _assistant("Two files.", model="claude-sonnet-4"),
    ]


class TestStripAnsi:

    def test_csi_sequences(self):
        assert strip_ansi("\x1b[1;31mred\x1b[0m plain") == "red plain"

    def test_osc_sequences(self):
        assert strip_ansi("\x1b]0;window title\x07text") == "text"
        assert strip_ansi("\x1b]8;;http://x\x1b\\link\x1b]8;;\x1b\\") == "link"

    def test_no_escape_survives(self):
        samples = ["\x1b", "a\x1b[", "\x1b[?25l\x1b[2K", "x\x1b\x1b[mz", "\x1b]unterminated"]
        for sample in samples:
            assert "\x1b" not in strip_ansi(sample)


class TestCleanContent:

    def test_line_endings(self):
        assert clean_content("a\r\nb\rc") == "a\nb\nc"

    def test_box_drawing(self):
        assert clean_content("┌─┐\n│x│\n└─┘") == "+-+\n|x|\n+-+"

    def test_blocks_and_braille(self):
        assert clean_content("▀▄ ⣿⠁") == "## .."

    def test_plain_text_untouched(self):
        assert clean_content("héllo → wörld") == "héllo → wörld"


class TestCompressContent:

    def test_drops_role_banners(self):
        content = "--- USER ---\nhi\n─── ASSISTANT (claude-sonnet-4) ───\nhello"
        assert compress_content(content) == "hi\nhello"

    def test_drops_planning_filler(self):
        content = "Now let me check the config:\nconfig ok\nNow let me explain why"
        assert compress_content(content) == "config ok\nNow let me explain why"

    def test_collapses_blank_runs(self):
        assert compress_content("a\n\n\n\nb\n \n\nc") == "a\n\nb\n \nc"

    def test_idempotent(self):
        samples = [
            "--- USER ---\n\n\nhi\n\n--- ASSISTANT ---\n\n\nNow I'll run it:\n\nok\n",
            clean_content(format_messages(_conversation(), VerboseLevel.FULL)),
            "\n\n\n",
            "",
        ]
        for sample in samples:
            once = compress_content(sample)
            assert compress_content(once) == once

    def test_filler_requires_colon(self):
        assert is_planning_filler("Now let's look at tests:")
        assert not is_planning_filler("Now let's look at tests")


class TestFormatMessages:

    def test_summary_pairs_call_and_result(self):
        out = format_messages(_conversation(), VerboseLevel.SUMMARY)
        assert out.split("\n") == [
            "─── USER ───",
            "List the files",
            "",
            " ✓ 🛠️ $ ls",
            "─── ASSISTANT (claude-sonnet-4) ───",
            "Two files.",
            "",
            "",
        ]

    def test_off_hides_tools(self):
        out = format_messages(_conversation(), VerboseLevel.OFF)
        assert "🛠️" not in out
        assert "TOOL" not in out
        assert "List the files" in out
        assert "Two files." in out

    def test_full_renders_tool_blocks(self):
        out = format_messages(_conversation(), VerboseLevel.FULL)
        assert "─── TOOL CALL (exec) ───\nls\n" in out
        assert "─── TOOL RESULT (exec) ───\na.txt\nb.txt\n" in out

    def test_failed_result_expands_error(self):
        error = "\n".join(f"line {i}" for i in range(8))
        out = format_messages([_call("exec", "make"), _result("exec", "make", error, error=True)], VerboseLevel.SUMMARY)
        lines = out.rstrip("\n").split("\n")
        assert lines[0] == " ✗ 🛠️ $ make (failed)"
        assert lines[1:7] == [f"   line {i}" for i in range(6)]
        assert lines[7] == "   …"

    def test_unpaired_call_listed_at_end(self):
        out = format_messages([_call("read", "/tmp/x"), _user("still waiting")], VerboseLevel.SUMMARY)
        assert out.rstrip("\n").split("\n")[-1] == " 📖 read /tmp/x"

    def test_empty(self):
        assert format_messages([], VerboseLevel.SUMMARY) == ""


class TestToolSummaries:

    def test_read_shortens_path(self):
        assert summarize_tool(_result("read", "/home/me/src/app/main.py")) == "read …/src/app/main.py"

    def test_search_quotes_query(self):
        assert summarize_tool(_result("web_search", "textual tutorial")) == 'search "textual tutorial"'

    def test_unknown_tool(self):
        assert summarize_tool(_result("custom", "x")) == "custom x"

    def test_shorten_short_path(self):
        assert shorten_path("a/b.py") == "a/b.py"


class TestQueryAndSources:

    def test_extract_query_from_cleaned_content(self):
        content = clean_content(format_messages(_conversation(), VerboseLevel.SUMMARY))
        assert extract_query(content) == "List the files"

    def test_extract_query_inline(self):
        assert extract_query("user: deploy it") == "deploy it"

    def test_extract_query_none(self):
        assert extract_query("just some log output") == ""

    def test_render_transcript(self):
        content, query = render_transcript(_conversation(), VerboseLevel.SUMMARY)
        assert "USER" not in content
        assert "ASSISTANT" not in content
        assert "List the files" in content
        assert query == "List the files"

    def test_render_process_log(self):
        content, query = render_process_log("\x1b[32mbuilding\x1b[0m\r\ndone")
        assert content == "building\ndone"
        assert query == ""

    def test_detect_channel(self):
        assert detect_channel("[Signal +15551234] hi") == "signal"
        assert detect_channel("[matrix @bob:example.org] yo") == "matrix"
        assert detect_channel("plain") == ""

    def test_filter_by_source(self):
        messages = [
            _user("[Signal +1555] from signal"),
            _assistant("signal reply"),
            _user("[Matrix @bob] from matrix"),
            _assistant("matrix reply"),
            _user("untagged"),
        ]
        kept = [m.text for m in filter_by_source(messages, "signal")]
        assert kept == ["[Signal +1555] from signal", "signal reply", "untagged"]
        assert filter_by_source(messages, "") == messages

    def test_filter_hides_results_of_hidden_calls(self):
        messages = [
            _user("[Matrix @bob] run it"),
            _call("exec", "hidden"),
            _user("[Signal +1555] status?"),
            _result("exec", "hidden", "secret output"),
            _call("exec", "shown"),
            _result("exec", "shown", "ok"),
        ]
        kept = filter_by_source(messages, "signal")
        assert [(m.role, m.tool_args) for m in kept] == [
            ("user", ""),
            ("tool_call", "shown"),
            ("tool_result", "shown"),
        ]
        out = format_messages(kept, VerboseLevel.SUMMARY)
        assert "hidden" not in out
        assert " ✓ 🛠️ $ shown" in out

    def test_source_filter_cycle(self):
        assert next_source_filter("") == "signal"
        assert next_source_filter("signal") == "matrix"
        assert next_source_filter("matrix") == ""
