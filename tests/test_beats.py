"""Unit tests for the beats module."""

import json
from pathlib import Path

import pytest

from session_flow.beats import (
    beats_for_file,
    elapsed_ms,
    format_beat_tool_summary,
    parse_timestamp,
    preview,
    segment,
    tool_duration,
    truncate,
)
from session_flow.models import NormalizedMessage, ToolDetails


def user(id: str, content: str, ts: str | None = None) -> NormalizedMessage:
    return NormalizedMessage(id=id, role="user", content=content, timestamp=ts)


def assistant(id: str, content: str, ts: str | None = None) -> NormalizedMessage:
    return NormalizedMessage(id=id, role="assistant", content=content, timestamp=ts)


def tool(id: str, name: str, ts: str | None = None, duration_ms: int | None = None) -> NormalizedMessage:
    return NormalizedMessage(
        id=id,
        role="tool",
        content=f"Tool: {name}",
        timestamp=ts,
        tool=ToolDetails(name=name, duration_ms=duration_ms),
    )


class TestTruncate:
    """Tests for truncate and preview."""

    def test_short_text_unchanged(self) -> None:
        """Short text is returned as-is."""
        assert truncate("hello", 10) == "hello"

    def test_long_text_truncated(self) -> None:
        """Long text is cut with an ellipsis."""
        assert truncate("hello world", 5) == "hello..."

    def test_preview_collapses_whitespace(self) -> None:
        """Newlines and runs of spaces collapse to single spaces."""
        assert preview("line one\n\n   line two") == "line one line two"

    def test_preview_limit(self) -> None:
        """Previews keep the first 70 characters."""
        assert preview("x" * 100) == "x" * 70 + "..."


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_parse_z_suffix(self) -> None:
        """Z-suffixed timestamps parse as UTC."""
        assert parse_timestamp("2026-01-17T10:00:00.000Z").utcoffset().total_seconds() == 0

    def test_parse_invalid(self) -> None:
        """Unparseable timestamps read as None."""
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None

    def test_elapsed(self) -> None:
        """Elapsed time is in milliseconds."""
        assert elapsed_ms("2026-01-17T10:00:00Z", "2026-01-17T10:00:01.500Z") == 1500
        assert elapsed_ms(None, "2026-01-17T10:00:00Z") is None


class TestSegment:
    """Tests for segment function."""

    def test_worked_example(self) -> None:
        """user, tool, assistant form a single beat."""
        messages = [
            user("u1", "hi"),
            NormalizedMessage(
                id="a1", role="tool", content="Tool: search", tool=ToolDetails(name="search", output="result X")
            ),
            assistant("a2", "Found it: result X"),
        ]
        beats = segment(messages)
        assert len(beats) == 1
        beat = beats[0]
        assert beat.tool_count == 1
        assert beat.user_preview == "hi"
        assert beat.assistant_preview == "Found it: result X"
        assert beat.message_ids == ["u1", "a1", "a2"]

    def test_splits_on_user(self) -> None:
        """Each user message starts a new beat."""
        beats = segment([user("u1", "a"), assistant("a1", "b"), user("u2", "c"), assistant("a2", "d")])
        assert [b.message_ids for b in beats] == [["u1", "a1"], ["u2", "a2"]]
        assert [b.index for b in beats] == [0, 1]

    def test_leading_non_user_is_beat_zero(self) -> None:
        """Messages before the first user message form beat 0."""
        beats = segment([assistant("a0", "welcome"), user("u1", "hi"), assistant("a1", "hello")])
        assert len(beats) == 2
        assert beats[0].user_preview == ""
        assert beats[0].assistant_preview == "welcome"
        assert beats[1].user_preview == "hi"

    def test_empty(self) -> None:
        """No messages, no beats."""
        assert segment([]) == []

    def test_assistant_preview_is_last_non_blank(self) -> None:
        """The last assistant message with text wins."""
        beats = segment([user("u", "q"), assistant("a1", "first"), assistant("a2", "final"), assistant("a3", "  ")])
        assert beats[0].assistant_preview == "final"

    def test_user_only_beat(self) -> None:
        """A user message with no reply has an empty assistant preview."""
        beats = segment([user("u", "anyone?")])
        assert beats[0].assistant_preview == ""
        assert beats[0].tool_count == 0


class TestToolDuration:
    """Tests for tool_duration function."""

    def test_explicit_durations_summed(self) -> None:
        """Reported tool durations take precedence."""
        messages = [user("u", "q"), tool("t1", "a", duration_ms=1200), tool("t2", "b", duration_ms=800)]
        assert tool_duration(messages) == 2000

    def test_span_to_last_assistant(self) -> None:
        """Without durations, the span from the first tool to the last reply is used."""
        messages = [
            user("u", "q", "2026-01-17T10:00:00Z"),
            tool("t1", "a", "2026-01-17T10:00:02Z"),
            assistant("a1", "half way", "2026-01-17T10:00:05Z"),
            tool("t2", "b", "2026-01-17T10:00:06Z"),
            assistant("a2", "done", "2026-01-17T10:00:12Z"),
        ]
        assert tool_duration(messages) == 10_000

    def test_missing_timestamps(self) -> None:
        """Missing timestamps give zero rather than an error."""
        assert tool_duration([user("u", "q"), tool("t1", "a"), assistant("a", "x")]) == 0

    def test_no_reply_after_tools(self) -> None:
        """Tools with no following assistant message count as zero."""
        assert tool_duration([user("u", "q", "2026-01-17T10:00:00Z"), tool("t1", "a", "2026-01-17T10:00:02Z")]) == 0


class TestFormatBeatToolSummary:
    """Tests for format_beat_tool_summary function."""

    def test_zero_tools(self) -> None:
        """No tools, no summary."""
        assert format_beat_tool_summary(0, 0) == ""

    @pytest.mark.parametrize(
        ("count", "ms", "expected"),
        [
            (3, 15_000, "3 tools, 15s"),
            (1, 5_000, "1 tool, 5s"),
            (17, 150_000, "17 tools, 2m 30s"),
            (2, 59_600, "2 tools, 1m 0s"),
        ],
    )
    def test_formatting(self, count: int, ms: int, expected: str) -> None:
        """Seconds under a minute, minutes and seconds above."""
        assert format_beat_tool_summary(count, ms) == expected


class TestBeatsForFile:
    """Tests for beats_for_file function."""

    def test_simple_session(self, simple_session: Path) -> None:
        """The fixture session has two beats with one tool each."""
        beats = beats_for_file(simple_session)
        assert len(beats) == 2
        assert beats[0].user_preview == "hi"
        assert beats[0].assistant_preview == "Found one TODO in src/a.py."
        assert (beats[0].tool_count, beats[0].tool_duration_ms) == (1, 7000)
        assert beats[1].user_preview == "thanks, now run the tests"
        assert beats[1].assistant_preview == "All 3 tests pass."
        assert (beats[1].tool_count, beats[1].tool_duration_ms) == (1, 30_000)

    def test_reported_durations_used(self, tmp_path: Path) -> None:
        """Durations recorded with tool results replace the timestamp span."""
        lines = [
            {"type": "user", "uuid": "u", "timestamp": "2026-01-17T10:00:00Z", "message": {"content": "build it"}},
            {
                "type": "assistant",
                "uuid": "a",
                "timestamp": "2026-01-17T10:00:01Z",
                "message": {"content": [{"type": "tool_use", "id": "t1", "name": "Bash", "input": {"command": "make"}}]},
            },
            {
                "type": "user",
                "uuid": "r",
                "timestamp": "2026-01-17T10:00:09Z",
                "toolUseResult": {"durationMs": 4200},
                "message": {"content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]},
            },
            {"type": "assistant", "uuid": "f", "timestamp": "2026-01-17T10:00:20Z", "message": {"content": "Built."}},
        ]
        path = tmp_path / "session.jsonl"
        path.write_text("".join(json.dumps(line) + "\n" for line in lines))
        beats = beats_for_file(path)
        assert (beats[0].tool_count, beats[0].tool_duration_ms) == (1, 4200)
