"""Segmentation of normalized messages into conversation beats.

A beat is one user message plus the assistant and tool activity that follows
it, up to the next user message. Messages before the first user message form
beat 0 with an empty user preview, so every message belongs to exactly one
beat.
"""

from collections.abc import Sequence
from datetime import datetime, timezone
from pathlib import Path

from .codec import decode_file
from .models import ConversationBeat, NormalizedMessage, Role
from .normalizer import normalize

PREVIEW_CHARS = 70


def truncate(text: str, max_len: int = 300) -> str:
    """Truncate text with ellipsis."""
    text = str(text)
    if len(text) > max_len:
        return text[:max_len] + "..."
    return text


def preview(text: str, max_len: int = PREVIEW_CHARS) -> str:
    """Collapse whitespace and truncate for a one-line preview."""
    return truncate(" ".join(text.split()), max_len)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp. Naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def elapsed_ms(start: str | None, end: str | None) -> int | None:
    """Milliseconds between two timestamps, or None if either is unusable."""
    started = parse_timestamp(start)
    ended = parse_timestamp(end)
    if started is None or ended is None:
        return None
    return int((ended - started).total_seconds() * 1000)


def tool_duration(messages: Sequence[NormalizedMessage]) -> int:
    """Time spent in tools within a beat.

    Explicit tool durations are summed when any tool reports one. Otherwise the
    span runs from the first tool call to the last assistant message after it.
    """
    tools = [m for m in messages if m.role == Role.TOOL]
    if not tools:
        return 0
    explicit = [m.tool.duration_ms for m in tools if m.tool and m.tool.duration_ms is not None]
    if explicit:
        return sum(explicit)

    first_tool = next(i for i, m in enumerate(messages) if m.role == Role.TOOL)
    last_assistant = None
    for m in messages[first_tool + 1 :]:
        if m.role == Role.ASSISTANT:
            last_assistant = m
    if last_assistant is None:
        return 0
    span = elapsed_ms(messages[first_tool].timestamp, last_assistant.timestamp)
    return max(span, 0) if span is not None else 0


def _build_beat(index: int, messages: list[NormalizedMessage]) -> ConversationBeat:
    first = messages[0]
    user_preview = preview(first.content) if first.role == Role.USER else ""

    assistant_text = ""
    for m in messages:
        if m.role == Role.ASSISTANT and m.content.strip():
            assistant_text = m.content

    return ConversationBeat(
        index=index,
        user_preview=user_preview,
        assistant_preview=preview(assistant_text),
        tool_count=sum(1 for m in messages if m.role == Role.TOOL),
        tool_duration_ms=tool_duration(messages),
        messages=messages,
        message_ids=[m.id for m in messages],
    )


def segment(messages: Sequence[NormalizedMessage]) -> list[ConversationBeat]:
    """Group messages into beats in a single pass."""
    beats: list[ConversationBeat] = []
    current: list[NormalizedMessage] = []
    for msg in messages:
        if msg.role == Role.USER and current:
            beats.append(_build_beat(len(beats), current))
            current = []
        current.append(msg)
    if current:
        beats.append(_build_beat(len(beats), current))
    return beats


def format_beat_tool_summary(tool_count: int, tool_duration_ms: int) -> str:
    """Format tool activity for display, e.g. "17 tools, 2m 30s" or "1 tool, 5s"."""
    if tool_count == 0:
        return ""
    label = f"{tool_count} tool{'' if tool_count == 1 else 's'}"
    seconds = int(tool_duration_ms / 1000 + 0.5)
    if seconds < 60:
        return f"{label}, {seconds}s"
    return f"{label}, {seconds // 60}m {seconds % 60}s"


def beats_for_file(path: Path) -> list[ConversationBeat]:
    """Decode, normalize and segment a JSONL transcript."""
    return segment(normalize(decode_file(path)))
