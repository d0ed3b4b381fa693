"""JSON rendering of sessions for the CLI."""

import json
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from .beats import format_beat_tool_summary
from .models import ConversationBeat, NormalizedMessage, Role


def message_to_dict(msg: NormalizedMessage) -> dict:
    """Convert a normalized message to a dict, leaving out empty fields."""
    return msg.model_dump(mode="json", exclude_none=True)


def beat_to_dict(beat: ConversationBeat, with_messages: bool = False) -> dict:
    """Convert a beat to a dict with a display-ready tool summary."""
    data = {
        "index": beat.index,
        "user_preview": beat.user_preview,
        "assistant_preview": beat.assistant_preview,
        "tool_count": beat.tool_count,
        "tool_duration_ms": beat.tool_duration_ms,
        "tool_summary": format_beat_tool_summary(beat.tool_count, beat.tool_duration_ms),
        "message_ids": beat.message_ids,
    }
    if with_messages:
        data["messages"] = [message_to_dict(m) for m in beat.messages]
    return data


def compute_metadata(
    messages: Sequence[NormalizedMessage], session_id: str, beats: Sequence[ConversationBeat] = ()
) -> dict:
    """Compute summary metadata for the session."""
    started = next((m.timestamp for m in messages if m.timestamp), None)
    metadata = {
        "session_id": session_id,
        "started": started,
        "total_messages": len(messages),
        "tool_calls": sum(1 for m in messages if m.role == Role.TOOL),
    }
    if beats:
        metadata["total_beats"] = len(beats)
    return metadata


def render_json(data: Any, compact: bool = False) -> str:
    """Render models, lists of models or plain data as a JSON string."""
    return json.dumps(_plain(data), indent=None if compact else 2, ensure_ascii=False)


def _plain(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json", by_alias=True)
    if isinstance(data, dict):
        return {k: _plain(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [_plain(v) for v in data]
    return data


def render_transcript(
    messages: Sequence[NormalizedMessage], session_id: str, compact: bool = False
) -> str:
    """Render normalized messages, with metadata first."""
    ordered = {
        "metadata": compute_metadata(messages, session_id),
        "messages": [message_to_dict(m) for m in messages],
    }
    return render_json(ordered, compact=compact)


def render_beats(
    beats: Sequence[ConversationBeat],
    session_id: str,
    compact: bool = False,
    with_messages: bool = False,
) -> str:
    """Render beats, with metadata first."""
    messages = [m for beat in beats for m in beat.messages]
    ordered = {
        "metadata": compute_metadata(messages, session_id, beats),
        "beats": [beat_to_dict(b, with_messages=with_messages) for b in beats],
    }
    return render_json(ordered, compact=compact)
