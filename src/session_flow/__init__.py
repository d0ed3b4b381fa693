"""session-flow: Normalize, segment, summarize and persist agent session transcripts."""

from .beats import format_beat_tool_summary, segment
from .cache import CacheService, cached_invoke
from .codec import decode_file, decode_line, encode_record, stream_file
from .models import (
    ConversationBeat,
    NormalizedMessage,
    PriceTable,
    SessionNotFound,
    SessionRecord,
    SessionSummary,
)
from .normalizer import denormalize, normalize
from .store import SessionStore
from .summary import summarize
from .writer import TranscriptWriter

__all__ = [
    "CacheService",
    "ConversationBeat",
    "NormalizedMessage",
    "PriceTable",
    "SessionNotFound",
    "SessionRecord",
    "SessionStore",
    "SessionSummary",
    "TranscriptWriter",
    "cached_invoke",
    "decode_file",
    "decode_line",
    "denormalize",
    "encode_record",
    "format_beat_tool_summary",
    "normalize",
    "segment",
    "stream_file",
    "summarize",
]
