"""Domain models for session-flow."""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator
from pydantic.alias_generators import to_camel


class Role(str, Enum):
    """Roles of normalized messages."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


def coerce_tool_input(value: Any) -> dict[str, Any]:
    """Tool arguments as a dict: JSON object strings are decoded, other values wrapped."""
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return {"value": value}
        if isinstance(decoded, dict):
            return decoded
    return {"value": value}


# On-disk content blocks. Unknown block types are kept verbatim in OtherContent.


class TextContent(BaseModel):
    """A text block."""

    model_config = ConfigDict(extra="allow")

    type: Literal["text"]
    text: str = ""


class ToolUseContent(BaseModel):
    """A tool invocation requested by the assistant."""

    model_config = ConfigDict(extra="allow")

    type: Literal["tool_use"]
    id: str
    name: str
    input: dict[str, Any] = {}

    @field_validator("input", mode="before")
    @classmethod
    def _coerce_input(cls, value: Any) -> dict[str, Any]:
        return coerce_tool_input(value)


class ToolResultContent(BaseModel):
    """The result of a tool invocation, carried on a user record."""

    model_config = ConfigDict(extra="allow")

    type: Literal["tool_result"]
    tool_use_id: str
    content: Any = ""
    is_error: bool | None = None


class OtherContent(BaseModel):
    """Any other block (thinking, image, ...), preserved for round-trips."""

    model_config = ConfigDict(extra="allow")

    type: str


KNOWN_BLOCK_TYPES = ("text", "tool_use", "tool_result")


def _block_tag(value: Any) -> str:
    block_type = value.get("type") if isinstance(value, dict) else getattr(value, "type", None)
    return block_type if block_type in KNOWN_BLOCK_TYPES else "other"


ContentBlock = Annotated[
    Union[
        Annotated[TextContent, Tag("text")],
        Annotated[ToolUseContent, Tag("tool_use")],
        Annotated[ToolResultContent, Tag("tool_result")],
        Annotated[OtherContent, Tag("other")],
    ],
    Discriminator(_block_tag),
]


class TokenUsage(BaseModel):
    """Token usage as reported by the provider. Missing or bad counts read as 0."""

    model_config = ConfigDict(extra="allow")

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @field_validator(
        "input_tokens",
        "output_tokens",
        "cache_creation_input_tokens",
        "cache_read_input_tokens",
        mode="before",
    )
    @classmethod
    def _coerce_count(cls, value: Any) -> int:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0
        return max(int(value), 0)


class RecordMessage(BaseModel):
    """The provider message carried by a record."""

    model_config = ConfigDict(extra="allow")

    role: str | None = None
    content: str | list[ContentBlock] = ""
    model: str | None = None
    usage: TokenUsage | None = None


class SessionRecord(BaseModel):
    """One line of a JSONL transcript."""

    model_config = ConfigDict(extra="allow")

    type: Literal["user", "assistant", "system"]
    uuid: str | None = None
    timestamp: str | None = None
    message: RecordMessage | None = None
    reasoning: str | None = None

    @property
    def content(self) -> str | list[ContentBlock]:
        """Message content, or an empty string when the record has no message."""
        return self.message.content if self.message is not None else ""


# Normalized, in-memory representation.


class NormalizedTokenUsage(BaseModel):
    """Token counts in provider-neutral form."""

    model_config = ConfigDict(frozen=True)

    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_write: int = 0
    total: int = 0


class ToolDetails(BaseModel):
    """Tool call details of a normalized tool message."""

    model_config = ConfigDict(frozen=True)

    name: str
    input: dict[str, Any] = {}
    output: str | None = None  # None until the correlated result is seen
    is_error: bool | None = None
    duration_ms: int | None = None


class NormalizedMessage(BaseModel):
    """A message in the common representation shared by all sources."""

    model_config = ConfigDict(frozen=True)

    id: str
    role: Role
    content: str
    timestamp: str | None = None
    tokens: NormalizedTokenUsage | None = None
    model: str | None = None
    tool: ToolDetails | None = None
    source_data: dict[str, Any] = {}


class ConversationBeat(BaseModel):
    """A user turn plus everything up to the next user turn."""

    index: int
    user_preview: str
    assistant_preview: str
    tool_count: int = 0
    tool_duration_ms: int = 0
    messages: list[NormalizedMessage] = []
    message_ids: list[str] = []


class SizeBreakdown(BaseModel):
    """Character counts per content category."""

    user_chars: int = 0
    assistant_chars: int = 0
    reasoning_chars: int = 0
    tool_call_chars: int = 0
    tool_result_chars: int = 0


class SessionSummary(BaseModel):
    """Aggregate statistics of a session. Always derived, never persisted."""

    total_messages: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    tool_calls: int = 0
    token_usage: NormalizedTokenUsage = NormalizedTokenUsage()
    estimated_cost: float = 0.0
    duration_ms: int | None = None
    first_message: str | None = None
    last_message: str | None = None
    reasoning_count: int = 0
    reasoning_chars: int = 0
    size_breakdown: SizeBreakdown = SizeBreakdown()


class PriceTable(BaseModel):
    """USD prices per million tokens."""

    input_per_mtok: float = Field(default=3.0, ge=0)
    output_per_mtok: float = Field(default=15.0, ge=0)
    cache_write_per_mtok: float = Field(default=3.75, ge=0)
    cache_read_per_mtok: float = Field(default=0.30, ge=0)


# Session store.


class SessionIndexEntry(BaseModel):
    """Metadata of one session file, as kept in sessions-index.json."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    session_id: str
    full_path: str
    file_mtime: float  # milliseconds since the epoch
    first_prompt: str = "(no prompt)"
    message_count: int = 0
    created: str | None = None
    modified: str | None = None
    git_branch: str = "main"
    project_path: str = ""
    is_sidechain: bool = False


class SessionsIndex(BaseModel):
    """The sessions-index.json document."""

    version: int = 1
    entries: list[SessionIndexEntry] = []


class SkippedSession(BaseModel):
    """A session file that could not be read while listing."""

    path: str
    error: str


class SessionListing(BaseModel):
    """Result of listing the sessions under a root."""

    sessions: list[SessionIndexEntry] = []
    skipped: list[SkippedSession] = []
    total_count: int = 0


class SessionFilter(BaseModel):
    """Criteria for selecting sessions. Unset criteria match everything."""

    git_branch: str | None = None
    is_sidechain: bool | None = None
    # Bounds on the last-modified time, inclusive. Naive values are UTC.
    since: datetime | None = None
    until: datetime | None = None
    min_messages: int | None = None
    max_messages: int | None = None

    @field_validator("since", "until")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SessionStats(BaseModel):
    """Aggregate counts over the sessions under a root."""

    total_sessions: int = 0
    total_messages: int = 0
    sidechain_sessions: int = 0
    branch_counts: dict[str, int] = {}
    # created timestamps of the oldest and newest sessions
    oldest_session: str | None = None
    newest_session: str | None = None


class SessionNotFound(BaseModel):
    """Typed not-found result for lookups by id or prefix."""

    error: Literal["NOT_FOUND", "AMBIGUOUS"]
    query: str
    candidates: list[str] = []
    message: str = ""


# Cache.


class CacheEntry(BaseModel):
    """One cached value as stored on disk."""

    key: str
    value: Any
    stored_at: str


class CacheStats(BaseModel):
    """Hit/miss accounting of a cache service."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    coalesced: int = 0
    total_requests: int = 0
    hit_rate: float = 0.0


class ModelResponse(BaseModel):
    """What a model invoker returns."""

    content: str
    usage: NormalizedTokenUsage = NormalizedTokenUsage()
    model: str | None = None
