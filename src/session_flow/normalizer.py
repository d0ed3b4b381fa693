"""Normalization of transcript records into provider-neutral messages.

Tool calls and their results live on different records: the call on an
assistant record, the result on a later user record. Correlation is done in
two passes so that normalization is a pure function of the record list:

1. Collect every tool result by ``tool_use_id``.
2. Walk records in order, emitting user, assistant and tool messages and
   attaching each tool's result from the map built in pass one.
"""

import json
from collections.abc import Iterable, Sequence
from typing import Any, NamedTuple

from loguru import logger

from .models import (
    ContentBlock,
    NormalizedMessage,
    NormalizedTokenUsage,
    OtherContent,
    RecordMessage,
    Role,
    SessionRecord,
    TextContent,
    TokenUsage,
    ToolDetails,
    ToolResultContent,
    ToolUseContent,
)

TOOL_MESSAGE_PREFIX = "Tool: "


def block_text(block: ContentBlock) -> str | None:
    """Text carried by a block, or None when the block is not text-like."""
    if isinstance(block, TextContent):
        return block.text
    if isinstance(block, OtherContent):
        text = getattr(block, "text", None)
        return text if isinstance(text, str) else None
    return None


def content_text(content: str | Sequence[ContentBlock]) -> str:
    """Flatten message content to text, joining text blocks with newlines."""
    if isinstance(content, str):
        return content
    parts = [text for block in content if (text := block_text(block)) is not None]
    return "\n".join(parts)


def is_result_carrier(content: str | Sequence[ContentBlock]) -> bool:
    """True when content holds only tool results (or nothing at all)."""
    if isinstance(content, str):
        return False
    return all(isinstance(block, ToolResultContent) for block in content)


def tool_result_text(content: Any) -> str:
    """Flatten a tool_result payload to text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list) and all(
        isinstance(item, dict) and item.get("type") == "text" for item in content
    ):
        return "\n".join(str(item.get("text", "")) for item in content)
    return json.dumps(content)


def normalize_usage(usage: TokenUsage | None) -> NormalizedTokenUsage | None:
    """Convert provider usage to normalized counts; total is the sum of all four."""
    if usage is None:
        return None
    return NormalizedTokenUsage(
        input=usage.input_tokens,
        output=usage.output_tokens,
        cache_read=usage.cache_read_input_tokens,
        cache_write=usage.cache_creation_input_tokens,
        total=(
            usage.input_tokens
            + usage.output_tokens
            + usage.cache_read_input_tokens
            + usage.cache_creation_input_tokens
        ),
    )


def extract_reasoning(record: SessionRecord) -> str | None:
    """Record-level reasoning, else the joined text of thinking blocks."""
    if record.reasoning:
        return record.reasoning
    content = record.content
    if isinstance(content, str):
        return None
    thoughts = [
        thinking
        for block in content
        if isinstance(block, OtherContent)
        and block.type == "thinking"
        and isinstance(thinking := getattr(block, "thinking", None), str)
        and thinking
    ]
    return "\n".join(thoughts) if thoughts else None


class ToolResult(NamedTuple):
    """A tool's answer as found on a user record."""

    output: str
    is_error: bool
    duration_ms: int | None = None


def result_duration(record: SessionRecord, block: ToolResultContent) -> int | None:
    """Reported run time of a tool, in milliseconds.

    Read from the block's own duration_ms, else from the record's
    toolUseResult when the record answers a single call.
    """
    candidates: list[Any] = [getattr(block, "duration_ms", None)]
    details = (record.model_extra or {}).get("toolUseResult")
    results = [b for b in record.content if isinstance(b, ToolResultContent)]
    if isinstance(details, dict) and len(results) == 1:
        candidates += [details.get("durationMs"), details.get("totalDurationMs")]
    for value in candidates:
        if isinstance(value, (int, float)) and not isinstance(value, bool) and value >= 0:
            return int(value)
    return None


def collect_tool_results(records: Iterable[SessionRecord]) -> dict[str, ToolResult]:
    """Map tool_use_id to its result across all user records."""
    results: dict[str, ToolResult] = {}
    for record in records:
        if record.type != "user" or isinstance(record.content, str):
            continue
        for block in record.content:
            if isinstance(block, ToolResultContent):
                results[block.tool_use_id] = ToolResult(
                    tool_result_text(block.content),
                    bool(block.is_error),
                    result_duration(record, block),
                )
    return results


def normalize(records: Sequence[SessionRecord]) -> list[NormalizedMessage]:
    """Convert records to normalized messages.

    Pure result carriers and system records produce no message. Results whose
    tool call never appears are dropped with a warning.
    """
    results = collect_tool_results(records)
    consumed: set[str] = set()
    messages: list[NormalizedMessage] = []

    for record in records:
        content = record.content

        if record.type == "user":
            if is_result_carrier(content):
                continue
            messages.append(
                NormalizedMessage(
                    id=record.uuid or f"user-{len(messages)}",
                    role=Role.USER,
                    content=content_text(content),
                    timestamp=record.timestamp,
                    source_data={"type": "user", "uuid": record.uuid},
                )
            )

        elif record.type == "assistant":
            message = record.message or RecordMessage()
            tokens = normalize_usage(message.usage)
            reasoning = extract_reasoning(record)
            tool_uses = (
                []
                if isinstance(content, str)
                else [block for block in content if isinstance(block, ToolUseContent)]
            )
            text = content_text(content)

            if not tool_uses or text.strip():
                source_data: dict[str, Any] = {"type": "assistant", "uuid": record.uuid}
                if reasoning:
                    source_data["reasoning"] = reasoning
                messages.append(
                    NormalizedMessage(
                        id=record.uuid or f"assistant-{len(messages)}",
                        role=Role.ASSISTANT,
                        content=text,
                        timestamp=record.timestamp,
                        tokens=tokens,
                        model=message.model,
                        source_data=source_data,
                    )
                )
                tokens = None
                reasoning = None

            for block in tool_uses:
                result = results.get(block.id)
                if result is not None:
                    consumed.add(block.id)
                tool_source: dict[str, Any] = {
                    "type": "tool_use",
                    "tool_use_id": block.id,
                    "record_uuid": record.uuid,
                }
                if reasoning:
                    tool_source["reasoning"] = reasoning
                messages.append(
                    NormalizedMessage(
                        id=block.id,
                        role=Role.TOOL,
                        content=f"{TOOL_MESSAGE_PREFIX}{block.name}",
                        timestamp=record.timestamp,
                        # A record with no text hands its usage to its first tool call.
                        tokens=tokens,
                        model=message.model if tokens is not None else None,
                        tool=ToolDetails(
                            name=block.name,
                            input=block.input,
                            output=result.output if result else None,
                            is_error=result.is_error if result else None,
                            duration_ms=result.duration_ms if result else None,
                        ),
                        source_data=tool_source,
                    )
                )
                tokens = None
                reasoning = None

    for orphan in results.keys() - consumed:
        logger.warning(f"Dropping tool result with no matching tool call: {orphan}")

    return messages


def denormalize(messages: Sequence[NormalizedMessage]) -> list[SessionRecord]:
    """Re-encode normalized messages as records.

    An assistant message and the tool calls that came from the same record are
    folded back into one assistant record. Each answered call follows as its
    own user record carrying one tool_result. Normalizing the result gives back
    the same messages.
    """
    records: list[SessionRecord] = []
    i = 0
    while i < len(messages):
        msg = messages[i]

        if msg.role == Role.USER:
            records.append(
                SessionRecord(
                    type="user",
                    uuid=msg.source_data.get("uuid"),
                    timestamp=msg.timestamp,
                    message=RecordMessage(role="user", content=msg.content),
                )
            )
            i += 1
            continue

        blocks: list[ContentBlock] = []
        if msg.role == Role.ASSISTANT:
            uuid = msg.source_data.get("uuid")
            reasoning = msg.source_data.get("reasoning")
            if msg.content:
                blocks.append(TextContent(type="text", text=msg.content))
            tools, i = _tool_run(messages, i + 1, uuid, take_first=False)
        else:
            uuid = msg.source_data.get("record_uuid")
            reasoning = msg.source_data.get("reasoning")
            tools, i = _tool_run(messages, i, uuid, take_first=True)

        blocks.extend(
            ToolUseContent(type="tool_use", id=tool.id, name=tool.tool.name, input=tool.tool.input)
            for tool in tools
        )
        if msg.role == Role.ASSISTANT and not tools:
            content: str | list[ContentBlock] = msg.content
        else:
            content = blocks

        record = SessionRecord(
            type="assistant",
            uuid=uuid,
            timestamp=msg.timestamp,
            message=RecordMessage(
                role="assistant",
                content=content,
                model=msg.model,
                usage=_usage(msg.tokens),
            ),
        )
        if reasoning:
            record.reasoning = reasoning
        records.append(record)

        # One carrier per answered call, the way live transcripts store them.
        for tool in tools:
            if tool.tool.output is None:
                continue
            details: dict[str, Any] = {}
            if tool.tool.duration_ms is not None:
                details["toolUseResult"] = {"durationMs": tool.tool.duration_ms}
            result = ToolResultContent(
                type="tool_result",
                tool_use_id=tool.id,
                content=tool.tool.output,
                is_error=bool(tool.tool.is_error),
            )
            records.append(
                SessionRecord(
                    type="user",
                    timestamp=tool.timestamp,
                    message=RecordMessage(role="user", content=[result]),
                    **details,
                )
            )
    return records


def _tool_run(
    messages: Sequence[NormalizedMessage], start: int, record_uuid: str | None, take_first: bool
) -> tuple[list[NormalizedMessage], int]:
    """Collect the consecutive tool messages that came from record record_uuid."""
    tools: list[NormalizedMessage] = []
    i = start
    while i < len(messages) and messages[i].role == Role.TOOL:
        msg = messages[i]
        # Only the first tool call of a record carries its tokens and reasoning.
        same_record = (
            record_uuid is not None
            and msg.source_data.get("record_uuid") == record_uuid
            and msg.tokens is None
            and "reasoning" not in msg.source_data
        )
        if not same_record and not (take_first and i == start):
            break
        tools.append(msg)
        i += 1
    return tools, i


def _usage(tokens: NormalizedTokenUsage | None) -> TokenUsage | None:
    if tokens is None:
        return None
    return TokenUsage(
        input_tokens=tokens.input,
        output_tokens=tokens.output,
        cache_creation_input_tokens=tokens.cache_write,
        cache_read_input_tokens=tokens.cache_read,
    )
