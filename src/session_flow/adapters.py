"""Conversion of Vercel AI SDK CoreMessage lists into transcript records.

SDK versions disagree on field names (``args`` vs ``input`` for tool calls,
``result`` vs ``output`` for tool results) and on where tool calls live
(content parts vs ``toolInvocations``). All of that is resolved here so the
rest of the package only ever sees SessionRecord.
"""

import json
from collections.abc import Iterable
from typing import Any

from .models import (
    ContentBlock,
    RecordMessage,
    SessionRecord,
    TextContent,
    ToolResultContent,
    ToolUseContent,
    coerce_tool_input,
)

TOOL_CALL_PARTS = ("tool-call", "tool-invocation")

# Vercel tool output envelopes: {"type": "text" | "json" | "error-text" | "error-json", "value": ...}
OUTPUT_ENVELOPE_TYPES = ("text", "json", "error-text", "error-json")


def _first_present(part: dict[str, Any], *keys: str) -> Any:
    """Return the first key's value that is present and not None."""
    for key in keys:
        if part.get(key) is not None:
            return part[key]
    return None


def tool_output(value: Any, is_error: bool = False) -> tuple[str, bool]:
    """Flatten a tool result value to text, unwrapping SDK output envelopes.

    Returns:
        Tuple of (content, is_error).
    """
    if (
        isinstance(value, dict)
        and value.get("type") in OUTPUT_ENVELOPE_TYPES
        and "value" in value
    ):
        is_error = is_error or value["type"].startswith("error")
        value = value["value"]
    if value is None:
        value = ""
    if isinstance(value, str):
        return value, is_error
    return json.dumps(value), is_error


def _tool_use(part: dict[str, Any], fallback_id: str) -> ToolUseContent:
    return ToolUseContent(
        type="tool_use",
        id=part.get("toolCallId") or fallback_id,
        name=part.get("toolName") or "unknown",
        input=coerce_tool_input(_first_present(part, "args", "input")),
    )


def _tool_result(part: dict[str, Any], value: Any) -> ToolResultContent:
    content, is_error = tool_output(value, bool(part.get("isError")))
    return ToolResultContent(
        type="tool_result",
        tool_use_id=part.get("toolCallId") or "",
        content=content,
        is_error=is_error,
    )


def content_blocks(content: Any, position: int = 0) -> list[ContentBlock]:
    """Convert CoreMessage content (a string or a list of parts) to blocks."""
    if isinstance(content, str):
        return [TextContent(type="text", text=content)] if content else []
    if not isinstance(content, list):
        text = "" if content is None else str(content)
        return [TextContent(type="text", text=text)] if text else []

    blocks: list[ContentBlock] = []
    for i, part in enumerate(content):
        if not isinstance(part, dict):
            continue
        part_type = part.get("type")
        if part_type in TOOL_CALL_PARTS:
            blocks.append(_tool_use(part, f"call-{position}-{i}"))
        elif part_type == "tool-result":
            blocks.append(_tool_result(part, _first_present(part, "result", "output")))
        elif isinstance(part.get("text"), str):
            blocks.append(TextContent(type="text", text=part["text"]))
    return blocks


def _collapse(blocks: list[ContentBlock]) -> str | list[ContentBlock]:
    """A lone text block is stored as a plain string."""
    if not blocks:
        return ""
    if len(blocks) == 1 and isinstance(blocks[0], TextContent):
        return blocks[0].text
    return blocks


def _invocation_results(
    invocations: list[dict[str, Any]], position: int
) -> list[ToolResultContent]:
    results = []
    for i, inv in enumerate(invocations):
        if inv.get("state") != "result" and inv.get("result") is None:
            continue
        result = _tool_result(inv, _first_present(inv, "result", "output"))
        result.tool_use_id = result.tool_use_id or f"call-{position}-inv-{i}"
        results.append(result)
    return results


def records_from_core_messages(messages: Iterable[dict[str, Any]]) -> list[SessionRecord]:
    """Convert CoreMessage dicts to transcript records.

    System messages are skipped. Assistant tool calls from content parts and
    from ``toolInvocations`` are merged and deduplicated by id; invocation
    results follow as a user record carrying only tool_result blocks. Tool-role
    messages become such result-carrier records too. The records carry no uuid
    or timestamp.
    """
    records: list[SessionRecord] = []
    for position, msg in enumerate(messages):
        role = msg.get("role")
        content = msg.get("content")

        if role == "user":
            records.append(_record("user", _collapse(content_blocks(content, position))))

        elif role == "assistant":
            invocations = [i for i in msg.get("toolInvocations") or [] if isinstance(i, dict)]
            blocks = content_blocks(content, position) + [
                _tool_use(inv, f"call-{position}-inv-{i}") for i, inv in enumerate(invocations)
            ]
            seen: set[str] = set()
            deduped: list[ContentBlock] = []
            for block in blocks:
                if isinstance(block, ToolUseContent):
                    if block.id in seen:
                        continue
                    seen.add(block.id)
                deduped.append(block)
            records.append(_record("assistant", _collapse(deduped)))

            results = _invocation_results(invocations, position)
            if results:
                records.append(_record("user", list(results)))

        elif role == "tool":
            default_id = msg.get("toolCallId") or ""
            carried: list[ContentBlock] = []
            for block in content_blocks(content, position):
                if isinstance(block, ToolResultContent):
                    if not block.tool_use_id:
                        block.tool_use_id = default_id
                    carried.append(block)
                elif isinstance(block, TextContent):
                    carried.append(
                        ToolResultContent(
                            type="tool_result",
                            tool_use_id=default_id,
                            content=block.text,
                            is_error=False,
                        )
                    )
            records.append(_record("user", carried))

    return records


def _record(record_type: str, content: str | list[ContentBlock]) -> SessionRecord:
    return SessionRecord(
        type=record_type,
        message=RecordMessage(role=record_type, content=content),
    )
