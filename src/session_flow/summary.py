"""Session statistics: message counts, token totals, cost, duration and sizes."""

import json
from collections.abc import Mapping, Sequence

from .beats import elapsed_ms, parse_timestamp
from .models import (
    NormalizedMessage,
    NormalizedTokenUsage,
    PriceTable,
    Role,
    SessionSummary,
    SizeBreakdown,
)

DEFAULT_PRICES = PriceTable()

Prices = PriceTable | Mapping[str, PriceTable] | None


def calculate_cost(usage: NormalizedTokenUsage, prices: PriceTable = DEFAULT_PRICES) -> float:
    """Estimated USD cost of the given token counts."""
    return (
        usage.input / 1_000_000 * prices.input_per_mtok
        + usage.output / 1_000_000 * prices.output_per_mtok
        + usage.cache_write / 1_000_000 * prices.cache_write_per_mtok
        + usage.cache_read / 1_000_000 * prices.cache_read_per_mtok
    )


def price_table_for(model: str | None, prices: Prices) -> PriceTable:
    """Pick the price table for a model.

    Args:
        model: Model id of the message, if known.
        prices: A single table, a mapping of model-id prefix to table, or None.

    Returns:
        The table of the longest matching prefix, else the default table.
    """
    if prices is None:
        return DEFAULT_PRICES
    if isinstance(prices, PriceTable):
        return prices
    if model:
        for prefix in sorted(prices, key=len, reverse=True):
            if model.startswith(prefix):
                return prices[prefix]
    return prices.get("default", DEFAULT_PRICES)


def message_reasoning(msg: NormalizedMessage) -> str | None:
    reasoning = msg.source_data.get("reasoning")
    return reasoning if isinstance(reasoning, str) and reasoning else None


def _add_sizes(sizes: SizeBreakdown, msg: NormalizedMessage) -> None:
    reasoning = message_reasoning(msg)
    if reasoning:
        sizes.reasoning_chars += len(reasoning)
    if msg.role == Role.USER:
        sizes.user_chars += len(msg.content)
    elif msg.role == Role.ASSISTANT:
        sizes.assistant_chars += len(msg.content)
    elif msg.tool is not None:
        sizes.tool_call_chars += len(json.dumps(msg.tool.input))
        if msg.tool.output is not None:
            sizes.tool_result_chars += len(msg.tool.output)


def compute_size_breakdown(messages: Sequence[NormalizedMessage]) -> SizeBreakdown:
    """Character counts of each content category."""
    sizes = SizeBreakdown()
    for msg in messages:
        _add_sizes(sizes, msg)
    return sizes


def summarize(messages: Sequence[NormalizedMessage], prices: Prices = None) -> SessionSummary:
    """Compute the summary of a session in one pass over its messages."""
    user_messages = 0
    assistant_messages = 0
    tool_calls = 0
    totals = {"input": 0, "output": 0, "cache_read": 0, "cache_write": 0, "total": 0}
    cost = 0.0
    user_texts: list[str] = []
    user_times: list[str] = []
    reasoning_count = 0
    reasoning_chars = 0
    sizes = SizeBreakdown()

    for msg in messages:
        _add_sizes(sizes, msg)
        if msg.role == Role.USER:
            user_messages += 1
            user_texts.append(msg.content)
            if parse_timestamp(msg.timestamp) is not None:
                user_times.append(msg.timestamp)
        elif msg.role == Role.ASSISTANT:
            assistant_messages += 1
        else:
            tool_calls += 1

        if msg.tokens is not None:
            for field in totals:
                totals[field] += getattr(msg.tokens, field)
            cost += calculate_cost(msg.tokens, price_table_for(msg.model, prices))

        reasoning = message_reasoning(msg)
        if reasoning:
            reasoning_count += 1
            reasoning_chars += len(reasoning)

    duration = None
    if len(user_times) >= 2:
        duration = max(elapsed_ms(user_times[0], user_times[-1]) or 0, 0)

    return SessionSummary(
        total_messages=len(messages),
        user_messages=user_messages,
        assistant_messages=assistant_messages,
        tool_calls=tool_calls,
        token_usage=NormalizedTokenUsage(**totals),
        estimated_cost=cost,
        duration_ms=duration,
        first_message=user_texts[0] if user_texts else None,
        last_message=user_texts[-1] if user_texts else None,
        reasoning_count=reasoning_count,
        reasoning_chars=reasoning_chars,
        size_breakdown=sizes,
    )
