"""JSONL encoding and decoding of session transcripts."""

import asyncio
import inspect
import json
from collections.abc import Awaitable, Callable, Iterable, Iterator
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from .fileio import atomic_write_text
from .models import SessionRecord

MESSAGE_TYPES = frozenset({"user", "assistant", "system"})

# Record types written by Claude Code that carry no conversation content.
IGNORED_TYPES = frozenset({"summary", "file-history-snapshot", "progress", "result"})

STREAM_BATCH_BYTES = 64 * 1024


def encode_record(record: SessionRecord) -> str:
    """Serialize a record to one JSONL line, without the trailing newline."""
    return record.model_dump_json(exclude_unset=True)


def encode_records(records: Iterable[SessionRecord]) -> str:
    """Serialize records to JSONL text, one line per record."""
    return "".join(encode_record(record) + "\n" for record in records)


def decode_line(line: str, line_num: int | None = None) -> SessionRecord | None:
    """Parse one JSONL line.

    Returns None for blank lines, malformed JSON, records of unknown type and
    records that fail validation. Only the unexpected cases are logged.
    """
    if not line.strip():
        return None
    where = f" at line {line_num}" if line_num is not None else ""

    try:
        raw = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning(f"Skipping malformed JSON{where}: {e}")
        return None

    if not isinstance(raw, dict):
        logger.warning(f"Skipping non-object JSON value{where}")
        return None

    record_type = raw.get("type")
    if record_type not in MESSAGE_TYPES:
        if record_type not in IGNORED_TYPES:
            logger.warning(f"Skipping record of unrecognized type {record_type!r}{where}")
        return None

    try:
        return SessionRecord.model_validate(raw)
    except ValidationError as e:
        logger.warning(f"Skipping invalid {record_type} record{where}: {e.error_count()} error(s)")
        return None


def iter_records(path: Path) -> Iterator[SessionRecord]:
    """Yield the records of a JSONL file one line at a time."""
    with open(path, encoding="utf-8", errors="replace") as f:
        for line_num, line in enumerate(f, 1):
            record = decode_line(line, line_num)
            if record is not None:
                yield record


def decode_file(path: Path) -> list[SessionRecord]:
    """Load all valid records from a JSONL file, in file order."""
    return list(iter_records(path))


async def stream_file(
    path: Path,
    on_record: Callable[[SessionRecord], Awaitable[None] | None],
) -> int:
    """Decode a JSONL file in bounded batches, handing each record to on_record.

    Reads run in a worker thread so the event loop is not blocked. on_record
    may be a plain function or a coroutine function. Returns the number of
    records delivered.
    """
    count = 0
    line_num = 0
    with open(path, encoding="utf-8", errors="replace") as f:
        while True:
            lines = await asyncio.to_thread(f.readlines, STREAM_BATCH_BYTES)
            if not lines:
                break
            for line in lines:
                line_num += 1
                record = decode_line(line, line_num)
                if record is None:
                    continue
                result = on_record(record)
                if inspect.isawaitable(result):
                    await result
                count += 1
    return count


def write_records(path: Path, records: Iterable[SessionRecord]) -> None:
    """Replace the file at path with the given records, atomically."""
    atomic_write_text(Path(path), encode_records(records))
