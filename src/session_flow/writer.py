"""Crash-safe persistence of a live session transcript.

Every write persists the whole current record list with an atomic
replace, so a crash between turns leaves the previous transcript intact and
a write never depends on an earlier one having landed.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from loguru import logger

from .adapters import records_from_core_messages
from .beats import parse_timestamp
from .codec import decode_file, encode_records
from .fileio import atomic_write_text
from .models import SessionRecord


def format_timestamp(moment: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a Z suffix."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _to_millis(moment: datetime) -> datetime:
    return moment.replace(microsecond=moment.microsecond // 1000 * 1000)


class TranscriptWriter:
    """Writes a session's records to one JSONL file, in call order."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._generation = 0
        self._applied = 0
        # (uuid, timestamp) per record position, assigned once.
        self._stamps: list[tuple[str, str]] = []
        self._last_time: datetime | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        """Number of writes requested so far."""
        return self._generation

    def write(self, records: Sequence[SessionRecord]) -> Awaitable[bool]:
        """Persist the full record list.

        The generation is taken and the records are encoded before this
        returns, so later mutation of the list does not leak into the write.
        The awaitable yields False when a newer write already landed.
        """
        self._generation += 1
        return self._apply(self._generation, encode_records(records), len(records))

    async def _apply(self, generation: int, text: str, count: int) -> bool:
        async with self._lock:
            if generation < self._applied:
                logger.debug(f"Skipping stale transcript write {generation} for {self.path}")
                return False
            await asyncio.to_thread(atomic_write_text, self.path, text)
            self._applied = generation
        logger.debug(f"Wrote {count} records to {self.path} (write {generation})")
        return True

    def stamp(self, records: Sequence[SessionRecord]) -> None:
        """Give each record without a uuid a stable uuid and timestamp for its position."""
        for position, record in enumerate(records):
            if position == len(self._stamps):
                self._stamps.append((str(uuid.uuid4()), self._next_timestamp()))
            record_uuid, timestamp = self._stamps[position]
            if record.uuid is None:
                record.uuid = record_uuid
            if record.timestamp is None:
                record.timestamp = timestamp

    def _next_timestamp(self) -> str:
        now = _to_millis(datetime.now(timezone.utc))
        if self._last_time is not None and now <= self._last_time:
            now = self._last_time + timedelta(milliseconds=1)
        self._last_time = now
        return format_timestamp(now)

    def write_core_messages(self, messages: Sequence[dict[str, Any]]) -> Awaitable[bool]:
        """Convert CoreMessage dicts to records and persist them."""
        records = records_from_core_messages(messages)
        self.stamp(records)
        return self.write(records)

    def schedule(self, messages: Sequence[dict[str, Any]]) -> asyncio.Task:
        """Start a write of CoreMessages without waiting for it.

        For callbacks that cannot await. Call drain() before exiting.
        """
        task = asyncio.ensure_future(self.write_core_messages(list(messages)))
        self._pending.add(task)
        task.add_done_callback(self._on_write_done)
        return task

    def _on_write_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Transcript write to {self.path} failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for all scheduled writes. Re-raises the first failure."""
        if not self._pending:
            return
        outcomes = await asyncio.gather(*list(self._pending), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    def resume(self) -> list[SessionRecord]:
        """Load an existing transcript and keep its uuids and timestamps for later writes."""
        if not self.path.exists():
            return []
        records = decode_file(self.path)
        times = [t for r in records if (t := parse_timestamp(r.timestamp)) is not None]
        if times:
            self._last_time = _to_millis(max(times))
        self._stamps = [
            (r.uuid or str(uuid.uuid4()), r.timestamp or self._next_timestamp()) for r in records
        ]
        return records
