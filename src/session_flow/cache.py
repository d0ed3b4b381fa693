"""Keyed JSON file cache for expensive, idempotent fetches.

Each key maps to one JSON file under ``<base_dir>/<namespace>/``. Concurrent
requests for the same key share a single fetch. A failed fetch is never
persisted, so the next request simply retries it.
"""

import asyncio
import re
import shutil
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, TypeVar

from loguru import logger
from pydantic import ValidationError

from .beats import parse_timestamp
from .fileio import atomic_write_text
from .models import CacheEntry, CacheStats, ModelResponse
from .writer import format_timestamp

T = TypeVar("T")

DEFAULT_CACHE_DIR = Path("output") / "cache"

_UNSAFE = re.compile(r"[^a-zA-Z0-9.-]")
_DASHES = re.compile(r"-+")


def sanitize_identifier(identifier: str) -> str:
    """Filesystem-safe transliteration: https://a.com/b?x=1 -> https-a.com-b-x-1."""
    return _DASHES.sub("-", _UNSAFE.sub("-", identifier)).strip("-.") or "_"


def _join(*parts: str) -> str:
    """Structured key whose parts may themselves contain "/"."""
    return "/".join(sanitize_identifier(part) for part in parts)


class ModelInvoker(Protocol):
    """Anything that can run a prompt against a model."""

    async def invoke(self, prompt: str, options: dict[str, Any] | None = None) -> ModelResponse: ...


class CacheService:
    """A namespaced, single-flight JSON file cache with hit/miss statistics."""

    def __init__(
        self,
        namespace: str,
        base_dir: Path | None = None,
        max_age: float | None = None,
    ):
        self.namespace = namespace
        self.base_dir = Path(base_dir) if base_dir is not None else DEFAULT_CACHE_DIR
        # Seconds; None or 0 means entries never expire.
        self.max_age = max_age or None
        self._inflight: dict[Path, asyncio.Task] = {}
        self._reset_counters()

    def _reset_counters(self) -> None:
        self._hits = 0
        self._misses = 0
        self._errors = 0
        self._coalesced = 0
        self._requests = 0

    @property
    def workdir(self) -> Path:
        return self.base_dir / sanitize_identifier(self.namespace)

    def cache_path(self, key: str) -> Path:
        """File holding the entry for key; "/"-separated segments become directories."""
        segments = [sanitize_identifier(part) for part in key.split("/")]
        return self.workdir.joinpath(*segments[:-1], f"{segments[-1]}.json")

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Return the cached value for key, fetching and storing it on a miss."""
        path = self.cache_path(key)
        self._requests += 1
        task = self._inflight.get(path)
        if task is not None and not task.done():
            self._coalesced += 1
            logger.debug(f"Joining in-flight fetch for key: {key}")
            value = await asyncio.shield(task)
            # Only a shared fetch that succeeded served this caller.
            self._hits += 1
            return value

        task = asyncio.ensure_future(self._load_or_fetch(path, key, fetch))
        self._inflight[path] = task

        def forget(done: asyncio.Task) -> None:
            if self._inflight.get(path) is done:
                del self._inflight[path]

        task.add_done_callback(forget)
        return await asyncio.shield(task)

    async def _load_or_fetch(
        self, path: Path, key: str, fetch: Callable[[], Awaitable[Any]]
    ) -> Any:
        entry = await self._read_entry(path, key)
        if entry is not None:
            self._hits += 1
            logger.debug(f"Cache hit for key: {key}")
            return entry.value

        self._misses += 1
        logger.debug(f"Cache miss for key: {key}, fetching...")
        value = await fetch()

        entry = CacheEntry(key=key, value=value, stored_at=format_timestamp(datetime.now(timezone.utc)))
        try:
            await asyncio.to_thread(atomic_write_text, path, entry.model_dump_json(indent=2))
        except OSError:
            self._errors += 1
            raise
        return value

    async def _read_entry(self, path: Path, key: str) -> CacheEntry | None:
        """The stored entry if present, readable, for this key and fresh."""
        if not path.exists():
            return None
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
            entry = CacheEntry.model_validate_json(text)
        except (ValidationError, ValueError) as e:
            self._errors += 1
            logger.warning(f"Discarding corrupt cache entry {path}: {e}")
            return None
        if entry.key != key:
            logger.debug(f"Cache file {path} holds key {entry.key!r}, not {key!r}")
            return None
        if not self._is_fresh(entry):
            logger.debug(f"Cache entry for key {key} expired")
            return None
        return entry

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if self.max_age is None:
            return True
        stored = parse_timestamp(entry.stored_at)
        if stored is None:
            return False
        age = (datetime.now(timezone.utc) - stored).total_seconds()
        return age < self.max_age

    def get_stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            errors=self._errors,
            coalesced=self._coalesced,
            total_requests=self._requests,
            hit_rate=self._hits / self._requests if self._requests else 0.0,
        )

    def clear_cache(self) -> None:
        """Remove every entry of this namespace and reset the counters."""
        if self.workdir.exists():
            shutil.rmtree(self.workdir)
        self._reset_counters()
        logger.debug(f"Cleared cache namespace {self.namespace}")

    async def get_cached_model_response(
        self,
        model_id: str,
        stimulus_id: str,
        fetch: Callable[[], Awaitable[ModelResponse]],
    ) -> ModelResponse:
        key = _join("responses", stimulus_id, model_id)
        value = await self.get_or_fetch(key, fetch)
        return ModelResponse.model_validate(value)

    async def get_cached_score(
        self,
        model_id: str,
        stimulus_id: str,
        score_type: str,
        fetch: Callable[[], Awaitable[T]],
    ) -> T:
        key = _join("scores", stimulus_id, score_type, model_id)
        return await self.get_or_fetch(key, fetch)

    async def get_cached_external_data(
        self,
        data_type: str,
        identifier: str,
        fetch: Callable[[], Awaitable[str]],
    ) -> str:
        """Cache fetched external content such as a web page, keyed by type and URL."""
        key = _join("external", data_type, identifier)
        return await self.get_or_fetch(key, fetch)


async def cached_invoke(
    cache: CacheService,
    invoker: ModelInvoker,
    model_id: str,
    stimulus_id: str,
    prompt: str,
    options: dict[str, Any] | None = None,
) -> ModelResponse:
    """Invoke a model through the response cache."""

    async def fetch() -> ModelResponse:
        return await invoker.invoke(prompt, options)

    return await cache.get_cached_model_response(model_id, stimulus_id, fetch)
