"""Discovery, lookup and loading of sessions under a sessions root.

Three layouts are recognized under the root:

    <root>/<uuid>.jsonl                 Claude Code session files
    <root>/<project>/<uuid>.jsonl       the same, one directory per project
    <root>/<session-id>/transcript.jsonl  session directories created here

An optional sessions-index.json speeds up listing. It is only a hint: an
entry is used when its recorded mtime still matches the file, otherwise the
file itself is read.
"""

import asyncio
import json
import re
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from .beats import parse_timestamp, segment
from .codec import decode_file, stream_file
from .fileio import atomic_write_text
from .models import (
    ConversationBeat,
    NormalizedMessage,
    SessionFilter,
    SessionIndexEntry,
    SessionListing,
    SessionNotFound,
    SessionRecord,
    SessionsIndex,
    SessionStats,
    SessionSummary,
    SkippedSession,
)
from .normalizer import content_text, is_result_carrier, normalize
from .summary import Prices, summarize
from .writer import TranscriptWriter, format_timestamp

UUID_JSONL_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\.jsonl$", re.IGNORECASE
)
TRANSCRIPT_FILENAME = "transcript.jsonl"
META_FILENAME = "meta.json"
DEFAULT_INDEX_FILENAME = "sessions-index.json"
FIRST_PROMPT_CHARS = 500
NO_PROMPT = "(no prompt)"
SORT_KEYS = ("modified", "created", "message_count")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
CLAUDE_PROJECTS_DIR = Path("~/.claude/projects")


def is_session_filename(name: str) -> bool:
    """True for <uuid>.jsonl names; sub-agent files (agent-*.jsonl) are excluded."""
    return bool(UUID_JSONL_RE.match(name)) and not name.startswith("agent-")


def mtime_ms(path: Path) -> float:
    """File modification time in whole milliseconds."""
    return float(path.stat().st_mtime_ns // 1_000_000)


def claude_project_path(project_path: str | Path, projects_dir: Path | None = None) -> Path:
    """Directory holding Claude Code sessions for a project: "/" becomes "-"."""
    projects_dir = Path(projects_dir) if projects_dir is not None else CLAUDE_PROJECTS_DIR
    return projects_dir.expanduser() / str(project_path).replace("/", "-")


def matches(entry: SessionIndexEntry, criteria: SessionFilter) -> bool:
    """True when the entry satisfies every criterion that is set."""
    if criteria.git_branch is not None and entry.git_branch != criteria.git_branch:
        return False
    if criteria.is_sidechain is not None and entry.is_sidechain != criteria.is_sidechain:
        return False
    if criteria.min_messages is not None and entry.message_count < criteria.min_messages:
        return False
    if criteria.max_messages is not None and entry.message_count > criteria.max_messages:
        return False
    if criteria.since is not None or criteria.until is not None:
        modified = parse_timestamp(entry.modified)
        if modified is None:
            return False
        if criteria.since is not None and modified < criteria.since:
            return False
        if criteria.until is not None and modified > criteria.until:
            return False
    return True


class SessionStore:
    """Sessions under one root directory."""

    def __init__(self, root: Path, index_filename: str = DEFAULT_INDEX_FILENAME):
        self.root = Path(root).expanduser()
        self.index_filename = index_filename

    @property
    def index_path(self) -> Path:
        return self.root / self.index_filename

    def discover(self) -> list[tuple[str, Path]]:
        """Return (session_id, transcript path) for every session under the root.

        Directories without a transcript.jsonl are treated as Claude Code
        project directories and their <uuid>.jsonl files are collected.
        """
        if not self.root.is_dir():
            return []
        found = []
        for child in sorted(self.root.iterdir()):
            if child.is_file() and is_session_filename(child.name):
                found.append((child.stem, child))
            elif child.is_dir() and (child / TRANSCRIPT_FILENAME).is_file():
                found.append((child.name, child / TRANSCRIPT_FILENAME))
            elif child.is_dir():
                found.extend(
                    (f.stem, f)
                    for f in sorted(child.iterdir())
                    if f.is_file() and is_session_filename(f.name)
                )
        return found

    async def read_metadata(self, path: Path, session_id: str | None = None) -> SessionIndexEntry:
        """Extract lightweight metadata by streaming the file, without normalizing it."""
        path = Path(path)
        file_mtime = await asyncio.to_thread(mtime_ms, path)

        first_prompt = ""
        message_count = 0
        created = ""
        modified = ""
        git_branch = ""
        project_path = ""
        is_sidechain = False

        def visit(record: SessionRecord) -> None:
            nonlocal first_prompt, message_count, created, modified
            nonlocal git_branch, project_path, is_sidechain
            extra = record.model_extra or {}
            if record.timestamp:
                created = created or record.timestamp
                modified = record.timestamp
            if not git_branch and isinstance(extra.get("gitBranch"), str):
                git_branch = extra["gitBranch"]
            if not project_path and isinstance(extra.get("cwd"), str):
                project_path = extra["cwd"]
            if isinstance(extra.get("isSidechain"), bool):
                is_sidechain = extra["isSidechain"]
            if record.type in ("user", "assistant"):
                message_count += 1
            if record.type == "user" and not first_prompt and not is_result_carrier(record.content):
                first_prompt = content_text(record.content).strip()[:FIRST_PROMPT_CHARS]

        await stream_file(path, visit)

        if not created:
            created = modified or format_timestamp(
                datetime.fromtimestamp(file_mtime / 1000, tz=timezone.utc)
            )
        modified = modified or created

        return SessionIndexEntry(
            session_id=session_id or path.stem,
            full_path=str(path),
            file_mtime=file_mtime,
            first_prompt=first_prompt or NO_PROMPT,
            message_count=message_count,
            created=created,
            modified=modified,
            git_branch=git_branch or "main",
            project_path=project_path,
            is_sidechain=is_sidechain,
        )

    def read_index(self) -> dict[str, SessionIndexEntry]:
        """Load the index hint. A missing or invalid index reads as empty."""
        if not self.index_path.is_file():
            return {}
        try:
            index = SessionsIndex.model_validate_json(self.index_path.read_text(encoding="utf-8"))
        except (ValidationError, ValueError) as e:
            logger.warning(f"Ignoring invalid session index {self.index_path}: {e}")
            return {}
        return {entry.session_id: entry for entry in index.entries}

    async def _entry_for(
        self, session_id: str, path: Path, hints: dict[str, SessionIndexEntry]
    ) -> SessionIndexEntry:
        hint = hints.get(session_id)
        if hint is not None and Path(hint.full_path) == path:
            current = await asyncio.to_thread(mtime_ms, path)
            if int(hint.file_mtime) == int(current):
                return hint
        return await self.read_metadata(path, session_id)

    async def list_sessions(
        self,
        sort_by: str = "modified",
        descending: bool = True,
        limit: int | None = None,
        criteria: SessionFilter | None = None,
    ) -> SessionListing:
        """List sessions, newest first by default, optionally filtered.

        Files that cannot be read are reported in ``skipped`` instead of
        failing the whole listing.
        """
        if sort_by not in SORT_KEYS:
            raise ValueError(f"sort_by must be one of {', '.join(SORT_KEYS)}, got {sort_by!r}")

        hints = self.read_index()
        sessions: list[SessionIndexEntry] = []
        skipped: list[SkippedSession] = []
        for session_id, path in self.discover():
            try:
                entry = await self._entry_for(session_id, path, hints)
            except OSError as e:
                logger.warning(f"Skipping unreadable session file {path}: {e}")
                skipped.append(SkippedSession(path=str(path), error=str(e)))
                continue
            if criteria is None or matches(entry, criteria):
                sessions.append(entry)

        if sort_by == "message_count":
            sessions.sort(key=lambda e: e.message_count, reverse=descending)
        else:
            sessions.sort(
                key=lambda e: parse_timestamp(getattr(e, sort_by)) or _EPOCH,
                reverse=descending,
            )

        total = len(sessions)
        if limit is not None:
            sessions = sessions[:limit]
        return SessionListing(sessions=sessions, skipped=skipped, total_count=total)

    async def filter_sessions(
        self, criteria: SessionFilter | None = None, **kwargs
    ) -> list[SessionIndexEntry]:
        """Sessions matching every criterion, newest first.

        Criteria may be given as a SessionFilter or as its fields by keyword.
        """
        listing = await self.list_sessions(criteria=criteria or SessionFilter(**kwargs))
        return listing.sessions

    async def session_stats(self) -> SessionStats:
        """Counts over every readable session under the root."""
        sessions = (await self.list_sessions(sort_by="created", descending=False)).sessions
        branches: dict[str, int] = {}
        for entry in sessions:
            branches[entry.git_branch] = branches.get(entry.git_branch, 0) + 1
        return SessionStats(
            total_sessions=len(sessions),
            total_messages=sum(entry.message_count for entry in sessions),
            sidechain_sessions=sum(1 for entry in sessions if entry.is_sidechain),
            branch_counts=branches,
            oldest_session=sessions[0].created if sessions else None,
            newest_session=sessions[-1].created if sessions else None,
        )

    async def resolve(self, query: str) -> SessionIndexEntry | SessionNotFound:
        """Find a session by full id or by an unambiguous id prefix."""
        discovered = dict(self.discover())
        if query in discovered:
            return await self.read_metadata(discovered[query], query)

        matches = sorted(sid for sid in discovered if query and sid.startswith(query))
        if len(matches) == 1:
            return await self.read_metadata(discovered[matches[0]], matches[0])
        if not matches:
            return SessionNotFound(
                error="NOT_FOUND",
                query=query,
                message=f"No session matches {query!r} under {self.root}",
            )
        return SessionNotFound(
            error="AMBIGUOUS",
            query=query,
            candidates=matches,
            message=f"{len(matches)} sessions match {query!r}; use a longer prefix",
        )

    async def load_records(self, query: str) -> list[SessionRecord] | SessionNotFound:
        entry = await self.resolve(query)
        if isinstance(entry, SessionNotFound):
            return entry
        return await asyncio.to_thread(decode_file, Path(entry.full_path))

    async def load_messages(self, query: str) -> list[NormalizedMessage] | SessionNotFound:
        records = await self.load_records(query)
        if isinstance(records, SessionNotFound):
            return records
        return normalize(records)

    async def load_beats(self, query: str) -> list[ConversationBeat] | SessionNotFound:
        messages = await self.load_messages(query)
        if isinstance(messages, SessionNotFound):
            return messages
        return segment(messages)

    async def load_summary(
        self, query: str, prices: Prices = None
    ) -> SessionSummary | SessionNotFound:
        messages = await self.load_messages(query)
        if isinstance(messages, SessionNotFound):
            return messages
        return summarize(messages, prices)

    async def rebuild_index(self) -> SessionsIndex:
        """Re-read every session file and rewrite the index atomically."""
        listing = await self.list_sessions()
        index = SessionsIndex(entries=listing.sessions)
        text = index.model_dump_json(by_alias=True, indent=2)
        await asyncio.to_thread(atomic_write_text, self.index_path, text)
        logger.info(f"Indexed {len(index.entries)} sessions into {self.index_path}")
        return index

    async def create_session(self, session_id: str | None = None, kind: str = "cli") -> TranscriptWriter:
        """Create <root>/<session-id>/ with meta.json and return a writer for its transcript."""
        if session_id is None:
            session_id = f"{kind}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"
        session_dir = self.root / session_id
        now = format_timestamp(datetime.now(timezone.utc))
        meta = {"session_id": session_id, "created": now, "last_used": now, "type": kind}
        await asyncio.to_thread(
            atomic_write_text, session_dir / META_FILENAME, json.dumps(meta, indent=2)
        )
        logger.debug(f"Created session {session_id} in {session_dir}")
        return TranscriptWriter(session_dir / TRANSCRIPT_FILENAME)

    def writer_for(self, session_id: str) -> TranscriptWriter:
        """Writer for an existing session directory."""
        return TranscriptWriter(self.root / session_id / TRANSCRIPT_FILENAME)

