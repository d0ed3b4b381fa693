"""Pytest configuration and fixtures."""

import json
import shutil
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest
from loguru import logger

SIMPLE_SESSION_ID = "7f3c2a10-5b8e-4c1d-9a2f-0e6b4d8c1a55"


@pytest.fixture
def fixtures_dir() -> Path:
    """Return the fixtures directory path."""
    return Path(__file__).parent / "fixtures"


@pytest.fixture
def simple_session(fixtures_dir: Path) -> Path:
    """Return path to simple.jsonl fixture."""
    return fixtures_dir / "simple.jsonl"


@pytest.fixture
def corrupt_session(fixtures_dir: Path) -> Path:
    """Return path to corrupt.jsonl fixture."""
    return fixtures_dir / "corrupt.jsonl"


@pytest.fixture
def sessions_root(tmp_path: Path, simple_session: Path) -> Path:
    """A sessions root holding simple.jsonl under its session id."""
    root = tmp_path / "projects"
    root.mkdir()
    shutil.copy(simple_session, root / f"{SIMPLE_SESSION_ID}.jsonl")
    return root


@pytest.fixture
def write_jsonl() -> Callable[[Path, list[dict]], Path]:
    """Return a helper that writes dicts as a JSONL file."""

    def write(path: Path, records: list[dict]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("".join(json.dumps(r) + "\n" for r in records))
        return path

    return write


@pytest.fixture
def log_messages() -> Iterator[list[str]]:
    """Capture loguru output as a list of formatted lines."""
    messages: list[str] = []
    sink_id = logger.add(messages.append, level="DEBUG", format="{level} {message}")
    yield messages
    logger.remove(sink_id)
