"""Tests for the command line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import SIMPLE_SESSION_ID
from session_flow.cli import app
from session_flow.codec import decode_file

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path, sessions_root: Path) -> Path:
    """A config pointing at the test sessions root with logging silenced."""
    path = tmp_path / "session-flow.json"
    path.write_text(json.dumps({"sessions_root": str(sessions_root), "log_consumers": []}))
    return path


def invoke(config_file: Path, *args: str):
    return runner.invoke(app, ["--config", str(config_file), *args])


class TestList:
    """Tests for the list command."""

    def test_lists_sessions(self, config_file: Path) -> None:
        """Sessions under the configured root are listed as JSON."""
        result = invoke(config_file, "list")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["total_count"] == 1
        assert data["sessions"][0]["sessionId"] == SIMPLE_SESSION_ID

    def test_invalid_sort(self, config_file: Path) -> None:
        """An unknown sort key is a usage error."""
        result = invoke(config_file, "list", "--sort", "size")
        assert result.exit_code == 2

    def test_filters(self, config_file: Path) -> None:
        """Branch, sidechain and size filters narrow the listing."""
        on_branch = json.loads(invoke(config_file, "list", "--branch", "feature/search").stdout)
        assert on_branch["total_count"] == 1
        assert json.loads(invoke(config_file, "list", "--branch", "main").stdout)["total_count"] == 0
        assert json.loads(invoke(config_file, "list", "--sidechain").stdout)["total_count"] == 0
        assert json.loads(invoke(config_file, "list", "--no-sidechain").stdout)["total_count"] == 1
        assert json.loads(invoke(config_file, "list", "--min-messages", "9").stdout)["total_count"] == 0

    def test_time_filters(self, config_file: Path) -> None:
        """--since and --until compare against the last-modified time."""
        after = invoke(config_file, "list", "--since", "2026-01-17T10:01:33Z")
        assert json.loads(after.stdout)["total_count"] == 0
        before = invoke(config_file, "list", "--until", "2026-01-17T10:01:32Z")
        assert json.loads(before.stdout)["total_count"] == 1

    def test_invalid_time_filter(self, config_file: Path) -> None:
        """An unparseable time is a usage error."""
        result = invoke(config_file, "list", "--since", "last tuesday")
        assert result.exit_code == 2
        assert "invalid filter" in result.output

    def test_settings_not_shared_between_runs(self, config_file: Path, tmp_path: Path) -> None:
        """Each invocation uses the settings of its own --config."""
        empty_root = tmp_path / "empty"
        empty_root.mkdir()
        other = tmp_path / "other.json"
        other.write_text(json.dumps({"sessions_root": str(empty_root), "log_consumers": []}))
        assert json.loads(invoke(other, "list").stdout)["total_count"] == 0
        assert json.loads(invoke(config_file, "list").stdout)["total_count"] == 1
        assert json.loads(invoke(other, "list").stdout)["total_count"] == 0


class TestStats:
    """Tests for the stats command."""

    def test_stats(self, config_file: Path) -> None:
        """Aggregate counts are printed as JSON."""
        result = invoke(config_file, "stats", "--compact")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["total_sessions"] == 1
        assert data["total_messages"] == 8
        assert data["branch_counts"] == {"feature/search": 1}
        assert data["oldest_session"] == data["newest_session"] == "2026-01-17T10:00:00.000Z"


class TestTranscript:
    """Tests for the transcript command."""

    def test_by_prefix(self, config_file: Path) -> None:
        """A session id prefix is resolved under the root."""
        result = invoke(config_file, "transcript", "7f3c", "--compact")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["metadata"]["session_id"] == SIMPLE_SESSION_ID
        assert data["metadata"]["total_messages"] == 7

    def test_by_path(self, config_file: Path, simple_session: Path) -> None:
        """A JSONL path is read directly."""
        result = invoke(config_file, "transcript", str(simple_session))
        assert result.exit_code == 0
        assert json.loads(result.stdout)["metadata"]["session_id"] == "simple"

    def test_output_file(self, config_file: Path, tmp_path: Path) -> None:
        """-o writes the JSON to a file."""
        out = tmp_path / "out.json"
        result = invoke(config_file, "transcript", SIMPLE_SESSION_ID, "-o", str(out))
        assert result.exit_code == 0
        assert len(json.loads(out.read_text())["messages"]) == 7

    def test_not_found(self, config_file: Path) -> None:
        """Unknown sessions exit 1 with a typed error."""
        result = invoke(config_file, "transcript", "ffff")
        assert result.exit_code == 1
        assert "NOT_FOUND" in result.output


class TestBeatsAndSummary:
    """Tests for the beats and summary commands."""

    def test_beats(self, config_file: Path) -> None:
        """Beats are rendered with tool summaries."""
        result = invoke(config_file, "beats", "7f3c")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert [b["tool_summary"] for b in data["beats"]] == ["1 tool, 7s", "1 tool, 30s"]

    def test_summary(self, config_file: Path) -> None:
        """The summary reports tokens and cost."""
        result = invoke(config_file, "summary", "7f3c")
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["tool_calls"] == 2
        assert data["token_usage"]["total"] == 1850
        assert data["estimated_cost"] == pytest.approx(0.0040875)


class TestIndexAndImport:
    """Tests for the index and import-core commands."""

    def test_index(self, config_file: Path, sessions_root: Path) -> None:
        """The index file is written under the root."""
        result = invoke(config_file, "index")
        assert result.exit_code == 0
        assert (sessions_root / "sessions-index.json").is_file()

    def test_import_core(self, config_file: Path, tmp_path: Path, sessions_root: Path) -> None:
        """CoreMessages become a new session transcript."""
        messages = tmp_path / "messages.json"
        messages.write_text(
            json.dumps(
                [
                    {"role": "system", "content": "be brief"},
                    {"role": "user", "content": "hello"},
                    {"role": "assistant", "content": [{"type": "text", "text": "hi there"}]},
                ]
            )
        )
        result = invoke(config_file, "import-core", str(messages), "--session-id", "chat-1")
        assert result.exit_code == 0
        path = sessions_root / "chat-1" / "transcript.jsonl"
        assert result.stdout.strip() == str(path)
        assert [r.content for r in decode_file(path)] == ["hello", "hi there"]

    def test_import_core_rejects_non_array(self, config_file: Path, tmp_path: Path) -> None:
        """Only JSON arrays are accepted."""
        messages = tmp_path / "messages.json"
        messages.write_text(json.dumps({"role": "user"}))
        result = invoke(config_file, "import-core", str(messages))
        assert result.exit_code == 1
