"""CLI entry point for session-flow."""

import asyncio
import json
from pathlib import Path

import typer

APP_HELP = """
Inspect agent session transcripts: list, normalize, segment and summarize.

\b
Claude Code session files are stored at:
  ~/.claude/projects/<project-hash>/<session-id>.jsonl

\b
SESSION arguments accept a path to a .jsonl file, or a session id or
unambiguous id prefix looked up under --root.
"""

app = typer.Typer(add_completion=False, help=APP_HELP)

ROOT_OPTION = typer.Option(None, "--root", help="Sessions root (default from settings)")
COMPACT_OPTION = typer.Option(False, "--compact", help="No indentation (for piping)")


@app.callback()
def main(
    ctx: typer.Context,
    config: Path | None = typer.Option(None, "--config", help="Path to session-flow.json"),
    verbose: bool = typer.Option(False, "-v", "--verbose", help="Debug logging"),
) -> None:
    from .config import load_settings
    from .logging_config import setup_logging

    settings = load_settings(config)
    setup_logging(
        "DEBUG" if verbose else settings.log_level, settings.log_consumers, settings.log_dir
    )
    ctx.obj = settings


def _store(ctx: typer.Context, root: Path | None):
    from .store import SessionStore

    settings = ctx.obj
    return SessionStore(root or settings.sessions_root, settings.index_filename)


def _fail(result) -> None:
    """Print a not-found result to stderr and exit 1."""
    typer.echo(result.model_dump_json(), err=True)
    raise typer.Exit(1)


def _load_records(ctx: typer.Context, session: str, root: Path | None):
    """Records and session id for a path or an id/prefix."""
    from .codec import decode_file
    from .models import SessionNotFound

    path = Path(session)
    if path.suffix == ".jsonl" and path.is_file():
        return decode_file(path), path.stem if path.name != "transcript.jsonl" else path.parent.name

    store = _store(ctx, root)
    entry = asyncio.run(store.resolve(session))
    if isinstance(entry, SessionNotFound):
        _fail(entry)
    return decode_file(Path(entry.full_path)), entry.session_id


LIST_HELP = """
List sessions under the sessions root, newest first.

\b
Examples:
  session-flow list --limit 10
  session-flow list --sort message_count | jq '.sessions[] | {sessionId, firstPrompt}'
  session-flow list --branch main --since 2026-01-01T00:00:00Z --min-messages 10
"""


@app.command("list", help=LIST_HELP)
def list_sessions(
    ctx: typer.Context,
    root: Path | None = ROOT_OPTION,
    limit: int | None = typer.Option(None, "-n", "--limit", help="Show at most N sessions"),
    sort: str = typer.Option("modified", "--sort", help="modified, created or message_count"),
    ascending: bool = typer.Option(False, "--ascending", help="Oldest / smallest first"),
    branch: str | None = typer.Option(None, "--branch", help="Only sessions on this git branch"),
    sidechain: bool | None = typer.Option(
        None, "--sidechain/--no-sidechain", help="Only sidechain / only main-line sessions"
    ),
    since: str | None = typer.Option(None, "--since", help="Modified at or after this time"),
    until: str | None = typer.Option(None, "--until", help="Modified at or before this time"),
    min_messages: int | None = typer.Option(None, "--min-messages", help="At least N records"),
    max_messages: int | None = typer.Option(None, "--max-messages", help="At most N records"),
    compact: bool = COMPACT_OPTION,
) -> None:
    from pydantic import ValidationError

    from .models import SessionFilter
    from .renderer import render_json
    from .store import SORT_KEYS

    if sort not in SORT_KEYS:
        typer.echo(f"Error: --sort must be one of {', '.join(SORT_KEYS)}", err=True)
        raise typer.Exit(2)

    try:
        criteria = SessionFilter(
            git_branch=branch,
            is_sidechain=sidechain,
            since=since,
            until=until,
            min_messages=min_messages,
            max_messages=max_messages,
        )
    except ValidationError as e:
        typer.echo(f"Error: invalid filter: {e.errors()[0]['msg']}", err=True)
        raise typer.Exit(2)

    listing = asyncio.run(
        _store(ctx, root).list_sessions(
            sort_by=sort, descending=not ascending, limit=limit, criteria=criteria
        )
    )
    typer.echo(render_json(listing, compact=compact))


@app.command(help="Aggregate statistics for the sessions under the sessions root.")
def stats(
    ctx: typer.Context,
    root: Path | None = ROOT_OPTION,
    compact: bool = COMPACT_OPTION,
) -> None:
    from .renderer import render_json

    typer.echo(render_json(asyncio.run(_store(ctx, root).session_stats()), compact=compact))


TRANSCRIPT_HELP = """
Output a session as normalized messages (user, assistant, tool).

Tool calls carry their correlated output; pure tool-result records and
bookkeeping lines are removed.

\b
Examples:
  # All Bash commands
  session-flow transcript SESSION | jq '[.messages[] | select(.tool.name == "Bash") | .tool.input.command]'

  # Failed tool calls
  session-flow transcript SESSION | jq '[.messages[] | select(.tool.is_error)]'
"""


@app.command(help=TRANSCRIPT_HELP)
def transcript(
    ctx: typer.Context,
    session: str = typer.Argument(..., help="JSONL path, session id or id prefix"),
    root: Path | None = ROOT_OPTION,
    output: Path | None = typer.Option(None, "-o", "--output", help="Output JSON file path"),
    compact: bool = COMPACT_OPTION,
) -> None:
    from .normalizer import normalize
    from .renderer import render_transcript

    records, session_id = _load_records(ctx, session, root)
    json_str = render_transcript(normalize(records), session_id, compact=compact)

    if output is None:
        typer.echo(json_str)
    else:
        output.write_text(json_str)
        typer.echo(f"Written to {output}", err=True)


BEATS_HELP = """
Group a session into beats: one user turn plus the activity that follows it.

\b
Examples:
  session-flow beats SESSION | jq '.beats[] | [.user_preview, .tool_summary, .assistant_preview]'
"""


@app.command(help=BEATS_HELP)
def beats(
    ctx: typer.Context,
    session: str = typer.Argument(..., help="JSONL path, session id or id prefix"),
    root: Path | None = ROOT_OPTION,
    with_messages: bool = typer.Option(False, "--messages", help="Include each beat's messages"),
    compact: bool = COMPACT_OPTION,
) -> None:
    from .beats import segment
    from .normalizer import normalize
    from .renderer import render_beats

    records, session_id = _load_records(ctx, session, root)
    typer.echo(
        render_beats(
            segment(normalize(records)), session_id, compact=compact, with_messages=with_messages
        )
    )


@app.command(help="Summarize message counts, token usage, estimated cost and sizes.")
def summary(
    ctx: typer.Context,
    session: str = typer.Argument(..., help="JSONL path, session id or id prefix"),
    root: Path | None = ROOT_OPTION,
    compact: bool = COMPACT_OPTION,
) -> None:
    from .normalizer import normalize
    from .renderer import render_json
    from .summary import summarize

    records, _ = _load_records(ctx, session, root)
    result = summarize(normalize(records), ctx.obj.price_tables())
    typer.echo(render_json(result, compact=compact))


@app.command(help="Rebuild the sessions index file under the sessions root.")
def index(ctx: typer.Context, root: Path | None = ROOT_OPTION) -> None:
    store = _store(ctx, root)
    built = asyncio.run(store.rebuild_index())
    typer.echo(f"Indexed {len(built.entries)} sessions into {store.index_path}", err=True)


IMPORT_HELP = """
Store a Vercel AI SDK CoreMessage[] JSON array as a new session transcript.

\b
Examples:
  session-flow import-core messages.json
  session-flow import-core messages.json --session-id telegram-42 --kind telegram
"""


@app.command("import-core", help=IMPORT_HELP)
def import_core(
    ctx: typer.Context,
    messages_path: Path = typer.Argument(..., help="JSON file holding a CoreMessage array"),
    root: Path | None = ROOT_OPTION,
    session_id: str | None = typer.Option(None, "--session-id", help="Session id to create"),
    kind: str = typer.Option("cli", "--kind", help="Session type recorded in meta.json"),
) -> None:
    if not messages_path.exists():
        typer.echo(f"Error: File not found: {messages_path}", err=True)
        raise typer.Exit(1)

    messages = json.loads(messages_path.read_text())
    if not isinstance(messages, list):
        typer.echo("Error: expected a JSON array of messages", err=True)
        raise typer.Exit(1)

    store = _store(ctx, root)

    async def run():
        writer = await store.create_session(session_id, kind)
        await writer.write_core_messages(messages)
        return writer

    writer = asyncio.run(run())
    typer.echo(str(writer.path))


if __name__ == "__main__":
    app()
