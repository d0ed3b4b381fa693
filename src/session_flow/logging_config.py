"""Log sinks for session-flow, configured from the log_consumers setting.

Each entry in log_consumers describes one loguru sink:

    {"type": "console", "level": "DEBUG", "serialize": false}
    {"type": "file", "path": "session-flow.log", "rotation": "10 MB", "retention": 3}

Relative file paths resolve against the log directory. Sinks only receive
records logged by this package, and the console always writes to stderr so
JSON output on stdout stays parseable.
"""

import sys
from pathlib import Path
from typing import Annotated, Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

PACKAGE = "session_flow"
DEFAULT_LOG_DIR = Path("output") / "logs"

CONSOLE_FORMAT = "<level>{level:<8}</level> | {message}"
DEBUG_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


class ConsoleSink(BaseModel):
    """Human-readable lines on stderr, or JSON lines when serialize is set."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["console"]
    level: str | None = None
    serialize: bool = False

    def register(self, level: str, log_dir: Path) -> str:
        logger.add(
            sys.stderr,
            level=level,
            format=DEBUG_CONSOLE_FORMAT if level == "DEBUG" else CONSOLE_FORMAT,
            filter=PACKAGE,
            serialize=self.serialize,
        )
        return f"console (stderr, {level})"


class FileSink(BaseModel):
    """A rotated log file."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["file"]
    level: str | None = None
    path: Path = Path("session-flow.log")
    rotation: str = "10 MB"
    retention: int = 3

    def register(self, level: str, log_dir: Path) -> str:
        path = self.path.expanduser()
        if not path.is_absolute():
            path = log_dir / path
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            level=level,
            format=FILE_FORMAT,
            filter=PACKAGE,
            rotation=self.rotation,
            retention=self.retention,
        )
        return f"file ({path}, {level})"


LogSink = Annotated[ConsoleSink | FileSink, Field(discriminator="type")]

_SINK = TypeAdapter(LogSink)

_DEFAULT_CONSUMERS = [{"type": "console"}]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict] | None = None,
    log_dir: Path | None = None,
) -> list[str]:
    """Replace all log sinks with the configured consumers. Returns their descriptions.

    An invalid consumer entry is reported and skipped; the others still register.
    """
    logger.remove()
    log_dir = Path(log_dir) if log_dir is not None else DEFAULT_LOG_DIR

    descriptions: list[str] = []
    rejected: list[str] = []
    for config in _DEFAULT_CONSUMERS if consumers is None else consumers:
        try:
            sink = _SINK.validate_python(config)
        except ValidationError as e:
            rejected.append(f"{config!r}: {e.errors()[0]['msg']}")
            continue
        descriptions.append(sink.register((sink.level or level).upper(), log_dir))

    for problem in rejected:
        logger.warning(f"Ignoring invalid log consumer {problem}")
    return descriptions
