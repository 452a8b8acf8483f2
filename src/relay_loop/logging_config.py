import sys
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> <level>{level:<8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"

# Keys of a consumer entry that are not passed to the consumer constructor.
_RESERVED_KEYS = frozenset({"type", "level"})


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> None: ...
    def describe(self, level: str) -> str: ...


class ConsoleLogConsumer:
    def __init__(self, colorize: bool | None = None):
        self._colorize = colorize

    def register(self, level: str) -> None:
        logger.add(sys.stderr, level=level, format=_CONSOLE_FORMAT, colorize=self._colorize)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


class FileLogConsumer:
    """Rotating log file; ``serialize`` writes one JSON record per line."""

    def __init__(
        self,
        path: str = "relay_loop.log",
        rotation: str = "10 MB",
        retention: int = 3,
        serialize: bool = False,
    ):
        self._path = Path(path)
        self._sink_options = {"rotation": rotation, "retention": retention, "serialize": serialize}

    def register(self, level: str) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(str(self._path), level=level, format=_FILE_FORMAT, **self._sink_options)

    def describe(self, level: str) -> str:
        kind = "json file" if self._sink_options["serialize"] else "file"
        return f"{kind} ({self._path}, {level})"


LOG_CONSUMERS: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

DEFAULT_LOG_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console"},
    {"type": "file", "path": "relay_loop.log"},
]


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
) -> list[str]:
    """Replace loguru's sinks with the configured consumers and describe each one.

    An entry's ``level`` overrides the global one. Entries with an unknown
    ``type`` are skipped with a warning.
    """
    logger.remove()

    registered: list[str] = []
    for entry in DEFAULT_LOG_CONSUMERS if consumers is None else consumers:
        consumer_cls = LOG_CONSUMERS.get(entry.get("type", ""))
        if consumer_cls is None:
            logger.warning(f"Skipping log consumer with unknown type: {entry.get('type')!r}")
            continue

        consumer_level = entry.get("level", level)
        consumer = consumer_cls(**{k: v for k, v in entry.items() if k not in _RESERVED_KEYS})
        consumer.register(consumer_level)
        registered.append(consumer.describe(consumer_level))

    return registered
