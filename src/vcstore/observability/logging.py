"""Logging for vcstore.

Events are structlog event dicts handed to stdlib logging, which sends them
to stderr through rich (filtered by ``verbosity``) and, optionally, to a JSON
lines file that receives every event.

Facade operations bind the credential they act on with :func:`store_context`.
Events logged by the upsert and bundle engines underneath then carry
``credential_id`` and ``doc_id`` without those being passed down.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING, Any

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from structlog.typing import Processor

_configured = False
_file_handler: logging.FileHandler | None = None

# Store clients log every request at DEBUG
CLIENT_LOGGERS = ("httpx", "httpcore", "asyncio")

# Fields JSONLFileHandler writes itself
_RECORD_FIELDS = ("level", "timestamp")


def _event_entry(record: logging.LogRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "timestamp": datetime.now(UTC).isoformat(),
        "level": record.levelname,
        "logger": record.name,
    }
    if not isinstance(record.msg, dict):
        entry["message"] = record.getMessage()
        return entry

    fields = {k: v for k, v in record.msg.items() if k not in _RECORD_FIELDS}
    entry["message"] = fields.pop("event", "")
    entry.update(fields)
    return entry


class JSONLFileHandler(logging.FileHandler):
    """Appends each event as one JSON object per line.

    structlog's ``wrap_for_formatter`` leaves the event dict in
    ``record.msg``; its keys become top-level fields next to ``message``.
    Records from plain stdlib loggers keep their formatted message only.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(_event_entry(record), default=str)
            if self.stream:
                self.stream.write(line + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


def configure_logging(verbosity: int = 0, log_file: Path | None = None) -> None:
    """Route vcstore events to the console and, optionally, a file.

    Safe to call again; a previously opened log file is closed first.

    Args:
        verbosity: 0 shows warnings, 1 adds info, 2 or more adds debug.
        log_file: JSON lines file receiving every event at DEBUG. Parent
            directories are created.
    """
    global _configured

    close_file_logging()

    console_level = {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)
    handlers: list[logging.Handler] = [
        RichHandler(
            console=Console(stderr=True),
            level=console_level,
            markup=False,
            rich_tracebacks=True,
            show_time=verbosity >= 1,
            show_path=verbosity >= 2,
        )
    ]
    if log_file is not None:
        handlers.append(_open_file_handler(log_file))

    root_level = logging.DEBUG if (verbosity > 0 or log_file is not None) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)
    for name in CLIENT_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )
    _configured = True


def _open_file_handler(log_file: Path) -> logging.FileHandler:
    global _file_handler

    log_file.parent.mkdir(parents=True, exist_ok=True)
    _file_handler = JSONLFileHandler(str(log_file), mode="a")
    _file_handler.setLevel(logging.DEBUG)
    return _file_handler


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Return a structlog logger, configuring defaults on first use."""
    if not _configured:
        configure_logging()
    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def store_context(**fields: Any) -> AbstractContextManager[Any]:
    """Bind store identifiers to every event logged inside a ``with`` block.

    ``None`` values are left out, so callers can pass whichever of
    ``credential_id`` and ``doc_id`` they know. Bindings live in
    contextvars and therefore follow tasks spawned inside the block.

    Example:
        >>> with store_context(credential_id="urn:uuid:1"):
        ...     log.info("credential_upserted")
    """
    bound = {key: value for key, value in fields.items() if value is not None}
    return structlog.contextvars.bound_contextvars(**bound)


def close_file_logging() -> None:
    """Close the JSON lines file, if one is open."""
    global _file_handler
    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None
