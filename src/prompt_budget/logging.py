"""Structured logging configuration using structlog.

Every pipeline event can carry the request it belongs to: fields bound with
``request_context`` (provider, tool format, chat mode) are merged into each
event logged inside the block, so a ``trim_tier_applied`` or
``prepare_timeout`` line says which model request it came from.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import structlog

# (before, after) field pairs logged by the trimming and pipeline events
_SIZE_PAIRS = (("before", "after"), ("initial_chars", "final_chars"))


@contextmanager
def request_context(**values: Any) -> Iterator[None]:
    """Bind ``values`` to every event logged in this thread inside the block.

    Work handed to a thread pool sees these fields only when submitted
    through ``contextvars.copy_context().run``.
    """
    tokens = structlog.contextvars.bind_contextvars(**values)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def add_chars_saved(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Add ``chars_saved`` to events that report a size before and after."""
    for before_key, after_key in _SIZE_PAIRS:
        before = event_dict.get(before_key)
        after = event_dict.get(after_key)
        if isinstance(before, int) and isinstance(after, int):
            event_dict["chars_saved"] = before - after
            break
    return event_dict


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ],
    )


def configure_logging(
    *,
    level: str = "INFO",
    log_file: Path | None = None,
    json_format: bool = False,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional path for a JSON-lines audit of what each request lost.
        json_format: If True, use JSON format for console output too.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Shared processors for all output; request fields merge first
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_chars_saved,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Console handler; stderr keeps stdout clean for `prepare --json` payloads
    if json_format:
        console_formatter = _json_formatter()
    else:
        console_formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer(pad_level=False),
            ],
        )
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(console_formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(console_handler)
    root.setLevel(log_level)

    # Optional JSON-lines audit file
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setFormatter(_json_formatter())
        file_handler.setLevel(log_level)
        root.addHandler(file_handler)

    # The HTTP API logs every request through uvicorn already
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
