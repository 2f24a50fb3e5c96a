"""Structured logging for the coordinator, built on structlog over stdlib logging.

Every structlog event passes through ``event_processors()`` and is then handed
to stdlib handlers, which render it with a ``ProcessorFormatter``. Session
events carry ``channel_id`` and usually ``state`` or ``mode``; enum values are
flattened so both renderers print ``map_vote`` rather than ``SessionState.MAP_VOTE``.

Environment variables:
- LOG_FORMAT: "json" for one JSON object per line, "console" or unset for
  human-readable output.
- LOG_LEVEL: "DEBUG", "INFO" (default), "WARNING", "ERROR", or "CRITICAL".
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, NamedTuple

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"

# relay traffic is logged by pug.chat itself
QUIET_LOGGERS = ("httpx", "httpcore")

_FORMATS = ("json", "console", "")
_LEVELS = ("CRITICAL", "DEBUG", "ERROR", "INFO", "WARNING")


class LogOptions(NamedTuple):
    json: bool
    level: int


def _flatten_enum(value: object) -> object:
    return value.value if isinstance(value, Enum) else value


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Flatten enum fields, including enums inside list or tuple fields."""
    for key, value in event_dict.items():
        if isinstance(value, list | tuple):
            event_dict[key] = [_flatten_enum(item) for item in value]
        else:
            event_dict[key] = _flatten_enum(value)
    return event_dict


def event_processors(*, timestamps: bool = True) -> list[Any]:
    """Processor chain shared by the service and the test suite."""
    chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
    ]
    if timestamps:
        chain.append(structlog.processors.TimeStamper(fmt="iso"))
    chain += [
        _serialize_enums,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    return chain


def _is_test() -> bool:
    return "pytest" in sys.modules


def options_from_env() -> LogOptions:
    log_format = os.environ.get("LOG_FORMAT", "").lower()
    if log_format not in _FORMATS:
        msg = f"Invalid LOG_FORMAT={log_format!r}. Must be 'json', 'console', or unset."
        raise ValueError(msg)

    level_name = os.environ.get("LOG_LEVEL", "INFO").upper()
    if level_name not in _LEVELS:
        msg = f"Invalid LOG_LEVEL={level_name!r}. Must be one of {', '.join(_LEVELS)}."
        raise ValueError(msg)

    return LogOptions(json=log_format == "json", level=logging.getLevelNamesMapping()[level_name])


def _handler(handler: logging.Handler, *, json: bool, colors: bool = False) -> logging.Handler:
    renderer: Any = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer(colors=colors)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )
    return handler


def new_log_file(log_dir: Path | str) -> Path:
    """Create ``log_dir`` if needed and return a fresh UTC-stamped file path in it."""
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"{datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)}.log"


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | None = None,
) -> Path | None:
    """Route structlog to stdout and, outside of tests, to a file under ``log_dir``.

    Calling it again replaces the handlers installed by the previous call.
    Returns the log file path, or None when no file is written.
    """
    options = options_from_env()
    if level is not None:
        options = options._replace(level=level)

    structlog.configure(
        processors=event_processors(),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(options.level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root.addHandler(_handler(logging.StreamHandler(sys.stdout), json=options.json, colors=sys.stdout.isatty()))

    if log_dir is None or _is_test():
        return None

    log_path = new_log_file(log_dir)
    root.addHandler(_handler(logging.FileHandler(log_path), json=options.json))
    return log_path
