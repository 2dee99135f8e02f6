"""Structured logging for the helpdesk AI engine.

Events are snake_case with keyword context (``provider``, ``model``,
``task_type``, ``latency_ms``) so attempt logs and usage-ledger writes can be
correlated.  Every event also carries the ``service`` and ``environment``
of the process emitting it.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from helpdesk_ai.config import Settings, get_settings

SERVICE_NAME = "helpdesk_ai"

# Provider SDK and transport loggers; they log each HTTP request at INFO
_SDK_LOGGERS = ("httpx", "httpcore", "anthropic", "openai")

_HANDLER_MARKER = "_helpdesk_ai_handler"


def _json_formatter() -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(),
        ]
    )


def _console_formatter(settings: Settings) -> structlog.stdlib.ProcessorFormatter:
    if not settings.is_development:
        return _json_formatter()
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=True),  # type: ignore[list-item]
        ]
    )


def _open_file_handler(settings: Settings, level: int) -> logging.Handler | None:
    """Rotating JSON file handler, or None when the log directory is unusable."""
    try:
        Path(settings.log_directory).mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=settings.log_file_path,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as e:
        print(f"Warning: file logging disabled: {e}", file=sys.stderr)
        return None
    handler.setLevel(level)
    handler.setFormatter(_json_formatter())
    return handler


def _add_service_context(settings: Settings) -> Any:
    def processor(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", SERVICE_NAME)
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return processor


def setup_logging() -> None:
    """Route structlog events to stdout and, optionally, a rotating file.

    Console output is colored in development and JSON elsewhere; the file is
    always JSON.  Calling this again replaces the handlers it installed
    earlier instead of stacking duplicates.
    """
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    for handler in list(logging.root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logging.root.removeHandler(handler)
            handler.close()
    logging.root.setLevel(level)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(_console_formatter(settings))
    handlers: list[logging.Handler] = [console]

    if settings.log_to_file:
        file_handler = _open_file_handler(settings, level)
        if file_handler is not None:
            handlers.append(file_handler)

    for handler in handlers:
        setattr(handler, _HANDLER_MARKER, True)
        logging.root.addHandler(handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service_context(settings),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in _SDK_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
