"""Centralized logging configuration using structlog."""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from structlog.typing import Processor

from .utils import is_sensitive_key, mask_sensitive_data, sanitize_log_data

LOG_FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty at INFO, only interesting when something breaks
QUIET_LOGGERS = ("httpx", "httpcore")


def mask_secrets(
    _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Structlog processor that masks values bound under secret-looking keys."""
    for key, value in list(event_dict.items()):
        if key == "event":
            continue
        if is_sensitive_key(key):
            event_dict[key] = mask_sensitive_data(str(value) if value else None)
        elif isinstance(value, dict):
            event_dict[key] = sanitize_log_data(value)
    return event_dict


def build_processors(json_format: bool = False) -> list[Processor]:
    """Return the structlog processor chain, ending in the chosen renderer."""
    renderer: Processor = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer()
    )
    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        mask_secrets,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        renderer,
    ]


def _attach(root: logging.Logger, handler: logging.Handler, level: int, fmt: str) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt))
    root.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
) -> None:
    """Route structlog through the stdlib root logger.

    Console output goes to stderr so command output on stdout stays parseable.
    Calling this again replaces every previously installed root handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Render events as JSON lines instead of console text
        log_file: Also append plain-text records to this file
    """
    log_level = getattr(logging, level.upper())

    root = logging.getLogger()
    root.handlers = []
    root.setLevel(log_level)
    _attach(root, logging.StreamHandler(sys.stderr), log_level, "%(message)s")
    if log_file:
        _attach(root, logging.FileHandler(log_file), log_level, LOG_FILE_FORMAT)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=build_processors(json_format),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger named after the calling module."""
    return structlog.get_logger(name)  # type: ignore[no-any-return]
