"""Structured logging for Castellan processes.

Both the server and the headless overlay log through structlog. Output is one
JSON object per line unless a console renderer is requested.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from . import __version__

LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


def _output_handler(service_name: str) -> logging.Handler:
    """stdout, or a rotating file under LOG_DIR when LOG_TO_FILE=true."""
    if os.getenv("LOG_TO_FILE", "false").lower() != "true":
        return logging.StreamHandler(sys.stdout)

    log_dir = os.getenv("LOG_DIR")
    if not log_dir:
        raise ValueError("LOG_DIR environment variable must be set when LOG_TO_FILE is enabled")

    directory = Path(log_dir).resolve()
    directory.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        directory / f"{service_name}.log",
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )


def _stamp_process(service_name: str, component: str | None):
    def stamp(_logger: Any, _method: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict["service"] = service_name
        event_dict["version"] = __version__
        if component:
            event_dict["component"] = component
        return event_dict

    return stamp


def configure_json_logging(
    service_name: str = "castellan",
    level: str = "INFO",
    json_output: bool = True,
    component: str | None = None,
) -> None:
    """Configure structlog for a Castellan process.

    Args:
        service_name: 'castellan' for the server, 'castellan-overlay' for the overlay
        level: Logging level name; unknown names fall back to INFO
        json_output: JSON lines (True) or the structlog console renderer (False)
        component: Optional component tag added to every line, e.g. the overlay page
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = _output_handler(service_name)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logging.basicConfig(handlers=[handler], level=log_level, force=True)

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _stamp_process(service_name, component),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_connection_context(connection_id: str | None = None, source: str | None = None) -> None:
    """Bind per-connection context so every log line of a handler carries it."""
    context = {key: value for key, value in (("connection_id", connection_id), ("source", source)) if value}
    if context:
        structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
