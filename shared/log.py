"""Structured logging shared by every EcoSync component.

Usage:
    from shared.log import get_logger
    logger = get_logger("ledger")
    logger.info("state_changed", uid="AB12C", new_state="on")

Log lines are normalised to ``timestamp, level, component, msg, context`` so
they read the same in JSON (containers) and console (local) mode.
"""

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any

import structlog


def _normalize_log_event(_logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Fold every non-reserved key into ``context``."""
    if "msg" not in event_dict and "event" in event_dict:
        event_dict["msg"] = event_dict.pop("event")

    reserved = {"timestamp", "level", "component", "msg", "context", "exception"}
    context = event_dict.get("context")
    if not isinstance(context, dict):
        context = {} if context is None else {"value": context}

    for key in list(event_dict.keys()):
        if key not in reserved:
            context[key] = event_dict.pop(key)

    event_dict["context"] = context
    return event_dict


def setup_logging(level: str = "INFO", log_format: str = "auto") -> None:
    """Configure structlog for JSON logs in containers and console logs locally."""
    is_json = log_format.lower() == "json" or (
        log_format.lower() == "auto" and not sys.stdout.isatty()
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if is_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.format_exc_info,
            _normalize_log_event,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


_initialized = False


def get_logger(component: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with the component name."""
    global _initialized
    if not _initialized:
        from shared.config import Settings

        settings = Settings()
        setup_logging(settings.log_level, settings.log_format)
        _initialized = True

    return structlog.get_logger(component=component)


@contextmanager
def log_context(**values: Any) -> Iterator[None]:
    """Bind values (e.g. ``session_id``) to every log line inside the block."""
    with structlog.contextvars.bound_contextvars(**values):
        yield
