#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides structured logging for the resilience layer with:
- Request ID correlation across rate limiting, cache and provider calls
- Stage identifiers for execution flow
- JSON formatting for log aggregation
- Redaction of provider API keys and emails before anything is rendered

Provider error strings routinely echo request details back, so redaction runs
on every event, including the ``error`` field.
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone

import structlog
from structlog.types import EventDict, WrappedLogger

from nexus_resilience.core.config.settings import get_settings

# Context variable for the current request ID
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_REDACTIONS = (
    (re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b"), "[EMAIL]"),
    (re.compile(r"\bsk-[a-zA-Z0-9_-]+\b"), "[REDACTED]"),
    (re.compile(r"\bxai-[a-zA-Z0-9_-]+\b"), "[REDACTED]"),
    (re.compile(r"\bAIza[a-zA-Z0-9_-]+\b"), "[REDACTED]"),
    (re.compile(r"(?i)\bbearer\s+[a-zA-Z0-9._-]+"), "Bearer [REDACTED]"),
)

_REDACTED_FIELDS = ("event", "error", "message")


def add_request_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the request ID from context to every log entry."""
    request_id = request_id_ctx.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Add ISO timestamp to log event."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def redact_secrets(value: str) -> str:
    """Replace API keys, bearer tokens and emails in a string."""
    for pattern, replacement in _REDACTIONS:
        value = pattern.sub(replacement, value)
    return value


def redact_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact secrets and PII from log messages.

    Patterns redacted:
    - Email addresses -> [EMAIL]
    - API keys (sk-..., xai-..., AIza...) and bearer tokens -> [REDACTED]
    """
    for field in _REDACTED_FIELDS:
        value = event_dict.get(field)
        if isinstance(value, str):
            event_dict[field] = redact_secrets(value)
    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Uppercase the log level name."""
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_request_id,
            add_timestamp,
            structlog.stdlib.add_log_level,
            add_log_level_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_pii,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage=Stage.CACHE_LOOKUP)
    """
    return structlog.get_logger(name)


def set_request_id(request_id: str) -> None:
    """Set the request ID for the current request context."""
    request_id_ctx.set(request_id)


def get_request_id() -> str | None:
    """Get the request ID of the current context."""
    return request_id_ctx.get()


def clear_request_id() -> None:
    """Clear the request ID at the end of request processing."""
    request_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger, stage: str, message: str, level: str = "info", **kwargs
) -> None:
    """
    Log a message with stage information.

    Usage:
        log_stage(logger, Stage.CACHE_LOOKUP, "Cache hit", cache_key="ai:adaptive:...")
    """
    log_func = getattr(logger, level.lower())
    log_func(message, stage=getattr(stage, "value", stage), **kwargs)
