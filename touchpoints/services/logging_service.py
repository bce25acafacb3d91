"""Structured logging configuration with redaction support."""

import logging
import re
import sys
from typing import Any, Dict

import structlog

REDACTED = "REDACTED"

# Substrings of field names whose values never reach the log
SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "token",
        "secret",
        "password",
        "postgres_url",
        "dsn",
    }
)

# user:password@ inside postgres:// or postgresql:// URLs
DSN_CREDENTIALS = re.compile(r"(postgres(?:ql)?://[^:/@\s]+:)[^@\s]+@")


def redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Redact sensitive fields by name.

    Bearer tokens, the JWT secret and database URLs are dropped whole; the
    match is a case-insensitive substring test on the key.
    """
    for key in list(event_dict.keys()):
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_KEYS):
            event_dict[key] = REDACTED

    return event_dict


def mask_dsn_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Mask passwords embedded in Postgres URLs inside any string value.

    asyncpg connection errors can echo the DSN, and storage failures are
    logged with `error=str(e)`.
    """
    for key, value in event_dict.items():
        if isinstance(value, str) and "postgres" in value:
            event_dict[key] = DSN_CREDENTIALS.sub(r"\1***@", value)

    return event_dict


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog for JSON output on stdout.

    Request context (correlation_id, circle_id) bound by the middleware is
    merged into every event.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_sensitive,
            mask_dsn_credentials,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None, **context: Any) -> structlog.stdlib.BoundLogger:
    """Logger bound to `name` and any extra context, e.g. a circle_id."""
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(logger_name=name)
    if context:
        logger = logger.bind(**context)
    return logger
