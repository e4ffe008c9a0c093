"""Logging setup for cache processes.

Cache log calls attach ``backend``, ``operation`` and ``key`` through
``extra=``; both formatters render them. Credentials found in Redis URLs
and AWS errors are redacted before a record reaches the handler.

Usage:
    from tiercache.config.logging import configure_logging

    configure_logging(level="DEBUG", format="json")
"""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import IO, Any

# Record attributes cache log calls set through ``extra=``
CONTEXT_FIELDS = ("backend", "operation", "key", "namespace")

# Credentials that backend URLs and errors may carry
_REDACTIONS = [
    (re.compile(r"(rediss?|valkeys?)://([^:@/\s]*):([^@/\s]+)@", re.IGNORECASE), r"\1://\2:[REDACTED]@"),
    (re.compile(r"\b(AKIA|ASIA)[A-Z0-9]{16}\b"), "[REDACTED_AWS_KEY]"),
    (re.compile(r'(aws_secret_access_key|secret)["\']?\s*[:=]\s*["\']?[^"\'\s,]+', re.IGNORECASE), r"\1=[REDACTED]"),
    (re.compile(r'password["\']?\s*[:=]\s*["\']?[^"\'\s,]+', re.IGNORECASE), "password=[REDACTED]"),
]

# Libraries that log every request at INFO/DEBUG
_CHATTY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


def sanitize_log_message(message: str) -> str:
    """Redact credentials from a log message."""
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Cache context attached to a record, in CONTEXT_FIELDS order."""
    return {field: getattr(record, field) for field in CONTEXT_FIELDS if hasattr(record, field)}


class SanitizingFilter(logging.Filter):
    """Redacts credentials from the rendered message and the key field."""

    def filter(self, record: logging.LogRecord) -> bool:
        # Render once so arguments of any type are covered
        record.msg = sanitize_log_message(record.getMessage())
        record.args = ()
        if isinstance(getattr(record, "key", None), str):
            record.key = sanitize_log_message(record.key)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, cache context included."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line text; cache context is appended in brackets."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        fields = " ".join(f"{name}={value}" for name, value in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{fields}]{sep}{tail}"


def configure_logging(
    level: str = "INFO",
    format: str = "text",
    sanitize_logs: bool = True,
    stream: IO[str] | None = None,
) -> logging.Handler:
    """Send all logging to one stream handler on the root logger.

    Existing root handlers are replaced.

    Args:
        level: Log level name; unknown names fall back to INFO
        format: 'text' or 'json'
        sanitize_logs: Redact credentials before formatting
        stream: Output stream (default stdout)

    Returns:
        The installed handler
    """
    numeric_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter() if format.lower() == "json" else TextFormatter())
    if sanitize_logs:
        handler.addFilter(SanitizingFilter())

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    return handler
