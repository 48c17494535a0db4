"""
Structured logging configuration for the aPaaS client.

Provides JSON-formatted structured logging with:
- Security filtering (access tokens, client secrets, Authorization headers)
- Low-cardinality labels (no raw payloads, no URL query strings)
- A TRACE level below DEBUG for full response dumps

The package itself only creates module loggers. Handlers are installed by
the application (or a script) calling setup_logging() once.

Usage:
    from apaas_client.logging_config import setup_logging, get_logger

    setup_logging()  # Call once at startup
    logger = get_logger(__name__)
    logger.info("message", extra={"key": "value"})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

PACKAGE_LOGGER = "apaas_client"

# Full request/response dumps
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LEVEL_NAMES: dict[str, int] = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Query string of a URL quoted in aiohttp error text
_URL_QUERY_PATTERN = re.compile(r"(https?://[^\s?\"'<>]+)\?[^\s\"'<>]*")
# Sensitive patterns that might appear in free text
_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    # JSON-ish credential fields: "accessToken": "...", clientSecret=...
    (
        re.compile(
            r"[\"']?(access_?token|client_?secret|app_?token)[\"']?\s*[=:]\s*[\"']?[\w\-\.]+[\"']?",
            re.I,
        ),
        "[CREDENTIAL]",
    ),
    # Authorization headers, with or without a scheme
    (
        re.compile(r"\bauthorization\s*[=:]\s*['\"]?(bearer\s+)?[\w\-\.]+['\"]?", re.I),
        "[AUTH]",
    ),
    # Bearer credentials and token=/token: assignments
    (
        re.compile(r"\bbearer\s+[\w\-\.]+|\btoken\s*[=:]\s*['\"]?[\w\-\.]+['\"]?", re.I),
        "[TOKEN]",
    ),
    # IP addresses (v4)
    (re.compile(r"\b\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}\b"), "[IP]"),
    # Email addresses
    (re.compile(r"\b[\w\.-]+@[\w\.-]+\.\w+\b"), "[EMAIL]"),
]

# Fields that should NEVER appear in logs
BLOCKED_FIELDS: frozenset[str] = frozenset(
    {
        # Credentials
        "secret",
        "client_secret",
        "clientsecret",
        "token",
        "access_token",
        "accesstoken",
        "password",
        "auth",
        "authorization",
        "bearer",
        "credential",
        "headers",
        # PII
        "ip",
        "ip_address",
        "email",
        "phone",
        "mobile",
    }
)

# Short words that would match unrelated keys ("description", "multiplier")
_EXACT_ONLY_FIELDS: frozenset[str] = frozenset({"ip"})
_PARTIAL_FIELDS: frozenset[str] = BLOCKED_FIELDS - _EXACT_ONLY_FIELDS

# Fields that are high-cardinality or carry raw payloads
HIGH_CARDINALITY_FIELDS: dict[str, str] = {
    "body": "[BODY]",
    "payload": "[PAYLOAD]",
    "records": "[RECORDS]",
    "ids": "[IDS]",
    "params": "[PARAMS]",
}

_RESERVED_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "message",
        "taskName",
    }
)


def _sanitize_text(text: str) -> str:
    """Sanitize free-form text (msg, exc, error strings).

    Query strings are cut from URLs; credentials, IPv4 addresses and email
    addresses become placeholders. Prose that merely mentions a token is
    left alone.
    """
    if not text:
        return text

    result = _URL_QUERY_PATTERN.sub(r"\1", text)
    for pattern, replacement in _SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _is_blocked(key_lower: str) -> bool:
    if key_lower in BLOCKED_FIELDS:
        return True
    return any(blocked in key_lower for blocked in _PARTIAL_FIELDS)


def _filter_log_record(record: dict[str, Any], *, _depth: int = 0) -> dict[str, Any]:
    """Filter sensitive and high-cardinality fields from log record.

    Recursively filters nested dicts up to depth 3.
    """
    if _depth > 3:
        return {"_truncated": "max depth exceeded"}

    filtered: dict[str, Any] = {}

    for key, value in record.items():
        key_lower = key.lower()

        if _is_blocked(key_lower):
            continue

        if key_lower in HIGH_CARDINALITY_FIELDS:
            filtered[key] = HIGH_CARDINALITY_FIELDS[key_lower]
            continue

        if isinstance(value, (int, float, bool, type(None))):
            filtered[key] = value
        elif isinstance(value, str):
            filtered[key] = _sanitize_text(value)
        elif isinstance(value, (list, tuple)):
            # Cap list size to prevent huge log lines
            if len(value) <= 10:
                filtered[key] = list(value)
            else:
                filtered[key] = f"[list:{len(value)} items]"
        elif isinstance(value, dict):
            filtered[key] = _filter_log_record(value, _depth=_depth + 1)
        else:
            filtered[key] = _sanitize_text(str(value))

    return filtered


def _record_extra(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging.

    Output format:
    {"ts":"2024-01-01T00:00:00.000+00:00","level":"INFO","logger":"module","msg":"...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_dict: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": _sanitize_text(record.getMessage()),
        }

        # Add location for warnings and errors
        if record.levelno >= logging.WARNING:
            log_dict["file"] = record.filename
            log_dict["line"] = record.lineno

        if record.exc_info:
            log_dict["exc"] = _sanitize_text(self.formatException(record.exc_info))

        extra = _record_extra(record)
        if extra:
            log_dict.update(_filter_log_record(extra))

        return json.dumps(log_dict, default=str, ensure_ascii=False)


class SimpleFormatter(logging.Formatter):
    """Human-readable formatter for development and scripts."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as human-readable string."""
        base = f"{record.levelname:8s} {record.name}: {_sanitize_text(record.getMessage())}"

        extra = _record_extra(record)
        if extra:
            filtered = _filter_log_record(extra)
            if filtered:
                extra_str = " ".join(f"{k}={v}" for k, v in filtered.items())
                base = f"{base} | {extra_str}"

        return base


def parse_level(level: int | str) -> int:
    """Resolve a level name ("trace", "info", ...) or number to a level number."""
    if isinstance(level, int):
        return level
    try:
        return LEVEL_NAMES[level.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {level!r}") from None


def set_package_level(level: int | str) -> None:
    """Set the level of the apaas_client package logger."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(parse_level(level))


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = True,
    stream: Any = None,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level, number or name (default INFO).
        json_format: Use JSON formatter (default True).
        stream: Output stream (default stderr).
    """
    if stream is None:
        stream = sys.stderr

    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    root.setLevel(parse_level(level))

    # Remove existing handlers to avoid duplicates
    root.handlers.clear()
    root.addHandler(handler)

    # Suppress noisy third-party loggers
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Configured Logger instance.
    """
    return logging.getLogger(name)
