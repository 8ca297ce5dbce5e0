"""Structured logging for the insight service.

One line per record:

    2026-10-18T09:14:03.512Z | INFO | rid=3f2a9c1e | CACHE | Cache hit | {"age_s": 12}

The request id segment appears only inside an HTTP request (it is set by
``RequestIdMiddleware``). Secrets are redacted from both the message and
the structured data, including ``auth_token=...`` query parameters that
httpx echoes back in error messages for the news provider.

Usage:
    from insights.common.logging import get_logger
    logger = get_logger("FUSION")
    logger.info("Market data fetched", extra={"data": {"symbol": "BTC", "points": 31}})
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

MODULE_TAGS = frozenset(
    {
        "ADMISSION",
        "FUSION",
        "MARKET",
        "NEWS",
        "INDICATOR",
        "MODEL",
        "ENSEMBLE",
        "CACHE",
        "API",
        "SYSTEM",
        "TEST",
    }
)

# Current HTTP request id; empty outside a request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# "some_token": "value" inside serialized structured data
_SECRET_JSON_PATTERN = re.compile(
    r'"([^"]*(?:key|secret|password|token|private|credential)[^"]*)":\s*"([^"]*)"',
    re.IGNORECASE,
)

# ?auth_token=value&... inside URLs
_SECRET_QUERY_PATTERN = re.compile(
    r"\b(auth_token|api_key|apikey|token|secret|password)=([^&\s'\"]+)",
    re.IGNORECASE,
)

_level = logging.DEBUG
_loggers: dict[str, ModuleTagLogger] = {}


def _redact_secrets(text: str) -> str:
    """Replace secret-looking JSON values and query parameters with [REDACTED]."""
    text = _SECRET_JSON_PATTERN.sub(r'"\1": "[REDACTED]"', text)
    return _SECRET_QUERY_PATTERN.sub(r"\1=[REDACTED]", text)


class StructuredFormatter(logging.Formatter):
    """Pipe-delimited formatter: timestamp, level, request id, tag, message, data."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=UTC)
        timestamp = f"{created:%Y-%m-%dT%H:%M:%S}.{created.microsecond // 1000:03d}Z"

        parts = [timestamp, record.levelname]
        rid = request_id_var.get("")
        if rid:
            parts.append(f"rid={rid[:8]}")
        parts.append(getattr(record, "module_tag", "SYSTEM"))
        parts.append(_redact_secrets(record.getMessage()))

        data = getattr(record, "data", None)
        if data is not None:
            try:
                parts.append(_redact_secrets(json.dumps(data, default=str)))
            except (TypeError, ValueError):
                parts.append(_redact_secrets(str(data)))

        line = " | ".join(parts)
        if record.exc_info:
            line = f"{line}\n{_redact_secrets(self.formatException(record.exc_info))}"
        return line


class ModuleTagLogger(logging.LoggerAdapter):
    """Adapter that stamps every record with its module tag.

    Structured data goes in ``extra={"data": {...}}``.
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        extra = kwargs.get("extra") or {}
        extra["module_tag"] = self.extra.get("module_tag", "SYSTEM")
        kwargs["extra"] = extra
        return msg, kwargs


def configure_logging(level: str | int) -> None:
    """Set the level for every insight logger, existing and future.

    Args:
        level: A level name ("INFO", "debug") or number. Unknown names fall
            back to INFO.
    """
    global _level
    if isinstance(level, str):
        resolved = logging.getLevelName(level.strip().upper())
        _level = resolved if isinstance(resolved, int) else logging.INFO
    else:
        _level = level
    for adapter in _loggers.values():
        adapter.logger.setLevel(_level)


def get_logger(module_tag: str) -> ModuleTagLogger:
    """Structured logger for one module tag, writing to stdout.

    Args:
        module_tag: One of MODULE_TAGS (FUSION, MODEL, CACHE, ...).
    """
    adapter = _loggers.get(module_tag)
    if adapter is not None:
        return adapter

    logger = logging.getLogger(f"insights.{module_tag.lower()}")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.propagate = False
    logger.setLevel(_level)

    adapter = ModuleTagLogger(logger, {"module_tag": module_tag})
    _loggers[module_tag] = adapter
    return adapter
