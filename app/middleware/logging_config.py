"""
Structured logging configuration.

- Development: colored single-line records, request id and actor appended
- Production: one JSON object per line (log aggregator compatible)
- Testing: readable, WARNING and above unless LOG_LEVEL says otherwise

Command context travels through ``extra=`` (see CONTEXT_KEYS); the request
timing middleware supplies method/path/status/duration, services add
entity_id and error_kind where they have them.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Request/command context copied from ``extra=`` into JSON records
CONTEXT_KEYS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "request_id",
    "actor_id",
    "entity_id",
    "error_kind",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "flask_limiter")


def record_context(record: logging.LogRecord) -> dict:
    """Context keys present on ``record``."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_KEYS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON document per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored formatter for a terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        ctx = record_context(record)

        suffix = []
        if "duration_ms" in ctx:
            suffix.append(f"{ctx['duration_ms']:.0f}ms")
        if "actor_id" in ctx:
            suffix.append(f"actor={ctx['actor_id']}")
        if "request_id" in ctx:
            suffix.append(f"req={ctx['request_id']}")
        tail = f" [{' '.join(suffix)}]" if suffix else ""

        line = f"{color}{stamp} {record.levelname:<8}{self.RESET} {record.name}: {record.getMessage()}{tail}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _default_level(app) -> str:
    if app.config.get("TESTING"):
        return "WARNING"
    return "DEBUG" if app.config.get("DEBUG") else "INFO"


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    LOG_LEVEL overrides the per-environment default. Calling this again
    (one create_app() per test session, CLI re-entry) replaces the
    handler instead of stacking another one.
    """
    production = not app.config.get("DEBUG") and not app.config.get("TESTING")
    level_name = os.getenv("LOG_LEVEL", _default_level(app)).upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    app.logger.info("Logging configured: level=%s format=%s",
                    level_name, "json" if production else "readable")
