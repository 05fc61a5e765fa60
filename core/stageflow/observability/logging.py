"""
Run-aware logging.

The executor binds ``run_id`` and ``pipeline`` once per run and ``node_id``
before each stage. Every log record emitted while that stage runs (in the
engine, a handler, or a parallel branch task) carries those fields without
any explicit passing, because they live in a ContextVar.

Two output modes:
    json     one object per line for log shipping
    console  ``[LEVEL] [run | node] message`` with ANSI colors
"""

import json
import logging
import os
import re
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# asyncio copies the current context into each task, so a branch task
# starts with the parent's fields and can rebind node_id privately.
log_context: ContextVar[dict[str, Any] | None] = ContextVar("stageflow_log_context", default=None)

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")

_LEVEL_COLORS = {
    logging.DEBUG: "36",
    logging.INFO: "32",
    logging.WARNING: "33",
    logging.ERROR: "31",
    logging.CRITICAL: "35",
}

RUN_ID_DISPLAY_LENGTH = 12


def strip_ansi_codes(text: str) -> str:
    return _ANSI_RE.sub("", text)


class JsonLogFormatter(logging.Formatter):
    """
    One JSON object per record.

    Keys: timestamp, level, logger, message, then the bound run fields, then
    any of ``PASSTHROUGH_FIELDS`` given via ``extra=``.
    """

    PASSTHROUGH_FIELDS = ("event", "node_id", "attempt", "delay_ms", "duration_ms")

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": strip_ansi_codes(record.getMessage()),
            **(log_context.get() or {}),
        }
        for name in self.PASSTHROUGH_FIELDS:
            value = getattr(record, name, None)
            if value is None:
                continue
            payload[name] = strip_ansi_codes(value) if isinstance(value, str) else value
        if record.exc_info:
            payload["exception"] = strip_ansi_codes(self.formatException(record.exc_info))
        return json.dumps(payload, default=str, ensure_ascii=False)


class ConsoleLogFormatter(logging.Formatter):
    """Colored single-line output tagged with the short run id and node."""

    def format(self, record: logging.LogRecord) -> str:
        bound = log_context.get() or {}
        tags = []
        if bound.get("run_id"):
            tags.append(f"run:{str(bound['run_id'])[-RUN_ID_DISPLAY_LENGTH:]}")
        if bound.get("node_id"):
            tags.append(f"node:{bound['node_id']}")
        tag = "[" + " | ".join(tags) + "] " if tags else ""

        code = _LEVEL_COLORS.get(record.levelno)
        level = f"[{record.levelname:<8}]"
        if code:
            level = f"\x1b[{code}m{level}\x1b[0m"

        line = f"{level} {tag}{record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _pick_format(requested: str) -> str:
    if requested != "auto":
        return requested
    if os.getenv("LOG_FORMAT", "").lower() == "json":
        return "json"
    return "json" if os.getenv("ENV", "").lower() == "production" else "console"


def configure_logging(level: str = "INFO", format: str = "auto") -> None:
    """
    Install a single stream handler on the root logger.

    Args:
        level: Level name, e.g. the ``log_level`` from EngineConfig
        format: "json", "console" or "auto". Auto means json when
            LOG_FORMAT=json or ENV=production, console otherwise.
    """
    handler = logging.StreamHandler()
    if _pick_format(format) == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(ConsoleLogFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())


def bind_log_context(**fields: Any) -> None:
    """Add or replace run fields for the current execution context."""
    log_context.set({**(log_context.get() or {}), **fields})


def current_log_context() -> dict[str, Any]:
    """Copy of the bound run fields."""
    return dict(log_context.get() or {})


def reset_log_context() -> None:
    log_context.set(None)
