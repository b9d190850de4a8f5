"""Logging setup and small helpers for log payloads."""

import json
import logging
import os
import re
import sys
from typing import Any, Optional

_STD_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname", "filename", "module",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName", "created", "msecs",
    "relativeCreated", "thread", "threadName", "processName", "process", "message",
    "asctime", "taskName",
}

_SECRET_PATTERNS = [
    (re.compile(r"sk-[A-Za-z0-9_\-]{8,}"), "sk-***REDACTED***"),
    (re.compile(r"(?i)(api[_-]?key\s*[:=]\s*)[A-Za-z0-9_\-]{6,}"), r"\1***REDACTED***"),
]


def preview(s: Any, n: int = 300) -> str:
    """Stringify and truncate a value for a log line."""
    if isinstance(s, bytes):
        s = s.decode("utf-8", "replace")
    s = str(s).strip()
    return s if len(s) <= n else (s[: n - 20] + "... <truncated>")


def _truthy(v: Optional[str]) -> bool:
    return str(v or "").strip().lower() in {"1", "true", "yes", "y", "on"}


def verbose_llm() -> bool:
    """Whether full prompts should be logged."""
    return _truthy(os.getenv("LOG_VERBOSE_LLM"))


def redact(s: str) -> str:
    """Mask API keys that end up in error messages."""
    for pattern, replacement in _SECRET_PATTERNS:
        s = pattern.sub(replacement, s)
    return s


class ExtraJSONFormatter(logging.Formatter):
    """Format: "YYYY-mm-dd HH:MM:SS.mmm | LEVEL | message | {json of extras}"."""

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        ts = f"{self.formatTime(record, datefmt='%Y-%m-%d %H:%M:%S')}.{int(record.msecs):03d}"
        extras = {k: v for k, v in record.__dict__.items() if k not in _STD_ATTRS}

        line = f"{ts} | {record.levelname} | {redact(record.message)}"
        if extras:
            try:
                line += " | " + redact(json.dumps(extras, ensure_ascii=False, default=str))
            except (TypeError, ValueError):
                line += ' | {"_format_error": "<unserializable extras>"}'
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: Optional[str] = None) -> None:
    """Install one stdout handler on the root logger; later calls are no-ops."""
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    lvl = getattr(logging, name, logging.INFO)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    root = logging.getLogger()
    if getattr(root, "_mermaid_stream_configured", False):
        root.setLevel(lvl)
        return
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(ExtraJSONFormatter())
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    root._mermaid_stream_configured = True  # type: ignore[attr-defined]
