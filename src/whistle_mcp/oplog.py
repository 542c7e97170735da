"""Operational logging for whistle-mcp.

Structured JSON lines on stderr, optionally mirrored to
~/.whistle/logs/<service>.jsonl. Workflow modules attach ``report_id`` and
``request_id`` through ``extra=`` and the formatter lifts them to top-level
keys, so a single report can be traced with a grep.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# LogRecord attributes promoted into the JSON object when present.
_CONTEXT_FIELDS = ("report_id", "request_id")


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("true", "1", "yes")


def _log_dir() -> Path:
    return Path.home() / ".whistle" / "logs"


class _StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, service_name: str = "whistle-mcp") -> None:
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "service": self.service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.levelno >= logging.WARNING:
            entry["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }
        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value = record.exc_info[0], record.exc_info[1]
            entry["exception"] = {
                "type": exc_type.__name__,
                "message": str(exc_value) if exc_value else None,
            }
        return json.dumps(entry, default=str)


def setup_logging(
    service_name: str = "whistle-mcp",
    *,
    level: int = logging.INFO,
    json_format: bool | None = None,
    log_to_file: bool | None = None,
) -> logging.Logger:
    """Configure the package logger and return it.

    Args:
        service_name: Name stamped on every entry. The package logger is
            derived from it ("whistle-mcp" -> "whistle_mcp").
        level: Logging level.
        json_format: JSON lines when true, plain text when false. None reads
            WHISTLE_LOG_FORMAT ("json" unless set to "text").
        log_to_file: Also append JSON lines under ~/.whistle/logs/. None
            reads WHISTLE_LOG_FILE (off unless "true", "1" or "yes").

    Calling it again replaces the handlers rather than stacking them.
    """
    if json_format is None:
        json_format = os.environ.get("WHISTLE_LOG_FORMAT", "json").strip().lower() != "text"
    if log_to_file is None:
        log_to_file = _env_flag("WHISTLE_LOG_FILE", "false")

    pkg_logger = logging.getLogger(service_name.replace("-", "_"))
    pkg_logger.setLevel(level)
    for handler in list(pkg_logger.handlers):
        pkg_logger.removeHandler(handler)
        handler.close()

    structured = _StructuredFormatter(service_name)

    # stdout carries the MCP stdio transport
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(structured if json_format else logging.Formatter(_TEXT_FORMAT))
    pkg_logger.addHandler(console)

    if log_to_file:
        target = _log_dir() / f"{service_name}.jsonl"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(target, encoding="utf-8")
        except OSError as exc:
            pkg_logger.warning("File logging disabled, cannot open %s: %s", target, exc)
        else:
            file_handler.setLevel(level)
            file_handler.setFormatter(structured)
            pkg_logger.addHandler(file_handler)

    pkg_logger.propagate = False
    return pkg_logger
