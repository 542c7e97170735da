"""Event log and audit trail for whistle-mcp.

Every successful mutating operation emits one or more named events
(ReportSubmitted, ReportAssigned, ...). The EventLog keeps them in memory
for queries and forwards each to an AuditWriter, which appends it to a
JSONL file in the audit directory.
"""

from __future__ import annotations

import getpass
import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

logger = logging.getLogger(__name__)

EVENT_NAMES = frozenset({
    "ReportSubmitted",
    "ReportAssigned",
    "ReportStatusChanged",
    "InvestigatorAdded",
    "InvestigatorRemoved",
    "AuthorityTransferred",
    "NotesUpdated",
    "DecryptionRequested",
    "DecryptionCompleted",
    "RefundIssued",
    "InvestigationTimeout",
})


def _sanitize_slug(raw: str) -> str:
    """Sanitize a raw string into a valid principal slug.

    Lowercases, replaces invalid characters with hyphens, strips leading and
    trailing hyphens, and truncates to 40 characters.
    """
    slug = re.sub(r"[^a-z0-9-]", "-", raw.lower()).strip("-")
    if len(slug) > 40:
        logger.warning("Principal slug truncated from %d to 40 chars: %s", len(slug), slug[:40])
        slug = slug[:40].rstrip("-")
    return slug or "unknown"


def resolve_principal() -> str:
    """Resolve caller identity: WHISTLE_PRINCIPAL > OS username."""
    principal = os.environ.get("WHISTLE_PRINCIPAL")
    if not principal:
        try:
            principal = getpass.getuser()
        except Exception:
            principal = "unknown"
    return _sanitize_slug(principal)


@dataclass(frozen=True)
class Event:
    """A single workflow log entry."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    ts: str = ""

    @property
    def report_id(self) -> int | None:
        return self.payload.get("report_id")

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.name, "ts": self.ts, **self.payload}


def _read_jsonl(path: Path) -> Iterator[dict[str, Any]]:
    """Yield parsed entries, skipping blank and corrupt lines."""
    with open(path, encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                yield json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Corrupt audit line %d in %s", lineno, path)


class AuditWriter:
    """Durable JSONL trail of published events.

    Each entry gets an id ``evt-<principal>-<YYYYMMDD>-<NNN>``. The counter
    runs per principal and day and resumes from the file after a restart.
    Writes are flushed and fsynced. With no audit directory configured the
    writer records nothing.
    """

    def __init__(self, service_name: str = "whistle-mcp", audit_dir: str | None = None) -> None:
        self.service_name = service_name
        self._explicit_audit_dir = audit_dir
        self._lock = threading.Lock()
        self._prefix = ""
        self._counter = 0

    def _audit_dir(self) -> Path | None:
        """Explicit audit_dir > WHISTLE_AUDIT_DIR > disabled."""
        configured = self._explicit_audit_dir or os.environ.get("WHISTLE_AUDIT_DIR")
        if not configured:
            return None
        audit_dir = Path(configured)
        try:
            audit_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Audit trail disabled, cannot create %s: %s", audit_dir, e)
            return None
        return audit_dir

    @property
    def log_file(self) -> Path | None:
        audit_dir = self._audit_dir()
        if audit_dir is None:
            return None
        return audit_dir / f"{self.service_name}.jsonl"

    def _highest_sequence(self, log_file: Path, prefix: str) -> int:
        if not log_file.exists():
            return 0
        highest = 0
        try:
            for entry in _read_jsonl(log_file):
                entry_id = str(entry.get("entry_id", ""))
                suffix = entry_id[len(prefix):]
                if entry_id.startswith(prefix) and suffix.isdigit():
                    highest = max(highest, int(suffix))
        except OSError as e:
            logger.warning("Cannot scan %s for audit sequence: %s", log_file, e)
        return highest

    def _allocate_id(self, log_file: Path, principal: str) -> str:
        day = datetime.now(timezone.utc).strftime("%Y%m%d")
        prefix = f"evt-{principal}-{day}-"
        with self._lock:
            if prefix != self._prefix:
                self._prefix = prefix
                self._counter = self._highest_sequence(log_file, prefix)
            self._counter += 1
            return f"{prefix}{self._counter:03d}"

    def record(self, event: Event) -> str | None:
        """Append one event. Returns its entry id, or None if nothing was written."""
        log_file = self.log_file
        if log_file is None:
            return None
        principal = resolve_principal()
        entry_id = self._allocate_id(log_file, principal)
        entry = {
            "entry_id": entry_id,
            "written_at": datetime.now(timezone.utc).isoformat(),
            "service": self.service_name,
            "principal": principal,
            "caller": event.payload.get("caller"),
            **event.to_dict(),
        }
        try:
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.warning("Failed to append audit entry %s (%s): %s", entry_id, event.name, e)
            return None
        return entry_id

    def entries(self, event: str | None = None) -> list[dict[str, Any]]:
        """Read the trail back, optionally only one event name."""
        log_file = self.log_file
        if log_file is None or not log_file.exists():
            return []
        try:
            return [
                entry for entry in _read_jsonl(log_file)
                if event is None or entry.get("event") == event
            ]
        except OSError as e:
            logger.warning("Cannot read audit trail %s: %s", log_file, e)
            return []


class EventLog:
    """In-memory record of published events, mirrored to the audit trail."""

    def __init__(self, writer: AuditWriter | None = None) -> None:
        self._events: list[Event] = []
        self._writer = writer
        self._lock = threading.Lock()

    def publish(self, event: Event) -> None:
        if event.name not in EVENT_NAMES:
            raise ValueError(f"Unknown event name: {event.name}")
        with self._lock:
            self._events.append(event)
        logger.info(
            "%s %s",
            event.name,
            json.dumps(event.payload, default=str),
            extra={"report_id": event.report_id},
        )
        if self._writer is not None:
            self._writer.record(event)

    def events(self, name: str | None = None, report_id: int | None = None) -> list[Event]:
        with self._lock:
            items = list(self._events)
        if name is not None:
            items = [e for e in items if e.name == name]
        if report_id is not None:
            items = [e for e in items if e.report_id == report_id]
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)
