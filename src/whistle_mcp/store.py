"""Shared state store: records, status enum, transactions, snapshots.

One StateStore holds every table the workflow mutates (reports,
investigations, roster, portfolio, request index, counters). Components
receive it through the ServiceContext; nothing lives in module globals.

Mutations run inside ``transaction()``: a re-entrant lock serializes them,
an undo journal restores whatever the body touched if it raises, and
events emitted inside the body are published only after commit.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Callable, Iterator, Mapping

from .audit import Event, EventLog
from .errors import ValidationError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

SNAPSHOT_SCHEMA_VERSION = 1


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


def _atomic_write(path: Path, content: str) -> None:
    """Write file atomically via temp file + rename to prevent data loss on crash."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class ReportStatus(str, Enum):
    SUBMITTED = "SUBMITTED"
    UNDER_INVESTIGATION = "UNDER_INVESTIGATION"
    DECRYPTION_PENDING = "DECRYPTION_PENDING"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @classmethod
    def parse(cls, value: "str | ReportStatus") -> "ReportStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown report status: {value!r}") from None


TERMINAL_STATUSES = frozenset({
    ReportStatus.RESOLVED,
    ReportStatus.DISMISSED,
    ReportStatus.REFUNDED,
})

# Every edge of the status graph. Which operation may take which edge is
# decided by the component that owns the operation.
STATUS_GRAPH: dict[ReportStatus, frozenset[ReportStatus]] = {
    ReportStatus.SUBMITTED: frozenset({
        ReportStatus.UNDER_INVESTIGATION,
        ReportStatus.RESOLVED,
        ReportStatus.DISMISSED,
    }),
    ReportStatus.UNDER_INVESTIGATION: frozenset({
        ReportStatus.DECRYPTION_PENDING,
        ReportStatus.RESOLVED,
        ReportStatus.DISMISSED,
        ReportStatus.REFUNDED,
    }),
    ReportStatus.DECRYPTION_PENDING: frozenset({
        ReportStatus.RESOLVED,
        ReportStatus.DISMISSED,
        ReportStatus.REFUNDED,
    }),
    ReportStatus.RESOLVED: frozenset(),
    ReportStatus.DISMISSED: frozenset(),
    ReportStatus.REFUNDED: frozenset(),
}

SEALED_FIELDS = (
    "reporter",
    "category",
    "timestamp",
    "anonymous",
    "severity",
    "obfuscated_severity",
)


@dataclass
class Report:
    id: int
    sealed: dict[str, str]
    submitted_at: datetime
    status: ReportStatus = ReportStatus.SUBMITTED
    investigator: str | None = None
    decryption_request_id: str | None = None
    decryption_requested_at: datetime | None = None
    decryption_deadline: datetime | None = None
    callback_completed: bool = False
    refund_claimed: bool = False
    revealed_severity: int = 0
    revealed_category: int | None = None
    revealed_timestamp: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sealed": dict(self.sealed),
            "submitted_at": _iso(self.submitted_at),
            "status": self.status.value,
            "investigator": self.investigator,
            "decryption_request_id": self.decryption_request_id,
            "decryption_requested_at": _iso(self.decryption_requested_at),
            "decryption_deadline": _iso(self.decryption_deadline),
            "callback_completed": self.callback_completed,
            "refund_claimed": self.refund_claimed,
            "revealed_severity": self.revealed_severity,
            "revealed_category": self.revealed_category,
            "revealed_timestamp": self.revealed_timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Report":
        return cls(
            id=int(data["id"]),
            sealed=dict(data["sealed"]),
            submitted_at=_parse_ts(data["submitted_at"]),
            status=ReportStatus(data["status"]),
            investigator=data.get("investigator"),
            decryption_request_id=data.get("decryption_request_id"),
            decryption_requested_at=_parse_ts(data.get("decryption_requested_at")),
            decryption_deadline=_parse_ts(data.get("decryption_deadline")),
            callback_completed=bool(data.get("callback_completed", False)),
            refund_claimed=bool(data.get("refund_claimed", False)),
            revealed_severity=int(data.get("revealed_severity", 0)),
            revealed_category=data.get("revealed_category"),
            revealed_timestamp=data.get("revealed_timestamp"),
        )


@dataclass
class Investigation:
    report_id: int
    investigator: str
    started_at: datetime
    updated_at: datetime
    deadline: datetime
    cost_handle: str
    active: bool = True
    notes: str = ""

    def is_expired(self, now: datetime) -> bool:
        return now > self.deadline

    def to_dict(self) -> dict[str, Any]:
        return {
            "report_id": self.report_id,
            "investigator": self.investigator,
            "started_at": _iso(self.started_at),
            "updated_at": _iso(self.updated_at),
            "deadline": _iso(self.deadline),
            "cost_handle": self.cost_handle,
            "active": self.active,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Investigation":
        return cls(
            report_id=int(data["report_id"]),
            investigator=data["investigator"],
            started_at=_parse_ts(data["started_at"]),
            updated_at=_parse_ts(data["updated_at"]),
            deadline=_parse_ts(data["deadline"]),
            cost_handle=data["cost_handle"],
            active=bool(data.get("active", True)),
            notes=data.get("notes", ""),
        )


@dataclass
class _Tables:
    authority: str
    next_report_id: int = 1
    resolved_count: int = 0
    refunded_count: int = 0
    reports: dict[int, Report] = field(default_factory=dict)
    investigations: dict[int, Investigation] = field(default_factory=dict)
    investigators: set[str] = field(default_factory=set)
    portfolios: dict[str, list[int]] = field(default_factory=dict)
    request_index: dict[str, int] = field(default_factory=dict)


class StateStore:
    """Single authoritative store for the workflow."""

    def __init__(
        self,
        authority: str,
        *,
        clock: Clock = system_clock,
        event_log: EventLog | None = None,
    ) -> None:
        self._t = _Tables(authority=authority)
        self.clock = clock
        self.event_log = event_log or EventLog()
        self._lock = threading.RLock()
        self._depth = 0
        self._pending_events: list[Event] = []
        self._undo: list[Callable[[], None]] = []
        self._saved: set[tuple[str, int]] = set()

    # --- Transactions ---

    @contextmanager
    def transaction(self) -> Iterator["StateStore"]:
        """Run a mutation atomically. Nested calls join the outer one.

        Rollback replays an undo journal: records are saved the first time
        the body reads them and inserts register their own removal, so a
        transaction costs what it touches rather than the size of the store.
        Sealer entries are not journaled; a body that fails after sealing
        leaves those handles unreferenced.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            counters = (
                self._t.authority,
                self._t.next_report_id,
                self._t.resolved_count,
                self._t.refunded_count,
            )
            self._undo = []
            self._saved = set()
            self._pending_events = []
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._rollback(counters)
                self._pending_events = []
                raise
            finally:
                self._depth = 0
                self._undo = []
                self._saved = set()
            events, self._pending_events = self._pending_events, []

        for event in events:
            self.event_log.publish(event)

    def _rollback(self, counters: tuple[str, int, int, int]) -> None:
        for undo in reversed(self._undo):
            undo()
        t = self._t
        t.authority, t.next_report_id, t.resolved_count, t.refunded_count = counters

    def _journal(self, undo: Callable[[], None]) -> None:
        if self._depth:
            self._undo.append(undo)

    def _save_record(self, kind: str, key: int, record: Report | Investigation) -> None:
        if not self._depth or (kind, key) in self._saved:
            return
        self._saved.add((kind, key))
        state = dict(vars(record))
        # restored in place so references held by callers stay valid
        self._undo.append(lambda: vars(record).update(state))

    def emit(self, name: str, **payload: Any) -> None:
        event = Event(name=name, payload=payload, ts=self.now().isoformat())
        if self._depth:
            self._pending_events.append(event)
        else:
            self.event_log.publish(event)

    def now(self) -> datetime:
        return self.clock()

    # --- Tables ---
    # Readers get views; every mutation goes through a journaled method.

    @property
    def authority(self) -> str:
        return self._t.authority

    @authority.setter
    def authority(self, value: str) -> None:
        self._t.authority = value

    @property
    def investigators(self) -> frozenset[str]:
        return frozenset(self._t.investigators)

    @property
    def reports(self) -> Mapping[int, Report]:
        return MappingProxyType(self._t.reports)

    @property
    def investigations(self) -> Mapping[int, Investigation]:
        return MappingProxyType(self._t.investigations)

    @property
    def portfolios(self) -> Mapping[str, list[int]]:
        return MappingProxyType(self._t.portfolios)

    @property
    def request_index(self) -> Mapping[str, int]:
        return MappingProxyType(self._t.request_index)

    @property
    def total_reports(self) -> int:
        return self._t.next_report_id - 1

    @property
    def resolved_count(self) -> int:
        return self._t.resolved_count

    @property
    def refunded_count(self) -> int:
        return self._t.refunded_count

    def is_investigator(self, principal: str) -> bool:
        return principal in self._t.investigators

    def add_investigator(self, principal: str) -> None:
        roster = self._t.investigators
        if principal not in roster:
            roster.add(principal)
            self._journal(lambda: roster.discard(principal))

    def remove_investigator(self, principal: str) -> None:
        roster = self._t.investigators
        if principal in roster:
            roster.discard(principal)
            self._journal(lambda: roster.add(principal))

    def allocate_report_id(self) -> int:
        report_id = self._t.next_report_id
        self._t.next_report_id += 1
        return report_id

    def add_report(self, report: Report) -> None:
        reports = self._t.reports
        reports[report.id] = report
        self._journal(lambda: reports.pop(report.id, None))

    def add_investigation(self, inv: Investigation) -> None:
        investigations = self._t.investigations
        investigations[inv.report_id] = inv
        self._journal(lambda: investigations.pop(inv.report_id, None))

    def add_to_portfolio(self, investigator: str, report_id: int) -> None:
        portfolios = self._t.portfolios
        created = investigator not in portfolios
        portfolio = portfolios.setdefault(investigator, [])
        portfolio.append(report_id)

        def undo() -> None:
            portfolio.remove(report_id)
            if created:
                portfolios.pop(investigator, None)

        self._journal(undo)

    def index_request(self, request_id: str, report_id: int) -> None:
        index = self._t.request_index
        index[request_id] = report_id
        self._journal(lambda: index.pop(request_id, None))

    def record_resolution(self) -> None:
        self._t.resolved_count += 1

    def record_refund(self) -> None:
        self._t.refunded_count += 1

    def get_report(self, report_id: int) -> Report:
        if isinstance(report_id, bool) or not isinstance(report_id, int):
            raise ValidationError(f"Report id must be an integer, got {report_id!r}")
        report = self._t.reports.get(report_id)
        if report is None:
            raise ValidationError(f"Report does not exist: {report_id}")
        self._save_record("report", report_id, report)
        return report

    def get_investigation(self, report_id: int) -> Investigation | None:
        inv = self._t.investigations.get(report_id)
        if inv is not None:
            self._save_record("investigation", report_id, inv)
        return inv

    # --- Snapshots ---

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            t = self._t
            return {
                "schema_version": SNAPSHOT_SCHEMA_VERSION,
                "authority": t.authority,
                "next_report_id": t.next_report_id,
                "resolved_count": t.resolved_count,
                "refunded_count": t.refunded_count,
                "reports": [r.to_dict() for r in t.reports.values()],
                "investigations": [i.to_dict() for i in t.investigations.values()],
                "investigators": sorted(t.investigators),
                "portfolios": {k: list(v) for k, v in t.portfolios.items()},
                "request_index": dict(t.request_index),
            }

    def load_dict(self, data: dict[str, Any]) -> None:
        version = data.get("schema_version")
        if version != SNAPSHOT_SCHEMA_VERSION:
            raise ValidationError(f"Unsupported snapshot schema version: {version}")
        tables = _Tables(
            authority=data["authority"],
            next_report_id=int(data["next_report_id"]),
            resolved_count=int(data.get("resolved_count", 0)),
            refunded_count=int(data.get("refunded_count", 0)),
        )
        for item in data.get("reports", []):
            report = Report.from_dict(item)
            tables.reports[report.id] = report
        for item in data.get("investigations", []):
            inv = Investigation.from_dict(item)
            tables.investigations[inv.report_id] = inv
        tables.investigators = set(data.get("investigators", []))
        tables.portfolios = {k: list(v) for k, v in data.get("portfolios", {}).items()}
        tables.request_index = {k: int(v) for k, v in data.get("request_index", {}).items()}
        with self._lock:
            self._t = tables

    def save(self, path: Path, extra: dict[str, Any] | None = None) -> None:
        """Write the store (plus any extra sections) atomically as JSON."""
        path.parent.mkdir(parents=True, exist_ok=True)
        doc = {"store": self.to_dict(), **(extra or {})}
        _atomic_write(path, json.dumps(doc, indent=2, default=str))
        logger.info("State snapshot written: %s (%d reports)", path, len(self.reports))
