"""Timeout recovery: terminate stuck reports once a deadline has passed.

Two independent tracks. The decryption track fires when a report is still
DECRYPTION_PENDING after its window, answered or not; the investigation
track fires when an active investigation outlives its window. Either claim is open to any
caller and is guarded only by these preconditions. ``refund_claimed`` makes
the terminal transition happen at most once per report.
"""

from __future__ import annotations

import logging
from typing import Any

from .context import ServiceContext
from .errors import StateError, TimeoutNotReachedError
from .store import Report, ReportStatus, StateStore

logger = logging.getLogger(__name__)


class RefundRecovery:
    def __init__(self, ctx: ServiceContext) -> None:
        self._ctx = ctx

    def _finalize(self, store: StateStore, report: Report, caller: str, reason: str) -> str:
        previous = report.status
        report.refund_claimed = True
        report.status = ReportStatus.REFUNDED
        store.record_refund()
        inv = store.get_investigation(report.id)
        if inv is not None and inv.active:
            inv.active = False
            inv.updated_at = store.now()
        store.emit(
            "RefundIssued",
            report_id=report.id,
            reason=reason,
            previous=previous.value,
            caller=caller,
        )
        return previous.value

    def claim_decryption_timeout_refund(self, report_id: int, caller: str = "") -> dict[str, Any]:
        store = self._ctx.store
        with store.transaction():
            report = store.get_report(report_id)
            if report.refund_claimed:
                raise StateError(f"Refund already claimed for report {report_id}")
            if report.status is not ReportStatus.DECRYPTION_PENDING:
                raise StateError(
                    f"Report {report_id} is {report.status.value}, expected DECRYPTION_PENDING"
                )
            deadline = report.decryption_deadline
            if deadline is None or not store.now() > deadline:
                raise TimeoutNotReachedError(
                    f"Decryption deadline not reached for report {report_id}",
                    deadline=deadline.isoformat() if deadline else "",
                )
            previous = self._finalize(store, report, caller, "decryption_timeout")
        logger.info(
            "Decryption timeout refund issued for report %d", report_id, extra={"report_id": report_id}
        )
        return {"report_id": report_id, "previous": previous, "status": ReportStatus.REFUNDED.value}

    def claim_investigation_timeout_refund(self, report_id: int, caller: str = "") -> dict[str, Any]:
        store = self._ctx.store
        with store.transaction():
            report = store.get_report(report_id)
            if report.refund_claimed:
                raise StateError(f"Refund already claimed for report {report_id}")
            inv = store.get_investigation(report_id)
            if inv is None or not inv.active:
                raise StateError(f"Report {report_id} has no active investigation")
            if not inv.is_expired(store.now()):
                raise TimeoutNotReachedError(
                    f"Investigation deadline not reached for report {report_id}",
                    deadline=inv.deadline.isoformat(),
                )
            deadline = inv.deadline
            previous = self._finalize(store, report, caller, "investigation_timeout")
            store.emit(
                "InvestigationTimeout",
                report_id=report_id,
                investigator=inv.investigator,
                deadline=deadline.isoformat(),
            )
        logger.info(
            "Investigation timeout refund issued for report %d", report_id, extra={"report_id": report_id}
        )
        return {"report_id": report_id, "previous": previous, "status": ReportStatus.REFUNDED.value}

    def is_refund_available(self, report_id: int) -> bool:
        store = self._ctx.store
        report = store.get_report(report_id)
        if report.refund_claimed:
            return False
        now = store.now()
        decryption_expired = (
            report.status is ReportStatus.DECRYPTION_PENDING
            and report.decryption_deadline is not None
            and now > report.decryption_deadline
        )
        inv = store.get_investigation(report_id)
        investigation_expired = inv is not None and inv.active and inv.is_expired(now)
        return decryption_expired or investigation_expired
