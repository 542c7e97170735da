"""Decryption oracle protocol.

``request_decryption`` packages a report's sealed category, severity and
timestamp into one oracle request and returns as soon as it is dispatched.
The oracle answers later through ``handle_callback``, which anyone may call:
the proof is the only credential. A verified answer records the revealed
values and auto-resolves the report when the revealed severity reaches the
configured threshold.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .access import AccessControl
from .context import ServiceContext
from .errors import ProofVerificationError, StateError, ValidationError
from .store import ReportStatus

logger = logging.getLogger(__name__)

# Order of the values inside one request and its answer.
REQUEST_FIELDS = ("category", "severity", "timestamp")


def decode_clear_values(clear_values: bytes) -> tuple[int, int, int]:
    """Parse ``[category, severity, timestamp]`` from the oracle answer."""
    try:
        values = json.loads(bytes(clear_values).decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError, TypeError):
        raise ValidationError("Malformed decryption payload") from None
    if (
        not isinstance(values, list)
        or len(values) != len(REQUEST_FIELDS)
        or any(isinstance(v, bool) or not isinstance(v, int) for v in values)
    ):
        raise ValidationError("Decryption payload must be three integers")
    category, severity, timestamp = values
    return category, severity, timestamp


class DecryptionProtocol:
    def __init__(self, ctx: ServiceContext, access: AccessControl) -> None:
        self._ctx = ctx
        self._access = access

    def request_decryption(self, caller: str, report_id: int) -> dict[str, Any]:
        store = self._ctx.store
        with store.transaction():
            report = store.get_report(report_id)
            self._access.require_case_access(caller, report)
            if report.status is not ReportStatus.UNDER_INVESTIGATION:
                raise StateError(
                    f"Report {report_id} is {report.status.value}, expected UNDER_INVESTIGATION"
                )
            if report.decryption_request_id is not None:
                raise StateError(f"Decryption already requested for report {report_id}")
            inv = store.get_investigation(report_id)
            now = store.now()
            if inv is None or not inv.active:
                raise StateError(f"Report {report_id} has no active investigation")
            if inv.is_expired(now):
                raise StateError(f"Investigation for report {report_id} has expired")

            handles = [report.sealed[name] for name in REQUEST_FIELDS]
            request_id = self._ctx.oracle.dispatch(handles)
            if request_id in store.request_index:
                raise StateError(f"Oracle reused request id {request_id}")

            deadline = now + self._ctx.config.decryption_window
            report.decryption_request_id = request_id
            report.decryption_requested_at = now
            report.decryption_deadline = deadline
            report.status = ReportStatus.DECRYPTION_PENDING
            store.index_request(request_id, report_id)
            store.emit(
                "DecryptionRequested",
                report_id=report_id,
                request_id=request_id,
                deadline=deadline.isoformat(),
                caller=caller,
            )
        logger.info(
            "Decryption requested for report %d (request %s)",
            report_id,
            request_id,
            extra={"report_id": report_id, "request_id": request_id},
        )
        return {
            "report_id": report_id,
            "request_id": request_id,
            "status": ReportStatus.DECRYPTION_PENDING.value,
            "deadline": deadline.isoformat(),
        }

    def handle_callback(self, request_id: str, clear_values: bytes, proof: bytes) -> dict[str, Any]:
        """Apply a verified oracle answer.

        Verification happens before the store is touched, so a bad proof
        leaves no trace beyond the raised ProofVerificationError.
        """
        if not isinstance(request_id, str) or not request_id:
            raise ValidationError("request_id is required")
        if not self._ctx.verifier.verify(request_id, clear_values, proof):
            logger.warning(
                "Rejected decryption proof for request %s", request_id, extra={"request_id": request_id}
            )
            raise ProofVerificationError(request_id)

        store = self._ctx.store
        threshold = self._ctx.config.auto_resolve_threshold
        with store.transaction():
            report_id = store.request_index.get(request_id)
            if report_id is None:
                raise ValidationError(f"Unknown decryption request: {request_id}")
            report = store.get_report(report_id)
            if report.callback_completed:
                raise StateError(f"Decryption already completed for request {request_id}")
            if report.status is not ReportStatus.DECRYPTION_PENDING:
                raise StateError(
                    f"Report {report_id} is {report.status.value}, callback no longer applies"
                )
            category, severity, timestamp = decode_clear_values(clear_values)

            report.revealed_category = category
            report.revealed_severity = severity
            report.revealed_timestamp = timestamp
            report.callback_completed = True

            auto_resolved = severity >= threshold
            if auto_resolved:
                report.status = ReportStatus.RESOLVED
                store.record_resolution()
                inv = store.get_investigation(report_id)
                if inv is not None:
                    inv.active = False
                    inv.updated_at = store.now()
            store.emit(
                "DecryptionCompleted",
                report_id=report_id,
                request_id=request_id,
                revealed_severity=severity,
                auto_resolved=auto_resolved,
            )
            if auto_resolved:
                store.emit(
                    "ReportStatusChanged",
                    report_id=report_id,
                    previous=ReportStatus.DECRYPTION_PENDING.value,
                    status=ReportStatus.RESOLVED.value,
                    caller="oracle",
                )
        logger.info(
            "Decryption completed for report %d (auto_resolved=%s)",
            report_id,
            auto_resolved,
            extra={"report_id": report_id, "request_id": request_id},
        )
        return {
            "report_id": report_id,
            "revealed_severity": severity,
            "status": report.status.value,
            "auto_resolved": auto_resolved,
        }

    def get_decryption_status(self, report_id: int) -> dict[str, Any]:
        store = self._ctx.store
        report = store.get_report(report_id)
        deadline = report.decryption_deadline
        requested_at = report.decryption_requested_at
        return {
            "report_id": report_id,
            "request_id": report.decryption_request_id,
            "requested_at": requested_at.isoformat() if requested_at else None,
            "deadline": deadline.isoformat() if deadline else None,
            "callback_completed": report.callback_completed,
            "revealed_severity": report.revealed_severity,
            "expired": deadline is not None and store.now() > deadline,
        }
