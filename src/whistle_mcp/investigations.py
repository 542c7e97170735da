"""Investigation manager: assignment, notes, manual status transitions.

An Investigation is created when the authority assigns a report and is
deactivated (never deleted) on resolution, dismissal or refund. Its
deadline feeds the investigation-timeout refund track.
"""

from __future__ import annotations

import logging
from typing import Any

from .access import AccessControl, is_null_principal
from .context import ServiceContext
from .errors import AuthorizationError, StateError, ValidationError
from .store import Investigation, Report, ReportStatus

logger = logging.getLogger(__name__)

# Sealed fields the assigned investigator may read.
_INVESTIGATOR_FIELDS = ("category", "timestamp", "severity")

# Statuses update_status may set. Any open report can be closed by hand;
# REFUNDED belongs to the refund claims.
MANUAL_TARGETS = frozenset({ReportStatus.RESOLVED, ReportStatus.DISMISSED})


class InvestigationManager:
    def __init__(self, ctx: ServiceContext, access: AccessControl) -> None:
        self._ctx = ctx
        self._access = access

    def _require_investigation(self, report: Report) -> Investigation:
        inv = self._ctx.store.get_investigation(report.id)
        if inv is None:
            raise StateError(f"Report {report.id} has no investigation")
        return inv

    def assign(self, caller: str, report_id: int, investigator: str) -> dict[str, Any]:
        store = self._ctx.store
        sealer = self._ctx.sealer
        with store.transaction():
            self._access.require_authority(caller)
            if is_null_principal(investigator):
                raise ValidationError("Invalid investigator address")
            if not self._access.is_authorized(investigator):
                raise ValidationError(f"Investigator not authorized: {investigator}")
            report = store.get_report(report_id)
            if report.status is not ReportStatus.SUBMITTED or report.investigator is not None:
                raise StateError(f"Report already assigned: {report_id}")

            now = store.now()
            deadline = now + self._ctx.config.investigation_window
            cost_handle = sealer.seal(0)
            sealer.grant_access(cost_handle, store.authority)
            sealer.grant_access(cost_handle, investigator)

            report.investigator = investigator
            report.status = ReportStatus.UNDER_INVESTIGATION
            store.add_investigation(Investigation(
                report_id=report_id,
                investigator=investigator,
                started_at=now,
                updated_at=now,
                deadline=deadline,
                cost_handle=cost_handle,
            ))
            for field in _INVESTIGATOR_FIELDS:
                sealer.grant_access(report.sealed[field], investigator)
            store.add_to_portfolio(investigator, report_id)
            store.emit(
                "ReportAssigned",
                report_id=report_id,
                investigator=investigator,
                deadline=deadline.isoformat(),
                caller=caller,
            )
        logger.info("Report %d assigned to %s (deadline %s)", report_id, investigator, deadline.isoformat())
        return {
            "report_id": report_id,
            "investigator": investigator,
            "status": ReportStatus.UNDER_INVESTIGATION.value,
            "deadline": deadline.isoformat(),
        }

    def add_notes(self, caller: str, report_id: int, text: str) -> dict[str, Any]:
        if not isinstance(text, str):
            raise ValidationError("notes must be a string")
        store = self._ctx.store
        sealer = self._ctx.sealer
        with store.transaction():
            report = store.get_report(report_id)
            self._access.require_case_access(caller, report)
            inv = self._require_investigation(report)

            cost_handle = sealer.add(inv.cost_handle, self._ctx.config.note_cost_unit)
            sealer.grant_access(cost_handle, store.authority)
            sealer.grant_access(cost_handle, inv.investigator)

            inv.notes = text
            inv.cost_handle = cost_handle
            inv.updated_at = store.now()
            store.emit(
                "NotesUpdated",
                report_id=report_id,
                length=len(text),
                caller=caller,
            )
        return {"report_id": report_id, "updated_at": inv.updated_at.isoformat()}

    def update_status(self, caller: str, report_id: int, new_status: str | ReportStatus) -> dict[str, Any]:
        target = ReportStatus.parse(new_status)
        store = self._ctx.store
        with store.transaction():
            report = store.get_report(report_id)
            self._access.require_case_access(caller, report)
            previous = report.status
            if previous.is_terminal or target not in MANUAL_TARGETS:
                raise StateError(
                    f"Cannot move report {report_id} from {previous.value} to {target.value}"
                )

            now = store.now()
            report.status = target
            if target is ReportStatus.RESOLVED:
                store.record_resolution()
            inv = store.get_investigation(report_id)
            if inv is not None:
                inv.updated_at = now
                inv.active = False
            store.emit(
                "ReportStatusChanged",
                report_id=report_id,
                previous=previous.value,
                status=target.value,
                caller=caller,
            )
        logger.info("Report %d status %s -> %s", report_id, previous.value, target.value)
        return {"report_id": report_id, "previous": previous.value, "status": target.value}

    # --- Queries ---

    def get_investigation_info(self, caller: str, report_id: int) -> dict[str, Any]:
        store = self._ctx.store
        report = store.get_report(report_id)
        inv = self._require_investigation(report)
        now = store.now()
        info: dict[str, Any] = {
            "report_id": report_id,
            "investigator": inv.investigator,
            "started_at": inv.started_at.isoformat(),
            "updated_at": inv.updated_at.isoformat(),
            "deadline": inv.deadline.isoformat(),
            "active": inv.active,
            "expired": inv.is_expired(now),
        }
        if self._access.is_authority(caller) or caller == inv.investigator:
            info["notes"] = inv.notes
            info["cost_handle"] = inv.cost_handle
        return info

    def get_investigator_reports(self, caller: str, investigator: str) -> list[int]:
        if not (self._access.is_authority(caller) or (caller and caller == investigator)):
            raise AuthorizationError("Only authority or the investigator can list these reports")
        return list(self._ctx.store.portfolios.get(investigator, []))
