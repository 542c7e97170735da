"""Report registry: submission, lookup and aggregate statistics."""

from __future__ import annotations

import logging
from typing import Any

from .access import AccessControl
from .context import ServiceContext
from .errors import ValidationError
from .privacy import SeverityObfuscator
from .store import SEALED_FIELDS, ReportStatus, Report

logger = logging.getLogger(__name__)

CATEGORY_MIN = 0
CATEGORY_MAX = 5
SEVERITY_MIN = 1
SEVERITY_MAX = 100

CATEGORY_NAMES = (
    "CORRUPTION",
    "FRAUD",
    "ENVIRONMENTAL",
    "SAFETY",
    "DISCRIMINATION",
    "OTHER",
)


def _require_int(value: Any, field: str, low: int, high: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if not low <= value <= high:
        raise ValidationError(f"Invalid {field}: {value} (expected {low}-{high})")
    return value


class ReportRegistry:
    """Owns Report records and their creation."""

    def __init__(
        self,
        ctx: ServiceContext,
        access: AccessControl,
        obfuscator: SeverityObfuscator | None = None,
    ) -> None:
        self._ctx = ctx
        self._access = access
        self._obfuscator = obfuscator or SeverityObfuscator()

    def submit(self, caller: str, category: int, anonymous: bool, severity: int) -> int:
        """Seal a new report and return its id."""
        _require_int(category, "category", CATEGORY_MIN, CATEGORY_MAX)
        _require_int(severity, "severity", SEVERITY_MIN, SEVERITY_MAX)
        if not isinstance(anonymous, bool):
            raise ValidationError("anonymous must be a boolean")

        store = self._ctx.store
        sealer = self._ctx.sealer
        with store.transaction():
            now = store.now()
            report_id = store.allocate_report_id()
            multiplier = self._obfuscator.generate_multiplier(store.total_reports, caller)
            obfuscated = self._obfuscator.obfuscate(severity, multiplier)

            sealed = {
                "reporter": sealer.seal(caller or ""),
                "category": sealer.seal(category),
                "timestamp": sealer.seal(int(now.timestamp())),
                "anonymous": sealer.seal(anonymous),
                "severity": sealer.seal(severity),
                "obfuscated_severity": sealer.seal(obfuscated),
            }
            for handle in sealed.values():
                sealer.grant_access(handle, store.authority)

            store.add_report(Report(id=report_id, sealed=sealed, submitted_at=now))
            store.emit(
                "ReportSubmitted",
                report_id=report_id,
                submitted_at=now.isoformat(),
                obfuscated_severity=obfuscated,
            )
        logger.info("Report %d submitted", report_id, extra={"report_id": report_id})
        return report_id

    def get_basic_info(self, report_id: int) -> dict[str, Any]:
        report = self._ctx.store.get_report(report_id)
        return {
            "report_id": report.id,
            "status": report.status.value,
            "submitted_at": report.submitted_at.isoformat(),
            "investigator": report.investigator,
            "exists": True,
            "callback_completed": report.callback_completed,
            "revealed_severity": report.revealed_severity if report.callback_completed else 0,
        }

    def get_stats(self) -> dict[str, int]:
        """Counters are maintained incrementally, so this is O(1)."""
        store = self._ctx.store
        total = store.total_reports
        resolved = store.resolved_count
        refunded = store.refunded_count
        return {
            "total": total,
            "resolved": resolved,
            "pending": total - resolved - refunded,
            "refunded": refunded,
        }

    def read_sealed_field(self, caller: str, report_id: int, field: str) -> Any:
        """Return a sealed field's clear value if ``caller`` was granted it."""
        if field not in SEALED_FIELDS:
            raise ValidationError(f"Unknown sealed field: {field}")
        report = self._ctx.store.get_report(report_id)
        return self._ctx.sealer.read(report.sealed[field], caller)

    def status_counts(self) -> dict[str, int]:
        """Full scan of report statuses, for audits of the counters."""
        counts = {status.value: 0 for status in ReportStatus}
        for report in self._ctx.store.reports.values():
            counts[report.status.value] += 1
        return counts
