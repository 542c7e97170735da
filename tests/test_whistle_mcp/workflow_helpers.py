"""Shared principals, clock and report builders for the workflow tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from whistle_mcp.sealing import encode_clear_values, sign_proof

AUTHORITY = "authority"
ALICE = "alice"
BOB = "bob"
REPORTER = "reporter"
ORACLE_KEY = "test-oracle-key"


class ManualClock:
    """Clock the tests move by hand."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


def submit(service, *, category=1, anonymous=True, severity=50, caller=REPORTER) -> int:
    return service.submit(caller, category, anonymous, severity)


def assigned(service, **kwargs) -> int:
    """Submit a report and assign it to alice."""
    report_id = submit(service, **kwargs)
    service.assign(AUTHORITY, report_id, ALICE)
    return report_id


def pending(service, **kwargs) -> tuple[int, str]:
    """Submit, assign and request decryption. Returns (report_id, request_id)."""
    report_id = assigned(service, **kwargs)
    result = service.request_decryption(ALICE, report_id)
    return report_id, result["request_id"]


def signed_answer(request_id: str, values, key: str = ORACLE_KEY) -> tuple[bytes, bytes]:
    """Clear values and proof as the oracle would sign them."""
    clear_values = encode_clear_values(values)
    return clear_values, sign_proof(key.encode("utf-8"), request_id, clear_values)
