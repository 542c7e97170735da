"""Randomized workflow runs checked against the status graph and counters."""

import random

import pytest

from workflow_helpers import ALICE, AUTHORITY, BOB, ManualClock
from whistle_mcp.config import Config, SecretStr
from whistle_mcp.errors import WhistleError
from whistle_mcp.service import ReportingService
from whistle_mcp.store import STATUS_GRAPH, ReportStatus

PRINCIPALS = [AUTHORITY, ALICE, BOB, "mallory"]


def _random_step(service, clock, rng):
    report_ids = list(service.store.reports)
    report_id = rng.choice(report_ids) if report_ids else 1
    caller = rng.choice(PRINCIPALS)
    action = rng.randrange(9)
    if action == 0:
        service.submit(caller, rng.randint(0, 5), rng.random() < 0.5, rng.randint(1, 100))
    elif action == 1:
        service.assign(caller, report_id, rng.choice([ALICE, BOB, "mallory"]))
    elif action == 2:
        service.add_notes(caller, report_id, "note %d" % rng.randint(0, 99))
    elif action == 3:
        service.request_decryption(caller, report_id)
    elif action == 4:
        pending = service.local_oracle.pending()
        if pending:
            service.local_oracle.fulfil(rng.choice(pending))
    elif action == 5:
        service.update_status(caller, report_id, rng.choice(list(ReportStatus)))
    elif action == 6:
        service.claim_decryption_timeout_refund(report_id, caller)
    elif action == 7:
        service.claim_investigation_timeout_refund(report_id, caller)
    else:
        clock.advance(days=rng.choice([1, 3, 8, 30, 95]))


def _check_invariants(service, before):
    store = service.store
    for report_id, report in store.reports.items():
        previous = before.get(report_id)
        if previous is not None and previous is not report.status:
            assert report.status in STATUS_GRAPH[previous], (previous, report.status)
        if previous is not None and previous.is_terminal:
            assert report.status is previous
        if report.refund_claimed:
            assert report.status is ReportStatus.REFUNDED
        if report.status is ReportStatus.REFUNDED:
            assert report.refund_claimed
        if report.status is ReportStatus.SUBMITTED:
            assert report.investigator is None
        if report.status in (ReportStatus.UNDER_INVESTIGATION, ReportStatus.DECRYPTION_PENDING):
            assert report.investigator is not None
        if report.investigator is None:
            assert store.get_investigation(report_id) is None

    counts = service.registry.status_counts()
    stats = service.get_stats()
    assert stats["total"] == len(store.reports)
    assert stats["resolved"] == counts["RESOLVED"]
    assert stats["refunded"] == counts["REFUNDED"]
    assert stats["pending"] == stats["total"] - stats["resolved"] - stats["refunded"]
    assert stats["pending"] >= 0
    assert len(service.events.events("RefundIssued")) == stats["refunded"]


@pytest.mark.parametrize("seed", range(20))
def test_random_operation_sequences(seed):
    rng = random.Random(seed)
    clock = ManualClock()
    service = ReportingService(
        Config(authority=AUTHORITY, oracle_key=SecretStr("seed-key")), clock=clock
    )
    service.add_investigator(AUTHORITY, ALICE)
    service.add_investigator(AUTHORITY, BOB)
    for _ in range(5):
        service.submit("reporter", 0, True, rng.randint(1, 100))

    for _ in range(300):
        before = {rid: r.status for rid, r in service.store.reports.items()}
        try:
            _random_step(service, clock, rng)
        except WhistleError:
            after = {rid: r.status for rid, r in service.store.reports.items()}
            assert after == before
        _check_invariants(service, before)


def test_refund_is_claimed_once_under_repeated_attempts():
    rng = random.Random(99)
    clock = ManualClock()
    service = ReportingService(Config(authority=AUTHORITY, oracle_key=SecretStr("k")), clock=clock)
    service.add_investigator(AUTHORITY, ALICE)
    report_id = service.submit("reporter", 1, True, 10)
    service.assign(AUTHORITY, report_id, ALICE)
    service.request_decryption(ALICE, report_id)
    clock.advance(days=100)

    successes = 0
    for _ in range(50):
        claim = rng.choice([
            service.claim_decryption_timeout_refund,
            service.claim_investigation_timeout_refund,
        ])
        try:
            claim(report_id, rng.choice(PRINCIPALS))
            successes += 1
        except WhistleError:
            pass
    assert successes == 1
    assert service.get_stats()["refunded"] == 1
