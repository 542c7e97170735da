"""Pytest fixtures for the reporting workflow tests."""

from __future__ import annotations

import pytest

from whistle_mcp.config import Config, SecretStr
from whistle_mcp.service import ReportingService
from workflow_helpers import ALICE, AUTHORITY, BOB, ORACLE_KEY, ManualClock


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep WHISTLE_* variables from the developer's shell out of tests."""
    for var in (
        "WHISTLE_AUTHORITY",
        "WHISTLE_PRINCIPAL",
        "WHISTLE_CONFIG",
        "WHISTLE_AUDIT_DIR",
        "WHISTLE_STATE_FILE",
        "WHISTLE_ORACLE_MODE",
        "WHISTLE_ORACLE_KEY",
        "WHISTLE_INVESTIGATION_WINDOW_DAYS",
        "WHISTLE_DECRYPTION_WINDOW_DAYS",
        "WHISTLE_AUTO_RESOLVE_THRESHOLD",
        "WHISTLE_NOTE_COST_UNIT",
        "WHISTLE_LOG_FORMAT",
        "WHISTLE_LOG_FILE",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def config() -> Config:
    return Config(authority=AUTHORITY, oracle_key=SecretStr(ORACLE_KEY))


@pytest.fixture
def service(config, clock) -> ReportingService:
    """Service with the local oracle, keyed so tests can sign answers."""
    return ReportingService(config, clock=clock)


@pytest.fixture
def staffed(service) -> ReportingService:
    """Service with alice and bob on the roster."""
    service.add_investigator(AUTHORITY, ALICE)
    service.add_investigator(AUTHORITY, BOB)
    return service
