"""Service facade: builds the context and exposes the operation surface.

Every operation takes the caller principal explicitly; the identity layer
in front of the service (the MCP server, or a test) is responsible for
supplying it.
"""

from __future__ import annotations

import json
import logging
import secrets
from pathlib import Path
from typing import Any

from .access import AccessControl
from .audit import AuditWriter, EventLog
from .config import Config
from .context import ServiceContext
from .decryption import DecryptionProtocol
from .errors import ConfigurationError
from .investigations import InvestigationManager
from .privacy import SeverityObfuscator
from .refunds import RefundRecovery
from .registry import ReportRegistry
from .sealing import (
    HmacProofVerifier,
    LocalOracle,
    OracleTransport,
    ProofVerifier,
    Sealer,
    SimulatedSealer,
)
from .store import Clock, ReportStatus, StateStore, system_clock

logger = logging.getLogger(__name__)


class ReportingService:
    """The reporting workflow wired around one StateStore."""

    def __init__(
        self,
        config: Config,
        *,
        sealer: Sealer | None = None,
        oracle: OracleTransport | None = None,
        verifier: ProofVerifier | None = None,
        clock: Clock = system_clock,
        event_log: EventLog | None = None,
    ) -> None:
        sealer = sealer if sealer is not None else SimulatedSealer()
        if oracle is None or verifier is None:
            if not isinstance(sealer, SimulatedSealer):
                raise ConfigurationError(
                    "A custom sealer needs an explicit oracle and verifier"
                )
            key = config.oracle_key.get_secret_value().encode("utf-8") or secrets.token_bytes(32)
            if oracle is None:
                oracle = LocalOracle(sealer, key)
            if verifier is None:
                verifier = HmacProofVerifier(key)

        store = StateStore(
            config.authority,
            clock=clock,
            event_log=event_log or EventLog(AuditWriter(audit_dir=config.audit_dir)),
        )
        self.ctx = ServiceContext(
            store=store,
            sealer=sealer,
            oracle=oracle,
            verifier=verifier,
            config=config,
        )
        self.access = AccessControl(self.ctx)
        self.registry = ReportRegistry(self.ctx, self.access, SeverityObfuscator())
        self.investigations = InvestigationManager(self.ctx, self.access)
        self.decryption = DecryptionProtocol(self.ctx, self.access)
        self.refunds = RefundRecovery(self.ctx)

        if isinstance(oracle, LocalOracle):
            oracle.set_callback(self.handle_callback)

    @classmethod
    def from_config(cls, config: Config) -> "ReportingService":
        """Build a service and restore its snapshot if ``state_file`` exists."""
        if config.oracle_mode == "external":
            raise ConfigurationError(
                "oracle_mode 'external' needs an oracle transport; construct ReportingService directly"
            )
        service = cls(config)
        if config.state_file and Path(config.state_file).exists():
            service.load_snapshot(Path(config.state_file))
        return service

    @property
    def store(self) -> StateStore:
        return self.ctx.store

    @property
    def events(self) -> EventLog:
        return self.ctx.store.event_log

    @property
    def local_oracle(self) -> LocalOracle | None:
        oracle = self.ctx.oracle
        return oracle if isinstance(oracle, LocalOracle) else None

    # --- Access control ---

    def add_investigator(self, caller: str, principal: str) -> dict:
        return self.access.add_investigator(caller, principal)

    def remove_investigator(self, caller: str, principal: str) -> dict:
        return self.access.remove_investigator(caller, principal)

    def transfer_authority(self, caller: str, new_authority: str) -> dict:
        return self.access.transfer_authority(caller, new_authority)

    def is_authorized_investigator(self, principal: str) -> bool:
        return self.access.is_authorized(principal)

    # --- Reports ---

    def submit(self, caller: str, category: int, anonymous: bool, severity: int) -> int:
        return self.registry.submit(caller, category, anonymous, severity)

    def get_basic_info(self, report_id: int) -> dict[str, Any]:
        return self.registry.get_basic_info(report_id)

    def get_stats(self) -> dict[str, int]:
        return self.registry.get_stats()

    def read_sealed_field(self, caller: str, report_id: int, field: str) -> Any:
        return self.registry.read_sealed_field(caller, report_id, field)

    # --- Investigations ---

    def assign(self, caller: str, report_id: int, investigator: str) -> dict[str, Any]:
        return self.investigations.assign(caller, report_id, investigator)

    def add_notes(self, caller: str, report_id: int, text: str) -> dict[str, Any]:
        return self.investigations.add_notes(caller, report_id, text)

    def update_status(
        self, caller: str, report_id: int, new_status: str | ReportStatus
    ) -> dict[str, Any]:
        return self.investigations.update_status(caller, report_id, new_status)

    def get_investigation_info(self, caller: str, report_id: int) -> dict[str, Any]:
        return self.investigations.get_investigation_info(caller, report_id)

    def get_investigator_reports(self, caller: str, investigator: str) -> list[int]:
        return self.investigations.get_investigator_reports(caller, investigator)

    # --- Decryption ---

    def request_decryption(self, caller: str, report_id: int) -> dict[str, Any]:
        return self.decryption.request_decryption(caller, report_id)

    def handle_callback(self, request_id: str, clear_values: bytes, proof: bytes) -> dict[str, Any]:
        return self.decryption.handle_callback(request_id, clear_values, proof)

    def get_decryption_status(self, report_id: int) -> dict[str, Any]:
        return self.decryption.get_decryption_status(report_id)

    # --- Refunds ---

    def claim_decryption_timeout_refund(self, report_id: int, caller: str = "") -> dict[str, Any]:
        return self.refunds.claim_decryption_timeout_refund(report_id, caller)

    def claim_investigation_timeout_refund(self, report_id: int, caller: str = "") -> dict[str, Any]:
        return self.refunds.claim_investigation_timeout_refund(report_id, caller)

    def is_refund_available(self, report_id: int) -> bool:
        return self.refunds.is_refund_available(report_id)

    # --- Snapshots ---

    def save_snapshot(self, path: Path) -> None:
        """Persist the store, plus the simulated sealer when one is in use."""
        extra = {}
        if isinstance(self.ctx.sealer, SimulatedSealer):
            extra["sealer"] = self.ctx.sealer.to_dict()
        self.store.save(path, extra)

    def load_snapshot(self, path: Path) -> None:
        with open(path, encoding="utf-8") as f:
            doc = json.load(f)
        self.store.load_dict(doc["store"])
        sealed = doc.get("sealer")
        if sealed is not None and isinstance(self.ctx.sealer, SimulatedSealer):
            self.ctx.sealer.load_dict(sealed)
        logger.info("State snapshot loaded: %s (%d reports)", path, len(self.store.reports))
