"""MCP server exposing the confidential reporting workflow.

One tool per workflow operation. The caller principal comes from the
identity layer (WHISTLE_PRINCIPAL, else the OS user) on every call; tools
never accept a caller argument. Workflow errors are returned as
``{"error": ..., "type": ...}`` rather than raised.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP

from .audit import resolve_principal
from .config import Config, load_config
from .errors import ValidationError, WhistleError
from .service import ReportingService

logger = logging.getLogger(__name__)

_MAX_NOTES = 10_000
_MAX_SHORT = 200

_INSTRUCTIONS = """\
You are operating a confidential reporting workflow. Reports carry sealed \
fields that only granted principals can read. Never ask a reporter for \
identifying details beyond what submit_report takes. Status changes follow \
a fixed graph: SUBMITTED, UNDER_INVESTIGATION, DECRYPTION_PENDING, then \
RESOLVED, DISMISSED or REFUNDED. Refunds are only possible after a deadline \
has passed; check is_refund_available before claiming.\
"""


def _validate_str_length(value: str | None, field: str, max_len: int) -> None:
    """Reject strings exceeding max_len or containing null bytes."""
    if value is not None and isinstance(value, str):
        if len(value) > max_len:
            raise ValidationError(f"{field} exceeds maximum length of {max_len} characters")
        if "\x00" in value:
            raise ValidationError(f"{field} contains invalid null byte")


def _decode_hex(value: str, field: str) -> bytes:
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a hex string") from None


def _error(e: WhistleError) -> dict[str, Any]:
    return {"error": e.safe_message, "type": type(e).__name__}


def _resolve_config() -> Config:
    """WHISTLE_CONFIG (YAML path) > WHISTLE_* environment variables."""
    path = os.environ.get("WHISTLE_CONFIG")
    if path:
        return load_config(path)
    return Config.from_env()


def create_server(service: ReportingService | None = None) -> FastMCP:
    """Create and configure the reporting MCP server."""
    if service is None:
        service = ReportingService.from_config(_resolve_config())
    server = FastMCP("whistle-mcp", instructions=_INSTRUCTIONS)
    state_file = service.ctx.config.state_file

    # Expose for testing
    server._service = service

    def _persist() -> None:
        if state_file:
            service.save_snapshot(Path(state_file))

    def _mutate(name: str, fn: Callable[[], Any]) -> dict[str, Any]:
        try:
            result = fn()
        except WhistleError as e:
            logger.warning("%s rejected: %s", name, e)
            return _error(e)
        _persist()
        return result

    def _query(name: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except WhistleError as e:
            logger.debug("%s rejected: %s", name, e)
            return _error(e)

    # --- Reports ---

    @server.tool()
    def submit_report(category: int, anonymous: bool, severity: int) -> dict:
        """Submit a report. category: 0 CORRUPTION, 1 FRAUD, 2 ENVIRONMENTAL,
        3 SAFETY, 4 DISCRIMINATION, 5 OTHER. severity: 1-100.

        All fields are sealed; only an obfuscated severity is logged."""
        caller = resolve_principal()
        return _mutate(
            "submit_report",
            lambda: {"report_id": service.submit(caller, category, anonymous, severity)},
        )

    @server.tool()
    def get_report_info(report_id: int) -> dict:
        """Status, submission time, investigator and decryption outcome of a report."""
        return _query("get_report_info", lambda: service.get_basic_info(report_id))

    @server.tool()
    def get_stats() -> dict:
        """Totals: reports, resolved, pending, refunded."""
        return service.get_stats()

    # --- Roster ---

    @server.tool()
    def add_investigator(investigator: str) -> dict:
        """Authorize an investigator. Authority only."""
        caller = resolve_principal()

        def _run():
            _validate_str_length(investigator, "investigator", _MAX_SHORT)
            return service.add_investigator(caller, investigator)

        return _mutate("add_investigator", _run)

    @server.tool()
    def remove_investigator(investigator: str) -> dict:
        """Revoke an investigator's authorization. Authority only."""
        caller = resolve_principal()

        def _run():
            _validate_str_length(investigator, "investigator", _MAX_SHORT)
            return service.remove_investigator(caller, investigator)

        return _mutate("remove_investigator", _run)

    @server.tool()
    def transfer_authority(new_authority: str) -> dict:
        """Hand the authority role to another principal. Authority only."""
        caller = resolve_principal()

        def _run():
            _validate_str_length(new_authority, "new_authority", _MAX_SHORT)
            return service.transfer_authority(caller, new_authority)

        return _mutate("transfer_authority", _run)

    @server.tool()
    def is_authorized_investigator(investigator: str) -> dict:
        """Whether a principal is on the investigator roster."""
        return {
            "investigator": investigator,
            "authorized": service.is_authorized_investigator(investigator),
        }

    # --- Investigations ---

    @server.tool()
    def assign_report(report_id: int, investigator: str) -> dict:
        """Assign a SUBMITTED report to an authorized investigator. Authority only."""
        caller = resolve_principal()

        def _run():
            _validate_str_length(investigator, "investigator", _MAX_SHORT)
            return service.assign(caller, report_id, investigator)

        return _mutate("assign_report", _run)

    @server.tool()
    def add_notes(report_id: int, text: str) -> dict:
        """Replace the investigation notes. Authority or assigned investigator."""
        caller = resolve_principal()

        def _run():
            _validate_str_length(text, "text", _MAX_NOTES)
            return service.add_notes(caller, report_id, text)

        return _mutate("add_notes", _run)

    @server.tool()
    def update_status(report_id: int, status: str) -> dict:
        """Close a DECRYPTION_PENDING report as RESOLVED or DISMISSED.
        Authority or assigned investigator."""
        caller = resolve_principal()
        return _mutate("update_status", lambda: service.update_status(caller, report_id, status))

    @server.tool()
    def get_investigation_info(report_id: int) -> dict:
        """Investigation record. Notes are shown only to the authority and
        the assigned investigator."""
        caller = resolve_principal()
        return _query(
            "get_investigation_info", lambda: service.get_investigation_info(caller, report_id)
        )

    @server.tool()
    def get_investigator_reports(investigator: str = "") -> dict:
        """Report ids assigned to an investigator (defaults to the caller).
        Authority or the investigator themselves."""
        caller = resolve_principal()
        target = investigator or caller
        return _query(
            "get_investigator_reports",
            lambda: {
                "investigator": target,
                "report_ids": service.get_investigator_reports(caller, target),
            },
        )

    # --- Decryption ---

    @server.tool()
    def request_decryption(report_id: int) -> dict:
        """Ask the oracle to reveal category, severity and timestamp of a
        report under investigation. Authority or assigned investigator."""
        caller = resolve_principal()
        return _mutate(
            "request_decryption", lambda: service.request_decryption(caller, report_id)
        )

    @server.tool()
    def submit_decryption_callback(request_id: str, clear_values_hex: str, proof_hex: str) -> dict:
        """Deliver an oracle answer. Open to anyone; the proof must verify."""

        def _run():
            _validate_str_length(request_id, "request_id", _MAX_SHORT)
            clear_values = _decode_hex(clear_values_hex, "clear_values_hex")
            proof = _decode_hex(proof_hex, "proof_hex")
            return service.handle_callback(request_id, clear_values, proof)

        return _mutate("submit_decryption_callback", _run)

    @server.tool()
    def get_decryption_status(report_id: int) -> dict:
        """Decryption request id, deadline and outcome for a report."""
        return _query("get_decryption_status", lambda: service.get_decryption_status(report_id))

    # --- Refunds ---

    @server.tool()
    def claim_decryption_timeout_refund(report_id: int) -> dict:
        """Terminate a report whose decryption deadline passed without an answer."""
        caller = resolve_principal()
        return _mutate(
            "claim_decryption_timeout_refund",
            lambda: service.claim_decryption_timeout_refund(report_id, caller),
        )

    @server.tool()
    def claim_investigation_timeout_refund(report_id: int) -> dict:
        """Terminate a report whose investigation deadline passed."""
        caller = resolve_principal()
        return _mutate(
            "claim_investigation_timeout_refund",
            lambda: service.claim_investigation_timeout_refund(report_id, caller),
        )

    @server.tool()
    def is_refund_available(report_id: int) -> dict:
        """Whether either timeout refund can be claimed now."""
        return _query(
            "is_refund_available",
            lambda: {"report_id": report_id, "available": service.is_refund_available(report_id)},
        )

    # --- Local oracle ---

    oracle = service.local_oracle
    if oracle is not None:

        @server.tool()
        def process_oracle_queue() -> dict:
            """Fulfil every pending decryption request with the local oracle."""
            outcomes = oracle.process_pending()
            if outcomes:
                _persist()
            return {"processed": len(outcomes), "outcomes": outcomes}

    return server
