"""End-to-end workflow scenarios."""

import pytest

from workflow_helpers import ALICE, AUTHORITY, signed_answer
from whistle_mcp.errors import StateError


class TestScenarios:
    def test_high_severity_report_resolves_on_reveal(self, staffed, clock):
        report_id = staffed.submit("whistleblower", 1, True, 85)
        staffed.assign(AUTHORITY, report_id, ALICE)
        clock.advance(days=2)
        staffed.add_notes(ALICE, report_id, "Documents collected")
        request_id = staffed.request_decryption(ALICE, report_id)["request_id"]
        clock.advance(hours=4)
        staffed.local_oracle.fulfil(request_id)

        info = staffed.get_basic_info(report_id)
        assert info["status"] == "RESOLVED"
        assert info["revealed_severity"] == 85
        assert staffed.get_stats() == {"total": 1, "resolved": 1, "pending": 0, "refunded": 0}
        names = [e.name for e in staffed.events.events(report_id=report_id)]
        assert names == [
            "ReportSubmitted",
            "ReportAssigned",
            "NotesUpdated",
            "DecryptionRequested",
            "DecryptionCompleted",
            "ReportStatusChanged",
        ]

    def test_silent_oracle_ends_in_refund(self, staffed, clock):
        report_id = staffed.submit("whistleblower", 2, False, 60)
        staffed.assign(AUTHORITY, report_id, ALICE)
        request_id = staffed.request_decryption(ALICE, report_id)["request_id"]
        clock.advance(days=7, minutes=1)
        assert staffed.is_refund_available(report_id)
        staffed.claim_decryption_timeout_refund(report_id, "bystander")

        clear_values, proof = signed_answer(request_id, [2, 60, 1700000000])
        with pytest.raises(StateError):
            staffed.handle_callback(request_id, clear_values, proof)
        assert staffed.get_basic_info(report_id)["status"] == "REFUNDED"
        assert staffed.get_stats() == {"total": 1, "resolved": 0, "pending": 0, "refunded": 1}

    def test_stalled_investigation_ends_in_refund(self, staffed, clock):
        report_id = staffed.submit("whistleblower", 0, True, 40)
        staffed.assign(AUTHORITY, report_id, ALICE)
        clock.advance(days=45)
        staffed.add_notes(ALICE, report_id, "Waiting on records")
        clock.advance(days=46)
        with pytest.raises(StateError):
            staffed.request_decryption(ALICE, report_id)
        result = staffed.claim_investigation_timeout_refund(report_id)
        assert result["previous"] == "UNDER_INVESTIGATION"
        info = staffed.get_investigation_info(AUTHORITY, report_id)
        assert info["active"] is False
        assert info["notes"] == "Waiting on records"
