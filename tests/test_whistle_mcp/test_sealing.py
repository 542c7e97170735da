"""Tests for the simulated sealer, proofs and the local oracle."""

import pytest

from whistle_mcp.errors import AuthorizationError, ValidationError
from whistle_mcp.sealing import (
    AcceptAllVerifier,
    HmacProofVerifier,
    LocalOracle,
    SimulatedSealer,
    encode_clear_values,
    sign_proof,
)


class TestSimulatedSealer:
    def test_handles_are_opaque(self):
        sealer = SimulatedSealer()
        first = sealer.seal(42)
        second = sealer.seal(42)
        assert first != second
        assert first.startswith("sealed-")

    def test_read_requires_grant(self):
        sealer = SimulatedSealer()
        handle = sealer.seal("secret")
        assert not sealer.can_read(handle, "alice")
        with pytest.raises(AuthorizationError):
            sealer.read(handle, "alice")
        sealer.grant_access(handle, "alice")
        assert sealer.can_read(handle, "alice")
        assert sealer.read(handle, "alice") == "secret"

    def test_rejects_unsealable(self):
        with pytest.raises(ValidationError):
            SimulatedSealer().seal(1.5)

    def test_unknown_handle(self):
        sealer = SimulatedSealer()
        with pytest.raises(ValidationError):
            sealer.grant_access("sealed-missing", "alice")
        assert not sealer.can_read("sealed-missing", "alice")

    def test_add_returns_fresh_handle(self):
        sealer = SimulatedSealer()
        handle = sealer.seal(5)
        sealer.grant_access(handle, "alice")
        total = sealer.add(handle, 3)
        assert total != handle
        assert not sealer.can_read(total, "alice")
        assert sealer.unseal(total) == 8
        assert sealer.unseal(handle) == 5

    def test_add_rejects_non_int(self):
        sealer = SimulatedSealer()
        with pytest.raises(ValidationError):
            sealer.add(sealer.seal(True), 1)
        with pytest.raises(ValidationError):
            sealer.add(sealer.seal("x"), 1)

    def test_dict_round_trip(self):
        sealer = SimulatedSealer()
        handle = sealer.seal(7)
        sealer.grant_access(handle, "alice")
        copy = SimulatedSealer()
        copy.load_dict(sealer.to_dict())
        assert copy.read(handle, "alice") == 7


class TestProofs:
    def test_encoding_is_compact(self):
        assert encode_clear_values([1, 85, 1700000000]) == b"[1,85,1700000000]"

    def test_hmac_verifier(self):
        verifier = HmacProofVerifier(b"key")
        values = encode_clear_values([1, 2, 3])
        proof = sign_proof(b"key", "dr-1", values)
        assert verifier.verify("dr-1", values, proof)
        assert not verifier.verify("dr-2", values, proof)
        assert not verifier.verify("dr-1", encode_clear_values([1, 2, 4]), proof)
        assert not verifier.verify("dr-1", values, b"")
        assert not verifier.verify("dr-1", values, None)

    def test_hmac_verifier_needs_key(self):
        with pytest.raises(ValueError):
            HmacProofVerifier(b"")

    def test_repr_hides_key(self):
        assert "topsecret" not in repr(HmacProofVerifier(b"topsecret"))

    def test_accept_all(self):
        assert AcceptAllVerifier().verify("dr-1", b"[]", b"")


class TestLocalOracle:
    def _oracle(self):
        sealer = SimulatedSealer()
        handles = [sealer.seal(v) for v in (2, 91, 1700000000)]
        return LocalOracle(sealer, b"key"), handles

    def test_dispatch_and_fulfil(self):
        oracle, handles = self._oracle()
        delivered = []
        oracle.set_callback(lambda rid, values, proof: delivered.append((rid, values, proof)))
        request_id = oracle.dispatch(handles)
        assert request_id.startswith("dr-")
        result = oracle.fulfil(request_id)
        assert result.clear_values == b"[2,91,1700000000]"
        assert HmacProofVerifier(b"key").verify(request_id, result.clear_values, result.proof)
        assert delivered == [(request_id, result.clear_values, result.proof)]
        assert oracle.pending() == []

    def test_request_ids_unique(self):
        oracle, handles = self._oracle()
        ids = {oracle.dispatch(handles) for _ in range(100)}
        assert len(ids) == 100

    def test_empty_dispatch(self):
        oracle, _ = self._oracle()
        with pytest.raises(ValidationError):
            oracle.dispatch([])

    def test_fulfil_unknown(self):
        oracle, _ = self._oracle()
        with pytest.raises(ValidationError):
            oracle.fulfil("dr-missing")

    def test_fail_sets_exception(self):
        oracle, handles = self._oracle()
        delivered = []
        oracle.set_callback(lambda *args: delivered.append(args))
        request_id = oracle.dispatch(handles)
        future = oracle.future(request_id)
        oracle.fail(request_id, TimeoutError("gateway down"))
        with pytest.raises(TimeoutError):
            future.result(timeout=1)
        assert delivered == []
        assert oracle.pending() == []

    def test_needs_key(self):
        with pytest.raises(ValueError):
            LocalOracle(SimulatedSealer(), b"")
