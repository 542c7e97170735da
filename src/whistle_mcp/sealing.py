"""Sealed-value capability, decryption oracle transport and proof verifiers.

The workflow never sees ciphertext. It holds opaque handles issued by a
Sealer and asks an oracle to reveal a batch of them. The oracle answers
asynchronously with the clear values and a proof bound to the request id;
the workflow accepts the answer only if a ProofVerifier agrees.

SimulatedSealer keeps plaintext plus an access list and is what tests and
local runs use. Any real encryption backend that honours the Sealer
protocol can replace it.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, Sequence

from .errors import AuthorizationError, ValidationError, WhistleError

logger = logging.getLogger(__name__)

SealableValue = int | bool | str


# =============================================================================
# Sealing
# =============================================================================


class Sealer(Protocol):
    """Capability for creating and sharing sealed values."""

    def seal(self, value: SealableValue) -> str: ...

    def grant_access(self, handle: str, principal: str) -> None: ...

    def can_read(self, handle: str, principal: str) -> bool: ...

    def read(self, handle: str, principal: str) -> SealableValue: ...

    def add(self, handle: str, amount: int) -> str: ...


@dataclass
class _SealedEntry:
    value: SealableValue
    readers: set[str] = field(default_factory=set)


class SimulatedSealer:
    """Plaintext-plus-access-list stand-in for an encryption backend.

    Thread-safe. Handles are random ``sealed-<hex>`` strings that carry no
    information about the value.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _SealedEntry] = {}
        self._lock = threading.Lock()

    def _entry(self, handle: str) -> _SealedEntry:
        entry = self._entries.get(handle)
        if entry is None:
            raise ValidationError(f"Unknown sealed handle: {handle}")
        return entry

    def seal(self, value: SealableValue) -> str:
        if not isinstance(value, (int, bool, str)):
            raise ValidationError(f"Cannot seal value of type {type(value).__name__}")
        handle = f"sealed-{secrets.token_hex(12)}"
        with self._lock:
            self._entries[handle] = _SealedEntry(value=value)
        return handle

    def grant_access(self, handle: str, principal: str) -> None:
        with self._lock:
            self._entry(handle).readers.add(principal)

    def can_read(self, handle: str, principal: str) -> bool:
        with self._lock:
            entry = self._entries.get(handle)
            return entry is not None and principal in entry.readers

    def read(self, handle: str, principal: str) -> SealableValue:
        with self._lock:
            entry = self._entry(handle)
            if principal not in entry.readers:
                raise AuthorizationError(f"{principal} has no access to {handle}")
            return entry.value

    def add(self, handle: str, amount: int) -> str:
        """Homomorphic add: returns a fresh handle with no readers."""
        with self._lock:
            current = self._entry(handle).value
        if isinstance(current, bool) or not isinstance(current, int):
            raise ValidationError(f"Sealed value {handle} is not an integer")
        return self.seal(current + amount)

    def unseal(self, handle: str) -> SealableValue:
        """Oracle-side decryption. Not part of the Sealer protocol."""
        with self._lock:
            return self._entry(handle).value

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                h: {"value": e.value, "readers": sorted(e.readers)}
                for h, e in self._entries.items()
            }

    def load_dict(self, data: dict[str, Any]) -> None:
        """Replace every sealed entry with the snapshot's."""
        entries = {
            handle: _SealedEntry(value=item["value"], readers=set(item.get("readers", [])))
            for handle, item in data.items()
        }
        with self._lock:
            self._entries = entries


# =============================================================================
# Proofs
# =============================================================================


def encode_clear_values(values: Sequence[int]) -> bytes:
    """Canonical wire form of revealed values: compact JSON array."""
    return json.dumps([int(v) for v in values], separators=(",", ":")).encode("utf-8")


def _proof_context(request_id: str, clear_values: bytes) -> bytes:
    return request_id.encode("utf-8") + b"\x00" + clear_values


def sign_proof(key: bytes, request_id: str, clear_values: bytes) -> bytes:
    """HMAC-SHA256 over the canonical request context."""
    return hmac.new(key, _proof_context(request_id, clear_values), hashlib.sha256).digest()


class ProofVerifier(Protocol):
    def verify(self, request_id: str, clear_values: bytes, proof: bytes) -> bool: ...


class HmacProofVerifier:
    """Verifies oracle proofs signed with a shared HMAC key."""

    def __init__(self, key: bytes) -> None:
        if not key:
            raise ValueError("HMAC proof key cannot be empty")
        self._key = key

    def verify(self, request_id: str, clear_values: bytes, proof: bytes) -> bool:
        if not isinstance(proof, (bytes, bytearray)) or not proof:
            return False
        expected = sign_proof(self._key, request_id, clear_values)
        return hmac.compare_digest(expected, bytes(proof))

    def __repr__(self) -> str:
        return "HmacProofVerifier(key=***)"


class AcceptAllVerifier:
    """Trivial verifier for tests. Never use in a deployment."""

    def verify(self, request_id: str, clear_values: bytes, proof: bytes) -> bool:
        return True


# =============================================================================
# Oracle transport
# =============================================================================


@dataclass(frozen=True)
class DecryptionResult:
    request_id: str
    clear_values: bytes
    proof: bytes


@dataclass
class PendingDecryption:
    request_id: str
    handles: tuple[str, ...]
    dispatched_at: str
    future: Future = field(default_factory=Future)


CallbackFn = Callable[[str, bytes, bytes], Any]


class OracleTransport(Protocol):
    """Opaque transport for decryption requests. Returns the request id."""

    def dispatch(self, handles: Sequence[str]) -> str: ...


class LocalOracle:
    """In-process oracle for the simulated sealer.

    ``dispatch`` returns a request id immediately and parks a Future. A
    worker later calls ``fulfil`` (or ``process_pending``), which decrypts
    the handles, signs the result, resolves the Future and forwards the
    answer to the registered callback.
    """

    def __init__(self, sealer: SimulatedSealer, key: bytes) -> None:
        if not key:
            raise ValueError("Oracle signing key cannot be empty")
        self._sealer = sealer
        self._key = key
        self._pending: dict[str, PendingDecryption] = {}
        self._lock = threading.Lock()
        self._callback: CallbackFn | None = None

    def set_callback(self, callback: CallbackFn | None) -> None:
        self._callback = callback

    def dispatch(self, handles: Sequence[str]) -> str:
        if not handles:
            raise ValidationError("Decryption request needs at least one handle")
        request_id = f"dr-{uuid.uuid4().hex}"
        pending = PendingDecryption(
            request_id=request_id,
            handles=tuple(handles),
            dispatched_at=datetime.now(timezone.utc).isoformat(),
        )
        with self._lock:
            self._pending[request_id] = pending
        logger.info("Decryption request %s dispatched (%d handles)", request_id, len(handles))
        return request_id

    def future(self, request_id: str) -> Future:
        with self._lock:
            pending = self._pending.get(request_id)
        if pending is None:
            raise ValidationError(f"No pending decryption request: {request_id}")
        return pending.future

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    def _take(self, request_id: str) -> PendingDecryption:
        with self._lock:
            pending = self._pending.pop(request_id, None)
        if pending is None:
            raise ValidationError(f"No pending decryption request: {request_id}")
        return pending

    def fulfil(self, request_id: str) -> DecryptionResult:
        """Decrypt, sign, resolve the Future and deliver the callback.

        Errors raised by the callback propagate to the caller; the Future
        is already resolved by then.
        """
        pending = self._take(request_id)
        values = [self._sealer.unseal(h) for h in pending.handles]
        clear_values = encode_clear_values(values)
        result = DecryptionResult(
            request_id=request_id,
            clear_values=clear_values,
            proof=sign_proof(self._key, request_id, clear_values),
        )
        pending.future.set_result(result)
        if self._callback is not None:
            self._callback(result.request_id, result.clear_values, result.proof)
        return result

    def fail(self, request_id: str, exc: BaseException) -> None:
        """Give up on a request. No callback is delivered."""
        pending = self._take(request_id)
        pending.future.set_exception(exc)
        logger.warning("Decryption request %s failed: %s", request_id, exc)

    def process_pending(self) -> list[dict[str, Any]]:
        """Fulfil every outstanding request, reporting per-request outcome."""
        outcomes = []
        for request_id in self.pending():
            try:
                self.fulfil(request_id)
                outcomes.append({"request_id": request_id, "status": "delivered"})
            except WhistleError as e:
                logger.warning("Callback for %s rejected: %s", request_id, e)
                outcomes.append({
                    "request_id": request_id,
                    "status": "rejected",
                    "error": e.safe_message,
                })
        return outcomes
