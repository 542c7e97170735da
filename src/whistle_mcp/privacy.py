"""Severity obfuscation for the public submission log.

The multiplier mixes an internal counter, the submission count, the caller
and wall-clock entropy. All of those are guessable, so the obfuscated value
is a heuristic that keeps the raw severity out of plain logs. It is not a
confidentiality guarantee.
"""

from __future__ import annotations

import hashlib
import itertools
import threading
import time

MULTIPLIER_MIN = 1
MULTIPLIER_MAX = 1000
OBFUSCATION_MODULUS = 1000


class SeverityObfuscator:
    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def generate_multiplier(self, submission_count: int, caller: str) -> int:
        """Return a pseudo-random multiplier in [1, 1000]."""
        with self._lock:
            nonce = next(self._counter)
        material = f"{nonce}:{submission_count}:{caller}:{time.time_ns()}".encode("utf-8")
        digest = int.from_bytes(hashlib.sha256(material).digest(), "big")
        return digest % MULTIPLIER_MAX + MULTIPLIER_MIN

    @staticmethod
    def obfuscate(raw_severity: int, multiplier: int) -> int:
        return (raw_severity * multiplier) % OBFUSCATION_MODULUS
