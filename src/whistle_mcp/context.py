"""Explicit context handed to every workflow component."""

from __future__ import annotations

from dataclasses import dataclass

from .config import Config
from .sealing import OracleTransport, ProofVerifier, Sealer
from .store import StateStore


@dataclass
class ServiceContext:
    store: StateStore
    sealer: Sealer
    oracle: OracleTransport
    verifier: ProofVerifier
    config: Config
