"""Confidential reporting workflow exposed as an MCP server.

Reports are submitted with sealed fields, assigned by an authority to
authorized investigators, and selectively revealed through a proof-checked
decryption oracle. Stuck reports are recovered through timeout refunds.

Usage:
    python -m whistle_mcp
"""

__version__ = "0.1.0"

from .config import Config, load_config
from .errors import (
    AuthorizationError,
    ConfigurationError,
    ProofVerificationError,
    StateError,
    TimeoutNotReachedError,
    ValidationError,
    WhistleError,
)
from .service import ReportingService
from .store import ReportStatus

__all__ = [
    "__version__",
    "AuthorizationError",
    "Config",
    "ConfigurationError",
    "ProofVerificationError",
    "ReportStatus",
    "ReportingService",
    "StateError",
    "TimeoutNotReachedError",
    "ValidationError",
    "WhistleError",
    "load_config",
]
