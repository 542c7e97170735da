"""Exception hierarchy for whistle-mcp.

Every failure aborts the triggering operation; the store rolls back and no
partial write is observable. Messages are safe to return to callers; they
never carry sealed values.
"""

from __future__ import annotations


class WhistleError(Exception):
    """Base exception for the reporting workflow.

    All custom exceptions inherit from this class, allowing the tool layer
    to catch every workflow error with a single except clause.
    """

    def __init__(self, message: str, *, safe_message: str | None = None) -> None:
        """Initialize exception.

        Args:
            message: Full error message (for logging)
            safe_message: Caller-safe message (no internal details)
        """
        super().__init__(message)
        self._safe_message = safe_message or message

    @property
    def safe_message(self) -> str:
        """Return caller-safe error message."""
        return self._safe_message


class ConfigurationError(WhistleError):
    """Invalid configuration value or unreadable config file."""

    pass


class AuthorizationError(WhistleError):
    """Caller does not hold the role the operation requires.

    Raised when:
    - A non-authority calls a roster or assignment operation
    - Someone other than the authority or the assigned investigator
      touches a case
    - A principal reads a sealed field it was never granted
    """

    pass


class ValidationError(WhistleError):
    """Input validation failure.

    Raised when:
    - Category or severity is out of range
    - A report or decryption request id is unknown
    - A principal is the null identity
    """

    pass


class StateError(WhistleError):
    """Operation is not valid for the report's current status.

    Raised when:
    - A report is assigned twice
    - A decryption is already in flight
    - A callback was already applied
    - A refund was already claimed
    """

    pass


class TimeoutNotReachedError(WhistleError):
    """A refund was claimed before its deadline elapsed."""

    def __init__(self, message: str, *, deadline: str = "") -> None:
        super().__init__(message)
        self.deadline = deadline


class ProofVerificationError(WhistleError):
    """Oracle callback proof did not verify. No state was changed."""

    def __init__(self, request_id: str) -> None:
        super().__init__(
            f"Decryption proof rejected for request {request_id}",
            safe_message="Decryption proof rejected",
        )
        self.request_id = request_id
