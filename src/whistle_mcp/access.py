"""Access control: the authority principal and the investigator roster."""

from __future__ import annotations

import logging

from .context import ServiceContext
from .errors import AuthorizationError, ValidationError
from .store import Report

logger = logging.getLogger(__name__)


def is_null_principal(principal: str | None) -> bool:
    return principal is None or not isinstance(principal, str) or not principal.strip()


class AccessControl:
    """Tracks the authority and the investigator roster; gates privileged calls."""

    def __init__(self, ctx: ServiceContext) -> None:
        self._ctx = ctx

    @property
    def authority(self) -> str:
        return self._ctx.store.authority

    def is_authority(self, caller: str | None) -> bool:
        return not is_null_principal(caller) and caller == self._ctx.store.authority

    def require_authority(self, caller: str | None) -> None:
        if not self.is_authority(caller):
            raise AuthorizationError("Only authority can perform this action")

    def require_case_access(self, caller: str | None, report: Report) -> None:
        """Authority or the report's assigned investigator."""
        if self.is_authority(caller):
            return
        if report.investigator is not None and caller == report.investigator:
            return
        raise AuthorizationError(f"Not authorized to update report {report.id}")

    def is_authorized(self, principal: str | None) -> bool:
        if is_null_principal(principal):
            return False
        return self._ctx.store.is_investigator(principal)

    # --- Roster ---

    def add_investigator(self, caller: str, principal: str) -> dict:
        store = self._ctx.store
        with store.transaction():
            self.require_authority(caller)
            if is_null_principal(principal):
                raise ValidationError("Invalid investigator address")
            if store.is_investigator(principal):
                raise ValidationError(f"Investigator already authorized: {principal}")
            store.add_investigator(principal)
            store.emit("InvestigatorAdded", investigator=principal, caller=caller)
        logger.info("Investigator added: %s", principal)
        return {"investigator": principal, "authorized": True}

    def remove_investigator(self, caller: str, principal: str) -> dict:
        store = self._ctx.store
        with store.transaction():
            self.require_authority(caller)
            if not self.is_authorized(principal):
                raise ValidationError(f"Investigator not authorized: {principal}")
            store.remove_investigator(principal)
            store.emit("InvestigatorRemoved", investigator=principal, caller=caller)
        logger.info("Investigator removed: %s", principal)
        return {"investigator": principal, "authorized": False}

    def transfer_authority(self, caller: str, new_authority: str) -> dict:
        store = self._ctx.store
        with store.transaction():
            self.require_authority(caller)
            if is_null_principal(new_authority):
                raise ValidationError("Invalid authority address")
            previous = store.authority
            store.authority = new_authority
            store.emit(
                "AuthorityTransferred",
                previous=previous,
                authority=new_authority,
                caller=caller,
            )
        logger.info("Authority transferred: %s -> %s", previous, new_authority)
        return {"previous": previous, "authority": new_authority}
