"""Acting-owner context.

Every store call is scoped to an owner id; the session supplies it.
"""
from typing import Optional

from notegraph.config import config
from notegraph.exceptions import ErrorCode, ValidationError


class SessionContext:
    """Holds the owner the engine is acting for."""

    def __init__(self, owner_id: Optional[str] = None):
        self._owner_id = owner_id if owner_id is not None else config.default_owner_id

    def current_owner_id(self) -> str:
        if not self._owner_id:
            raise ValidationError(
                "No owner is signed in", field="owner_id", code=ErrorCode.OWNER_REQUIRED
            )
        return self._owner_id

    def resolve_owner(self, owner_id: Optional[str] = None) -> str:
        """An explicit owner must match the signed-in one."""
        current = self.current_owner_id()
        if owner_id is not None and owner_id != current:
            raise ValidationError(
                "Requested owner does not match the signed-in owner",
                field="owner_id",
                value=owner_id,
                code=ErrorCode.OWNER_MISMATCH,
            )
        return current
