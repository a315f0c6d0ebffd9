"""Caller identity (authentication itself lives outside this service)."""
from typing import Optional
from fastapi import Header
from shuttlebook.backend.core.errors import ValidationError
from shuttlebook.backend.db.models import CancelledBy

# Roles the upstream gateway may assert; AUTO_CANCEL and SYSTEM are internal
CALLER_ROLES = (CancelledBy.GUEST, CancelledBy.DRIVER, CancelledBy.FRONTDESK, CancelledBy.ADMIN)


def get_current_user(x_user_id: Optional[str] = Header(None)) -> str:
    """
    Get the identity of the caller.

    The guest, frontdesk and driver apps authenticate upstream and forward
    the user id in the ``X-User-Id`` header. Falls back to ``system`` for
    internal callers such as scheduled sweeps.
    """
    return x_user_id or "system"


def get_current_role(x_user_role: Optional[str] = Header(None)) -> CancelledBy:
    """Role of the caller, forwarded by the gateway in ``X-User-Role``; guests by default."""
    if not x_user_role:
        return CancelledBy.GUEST
    for role in CALLER_ROLES:
        if role.value == x_user_role.upper():
            return role
    raise ValidationError(f"Unknown caller role: {x_user_role}")
