"""Capability checks gating every mutating billing and queue operation."""

from fastapi import Depends, HTTPException, status

from backend.app.core.security import get_current_user
from backend.app.models.user import User

ROLE_CAPABILITIES = {
    "admin": {"*"},
    "billing": {
        "invoices.view",
        "invoices.create",
        "invoices.approve",
        "invoices.payments",
        "invoices.correct",
        "timesheets.view",
        "timesheets.approve",
        "queue.view",
        "queue.send",
        "queue.delete",
        "insurance.manage",
    },
    "staff": {
        "timesheets.view",
        "timesheets.create",
        "timesheets.edit",
        "invoices.view",
        "queue.view",
    },
}


def can_perform(user: User, action: str) -> bool:
    if user is None or not user.is_active:
        return False
    if user.is_admin:
        return True
    allowed = ROLE_CAPABILITIES.get(user.role or "staff", set())
    return "*" in allowed or action in allowed


def require_capability(action: str):
    """Build a dependency that returns the current user when they hold ``action``."""

    def _dependency(current_user: User = Depends(get_current_user)) -> User:
        if not can_perform(current_user, action):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Missing permission: {action}")
        return current_user

    return _dependency
