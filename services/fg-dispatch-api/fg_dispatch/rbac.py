from fastapi import status

from .errors import api_error

ROLE_LEVELS = {"manager": 1, "admin": 2}


def require_role(user, role: str) -> None:
    """Reject ``user`` unless its role is at least ``role``."""

    if not getattr(user, "active", True):
        raise api_error(status.HTTP_403_FORBIDDEN, "auth.inactive_user", "User is inactive")
    if ROLE_LEVELS.get(getattr(user, "role", None), 0) < ROLE_LEVELS[role]:
        raise api_error(status.HTTP_403_FORBIDDEN, "auth.forbidden", f"Not authorized as {role}")
