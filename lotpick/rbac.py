from fastapi import status

from .domain import User
from .errors import api_error

ROLE_RANK = {"operator": 1, "supervisor": 2, "admin": 3}


def require_role(user: User, role: str) -> None:
    """Allow ``user`` when its role ranks at least as high as ``role``."""

    if ROLE_RANK.get(user.role, 0) < ROLE_RANK[role]:
        raise api_error(status.HTTP_403_FORBIDDEN, "auth.forbidden", f"Requires role {role}")
