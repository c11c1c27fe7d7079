"""Role model and resolution"""

from enum import Enum
from typing import Optional


class Role(str, Enum):
    USER = "user"
    THERAPIST = "therapist"
    ADMIN = "admin"


# Minimal privilege - used whenever nothing better can be established
DEFAULT_ROLE = Role.USER

DASHBOARD_PATHS = {
    Role.ADMIN: "/admin",
    Role.THERAPIST: "/therapist",
    Role.USER: "/dashboard",
}


def _as_role(value) -> Optional[Role]:
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return None


def resolve_role(claims: Optional[dict], profile_role: Optional[str]) -> Role:
    """
    Pick the session role from token claims, then the profile row.

    Only app_metadata is consulted in the claims: user_metadata is writable by
    the user and cannot grant privileges.
    """
    app_metadata = (claims or {}).get("app_metadata") or {}
    claimed = _as_role(app_metadata.get("role")) if app_metadata.get("role") else None
    if claimed is not None:
        return claimed

    if profile_role:
        from_profile = _as_role(profile_role)
        if from_profile is not None:
            return from_profile

    return DEFAULT_ROLE
