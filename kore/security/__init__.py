"""Security utilities exposed for convenience."""

from .auth import (
    get_current_token_payload,
    get_current_user,
    get_db_session,
    require_role,
    require_superadmin,
)

__all__ = [
    "get_current_token_payload",
    "get_current_user",
    "get_db_session",
    "require_role",
    "require_superadmin",
]
