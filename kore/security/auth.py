"""JWT-backed authentication dependencies for FastAPI routers."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session, sessionmaker

from kore.core.auth import AgencyTokenPayload, get_agency_token
from kore.models import User
from kore.models.session import get_sessionmaker


_ROLE_LEVELS = {"viewer": 0, "operator": 1, "admin": 2}
_SESSION_FACTORY: sessionmaker[Session] | None = None


def _get_session_factory(request: Request) -> sessionmaker[Session]:
    factory = getattr(request.app.state, "session_factory", None)
    if factory is not None:
        return factory
    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = get_sessionmaker()
    return _SESSION_FACTORY


def get_db_session(request: Request) -> Iterator[Session]:
    """Yield a SQLAlchemy session for request-scoped dependencies."""

    session = _get_session_factory(request)()
    try:
        yield session
    finally:
        session.close()


async def get_current_token_payload(request: Request) -> AgencyTokenPayload:
    """Return the token validated by the middleware, or decode it now."""

    payload = getattr(request.state, "token", None)
    if payload is None:
        payload = await get_agency_token(request)
    return payload


def get_current_user(
    payload: AgencyTokenPayload = Depends(get_current_token_payload),
    session: Session = Depends(get_db_session),
) -> User:
    """Resolve the authenticated :class:`~kore.models.User` from the token payload."""

    try:
        user_id = int(payload["user_id"])
    except (KeyError, ValueError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identifier in token.",
        ) from exc

    user = session.get(User, user_id)
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User is inactive or no longer exists.",
        )

    if user.agency_id != payload["agency_id"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Token agency mismatch.",
        )

    return user


def _highest_role(roles: list[str]) -> str | None:
    ranked = sorted({role for role in roles if role in _ROLE_LEVELS}, key=_ROLE_LEVELS.get)
    return ranked[-1] if ranked else None


def require_role(min_role: str) -> Callable[..., str]:
    """Create a dependency ensuring the caller has at least ``min_role`` privileges."""

    if min_role not in _ROLE_LEVELS:
        raise ValueError(f"Unknown role: {min_role}")

    def dependency(
        user: User = Depends(get_current_user),
        payload: AgencyTokenPayload = Depends(get_current_token_payload),
    ) -> str:
        roles = payload.get("roles") or []
        if isinstance(roles, str):
            roles = [roles]
        highest = _highest_role(list(roles) + [user.role])
        if highest is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No roles assigned to user.",
            )
        if _ROLE_LEVELS[highest] < _ROLE_LEVELS[min_role]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role.",
            )
        return highest

    return dependency


def require_superadmin(user: User = Depends(get_current_user)) -> User:
    """Only let platform superadmins through."""

    if not user.is_superadmin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Superadmin privileges required.",
        )
    return user


__all__ = [
    "get_current_token_payload",
    "get_current_user",
    "get_db_session",
    "require_role",
    "require_superadmin",
]
