"""Decoding of agency access tokens."""

from __future__ import annotations

import os
from typing import TypedDict, cast

import jwt
from fastapi import HTTPException, Request, status
from jwt import ExpiredSignatureError, InvalidTokenError

from .tenant_context import coerce_agency_id

__all__ = [
    "AgencyTokenPayload",
    "TokenConfigurationError",
    "TokenValidationError",
    "decode_agency_token",
    "get_agency_token",
    "token_settings_configured",
]

_REQUIRED_SETTINGS = ("KORE_TOKEN_SECRET", "KORE_TOKEN_AUDIENCE", "KORE_TOKEN_ISSUER")


class TokenConfigurationError(RuntimeError):
    """Raised when token configuration is invalid."""


class TokenValidationError(ValueError):
    """Raised when the provided token cannot be validated."""


class _AgencyTokenRequiredClaims(TypedDict):
    agency_id: int
    user_id: str


class AgencyTokenPayload(_AgencyTokenRequiredClaims, total=False):
    """Decoded JWT payload for agency-scoped authentication."""

    aud: str | list[str]
    exp: int
    iat: int
    iss: str
    is_superadmin: bool
    roles: list[str]
    type: str


def _get_env(name: str, *, required: bool = True, default: str | None = None) -> str:
    value = os.getenv(name, default)
    if required and (value is None or not value.strip()):
        raise TokenConfigurationError(
            f"Environment variable '{name}' must be set for token validation.",
        )
    if value is None:
        return ""
    return value.strip()


def token_settings_configured() -> bool:
    """Return whether every mandatory token setting is present."""

    return all((os.getenv(name) or "").strip() for name in _REQUIRED_SETTINGS)


def decode_agency_token(token: str) -> AgencyTokenPayload:
    """Decode and validate an agency access token.

    Args:
        token: Encoded JWT from the ``Authorization`` header.

    Returns:
        AgencyTokenPayload: Payload with a normalised integer ``agency_id``.

    Raises:
        TokenConfigurationError: If mandatory configuration is missing.
        TokenValidationError: If signature, claims or expiry are invalid.
    """

    secret_key = _get_env("KORE_TOKEN_SECRET")
    audience = _get_env("KORE_TOKEN_AUDIENCE")
    issuer = _get_env("KORE_TOKEN_ISSUER")
    algorithm = _get_env("KORE_TOKEN_ALGORITHM", required=False, default="HS256")

    try:
        payload = jwt.decode(
            token,
            secret_key,
            algorithms=[algorithm],
            audience=audience,
            issuer=issuer,
            options={"require": ["exp", "aud", "iss"]},
        )
    except ExpiredSignatureError as exc:
        raise TokenValidationError("Token has expired.") from exc
    except InvalidTokenError as exc:
        raise TokenValidationError("Token is invalid.") from exc

    if "agency_id" not in payload or "user_id" not in payload:
        raise TokenValidationError("Token payload must include 'agency_id' and 'user_id'.")
    type_claim = payload.get("type")
    if type_claim and type_claim != "access":
        raise TokenValidationError("Token must be an access token.")
    try:
        payload["agency_id"] = coerce_agency_id(payload["agency_id"])
    except ValueError as exc:
        raise TokenValidationError("Token carries an invalid 'agency_id'.") from exc
    payload["user_id"] = str(payload["user_id"])

    return cast(AgencyTokenPayload, payload)


async def get_agency_token(request: Request) -> AgencyTokenPayload:
    """Extract and validate the bearer token of ``request``.

    Raises:
        HTTPException: ``401`` when the header is missing or invalid, ``500``
            when token settings are misconfigured.
    """

    authorization = request.headers.get("Authorization")
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header.",
        )

    scheme, _, credentials = authorization.partition(" ")
    if not credentials or scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must use Bearer scheme.",
        )

    try:
        return decode_agency_token(credentials)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc
