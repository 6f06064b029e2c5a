"""Middleware wiring the agency of the caller into each request."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .auth import get_agency_token, token_settings_configured
from .tenant_context import clear_tenant_context, set_tenant_context

__all__ = ["PUBLIC_PATHS", "TenantContextMiddleware"]

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/api/health", "/api/version"})


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Authenticate the caller and run the request inside its agency context.

    The context is cleared once the response is produced, including when the
    endpoint raises. When token settings are absent the middleware is inert;
    scoped repositories then refuse to run for lack of an agency.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:  # type: ignore[override]
        if not token_settings_configured() or self._should_bypass(request):
            return await call_next(request)

        try:
            payload = await get_agency_token(request)
        except HTTPException as exc:
            headers = dict(exc.headers or {})
            if exc.status_code == status.HTTP_401_UNAUTHORIZED:
                headers.setdefault("WWW-Authenticate", "Bearer")
            return JSONResponse(
                status_code=exc.status_code,
                content={"detail": exc.detail},
                headers=headers or None,
            )

        request.state.agency_id = payload["agency_id"]
        request.state.user_id = payload["user_id"]
        request.state.token = payload

        context_token = set_tenant_context(payload["agency_id"], payload["user_id"])
        try:
            return await call_next(request)
        finally:
            clear_tenant_context(context_token)

    @staticmethod
    def _should_bypass(request: Request) -> bool:
        if request.method.upper() == "OPTIONS":
            return True
        return request.url.path in PUBLIC_PATHS
