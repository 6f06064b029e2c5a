"""FastAPI application wiring for KORE ERP.

This module bootstraps the HTTP API:

- Configures logging and the tenant context middleware, which resolves the
  agency from the bearer token and scopes every request to it.
- Registers the property management and platform admin routers.
- Maps agency isolation failures to a generic HTTP 500; the details go to
  the application log only.
"""

from __future__ import annotations

import logging

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.exceptions import TenancyError
from .core.tenant_middleware import TenantContextMiddleware
from .routers import admin, buildings

load_dotenv()

logger = logging.getLogger(__name__)


async def _tenancy_error_handler(request: Request, exc: TenancyError) -> JSONResponse:
    logger.error(
        "Agency isolation failure on %s %s: %s",
        request.method,
        request.url.path,
        exc,
        exc_info=exc,
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error."})


def create_app(session_factory: sessionmaker[Session] | None = None) -> FastAPI:
    """Build the API application.

    Args:
        session_factory: Factory used by request sessions. When omitted one is
            created lazily from ``DATABASE_URL`` on the first request.
    """

    app = FastAPI(title="KORE ERP", version=__version__)
    init_logging(app)
    app.state.session_factory = session_factory
    app.add_middleware(TenantContextMiddleware)
    app.add_exception_handler(TenancyError, _tenancy_error_handler)
    app.include_router(buildings.router)
    app.include_router(admin.router)

    @app.get("/api/health")
    async def health():
        """Liveness/readiness check with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    return app


app = create_app()
