"""Helpers for running background work under an agency context.

Every job invocation establishes its own tenant context and clears it when
it finishes, fails or is cancelled, so a worker thread or event loop reused
for the next job never inherits a stale agency::

    @tenant_job
    def send_rent_reminders(agency_id: int, session: Session) -> int:
        repo = ScopedRepository(session, Invoice)
        return len(repo.list({"status": "overdue"}))

    send_rent_reminders(42, session)

Jobs spanning every agency use :func:`for_each_agency`, which enumerates the
agencies inside an audited bypass and then runs the job once per agency with
a regular, scoped context.
"""

from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from kore.core.exceptions import NoActiveTenantError
from kore.core.settings import get_tenancy_settings
from kore.core.tenant_context import tenant_scope
from kore.models import Agency

from .bypass import ScopeBypass

__all__ = ["cli_tenant_scope", "for_each_agency", "run_as_tenant", "tenant_job"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


def run_as_tenant(
    agency_id: int,
    func: Callable[..., T],
    *args: Any,
    user_id: str | None = None,
    **kwargs: Any,
) -> T:
    """Call ``func`` with ``agency_id`` as the active agency."""

    with tenant_scope(agency_id, user_id):
        return func(*args, **kwargs)


def tenant_job(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorate a job whose first positional argument is the agency id.

    Works for plain functions and coroutine functions. The agency id is still
    passed through to ``func``.
    """

    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(agency_id: int, *args: Any, **kwargs: Any) -> Any:
            with tenant_scope(agency_id):
                logger.debug("Running %s for agency %s", func.__name__, agency_id)
                return await func(agency_id, *args, **kwargs)

        return async_wrapper

    @functools.wraps(func)
    def wrapper(agency_id: int, *args: Any, **kwargs: Any) -> Any:
        with tenant_scope(agency_id):
            logger.debug("Running %s for agency %s", func.__name__, agency_id)
            return func(agency_id, *args, **kwargs)

    return wrapper


def for_each_agency(
    session: Session,
    func: Callable[[int], T],
    *,
    reason: str,
    actor: str,
) -> dict[int, T]:
    """Run ``func(agency_id)`` once per agency, each under its own context.

    Agencies are listed inside a :class:`ScopeBypass`; the bypass is closed
    before the first job runs, so the jobs themselves are scoped normally.
    Errors propagate and stop the iteration.
    """

    with ScopeBypass(reason=reason, actor=actor) as bypass:
        agency_ids = list(session.scalars(select(Agency.id).order_by(Agency.id)))
        bypass.record("list", Agency.__name__, detail={"count": len(agency_ids)})

    results: dict[int, T] = {}
    for agency_id in agency_ids:
        logger.info("Running %s for agency %s", getattr(func, "__name__", func), agency_id)
        results[agency_id] = run_as_tenant(agency_id, func, agency_id, user_id=actor)
    return results


@contextmanager
def cli_tenant_scope(user_id: str | None = "cli") -> Iterator[int]:
    """Open a tenant context for a console command from ``KORE_CLI_AGENCY_ID``."""

    agency_id = get_tenancy_settings().cli_agency_id
    if agency_id is None:
        raise NoActiveTenantError("cli")
    with tenant_scope(agency_id, user_id) as scoped_agency:
        yield scoped_agency
