"""Runtime helpers for storing the agency an operation is acting for.

The current agency lives in a :class:`contextvars.ContextVar`, so every HTTP
request, asyncio task and worker thread observes its own value. The
``TenantContextMiddleware`` populates the context by calling
``set_tenant_context`` and passes the returned token back to
``clear_tenant_context`` once the response has been produced. Background jobs
and CLI commands use :func:`tenant_scope` which performs both steps and
guarantees the release on every exit path.

Setting the context twice without clearing it raises
:class:`~kore.core.exceptions.ContextAlreadySetError`.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import TypedDict

from kore.core.exceptions import ContextAlreadySetError

__all__ = [
    "TenantContext",
    "TenantRuntimeContext",
    "clear_tenant_context",
    "coerce_agency_id",
    "get_current_tenant_id",
    "get_current_user_id",
    "set_tenant_context",
    "tenant_scope",
]


class TenantRuntimeContext(TypedDict):
    """Values stored in the tenant context during an operation."""

    agency_id: int
    user_id: str | None


_tenant_context: ContextVar[TenantRuntimeContext | None] = ContextVar(
    "kore_tenant_context", default=None
)


def coerce_agency_id(value: object) -> int:
    """Normalise ``value`` into an integer agency identifier.

    Raises:
        ValueError: If ``value`` is empty, boolean or not an integer.
    """

    if value is None or isinstance(value, bool):
        raise ValueError(f"Invalid agency identifier: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if not text:
        raise ValueError("Agency identifier cannot be empty.")
    try:
        return int(text)
    except ValueError as exc:
        raise ValueError(f"Invalid agency identifier: {value!r}") from exc


def set_tenant_context(
    agency_id: int | str, user_id: str | None = None
) -> Token[TenantRuntimeContext | None]:
    """Establish ``agency_id`` as the active agency for the current context.

    Args:
        agency_id: Identifier of the agency resolved by authentication.
        user_id: Identifier of the acting user, if any.

    Returns:
        ``Token`` returned by :meth:`contextvars.ContextVar.set`. Pass it to
        :func:`clear_tenant_context` to restore the previous state.

    Raises:
        ContextAlreadySetError: If a context is already active.
        ValueError: If ``agency_id`` is not a valid identifier.
    """

    current = _tenant_context.get()
    if current is not None:
        raise ContextAlreadySetError(
            f"Tenant context already set to agency {current['agency_id']}; "
            "clear it before switching agencies."
        )
    return _tenant_context.set(
        {"agency_id": coerce_agency_id(agency_id), "user_id": user_id}
    )


def clear_tenant_context(token: Token[TenantRuntimeContext | None] | None = None) -> None:
    """Reset the tenant context.

    Args:
        token: Handle returned by :func:`set_tenant_context`. When omitted the
            context is simply unset.
    """

    if token is None:
        _tenant_context.set(None)
        return
    _tenant_context.reset(token)


def get_current_tenant_id() -> int | None:
    """Return the active agency identifier, or ``None`` when unset."""

    context = _tenant_context.get()
    if context is None:
        return None
    return context["agency_id"]


def get_current_user_id() -> str | None:
    """Return the user acting in the current context, if known."""

    context = _tenant_context.get()
    if context is None:
        return None
    return context["user_id"]


@contextmanager
def tenant_scope(agency_id: int | str, user_id: str | None = None) -> Iterator[int]:
    """Run the enclosed block on behalf of ``agency_id``.

    The context is cleared when the block exits, whether it returns, raises
    or is cancelled.
    """

    token = set_tenant_context(agency_id, user_id)
    try:
        yield coerce_agency_id(agency_id)
    finally:
        clear_tenant_context(token)


class TenantContext:
    """Namespace exposing the tenant context operations under short names."""

    set = staticmethod(set_tenant_context)
    current = staticmethod(get_current_tenant_id)
    user = staticmethod(get_current_user_id)
    clear = staticmethod(clear_tenant_context)
    scope = staticmethod(tenant_scope)
