"""Explicit, audited escape hatch from agency scoping.

System work that must see every agency (seeding, migrations, superadmin
reports, jobs that fan out across agencies) runs inside a
:class:`ScopeBypass`. The bypass is only active for the dynamic extent of the
``with`` block (or the callback given to :meth:`ScopeBypass.run`), cannot be
nested, and always leaves an audit trail::

    with ScopeBypass(reason="monthly invoice run", actor="scheduler"):
        repo.list({"status": "overdue"})

Events emitted to the audit sink:

``scope_bypass.enter``
    Once, when the block starts. If the sink fails the bypass never activates.
``scope_bypass.operation``
    Once per repository call, only with ``statement`` granularity.
``scope_bypass.exit``
    Once, when the block ends (normally or not), summarising the operations.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from collections.abc import Callable
from contextvars import ContextVar, Token
from types import TracebackType
from typing import Any, TypeVar

from kore.audit import AuditEvent, AuditSink, get_audit_sink
from kore.core.exceptions import InactiveBypassError, NestedBypassError
from kore.core.settings import AUDIT_GRANULARITIES, get_tenancy_settings
from kore.core.tenant_context import get_current_tenant_id

__all__ = ["ScopeBypass", "get_active_bypass"]

logger = logging.getLogger(__name__)

T = TypeVar("T")

_active_bypass: ContextVar["ScopeBypass | None"] = ContextVar(
    "kore_scope_bypass", default=None
)


def get_active_bypass() -> "ScopeBypass | None":
    """Return the bypass active in the current context, if any.

    Tasks and threads started inside a bypass inherit a copy of the context;
    once the block has exited, the bypass no longer counts there either.
    """

    bypass = _active_bypass.get()
    if bypass is None or not bypass.active:
        return None
    return bypass


def _require_text(name: str, value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"ScopeBypass requires a non-empty {name}.")
    return value.strip()


class ScopeBypass:
    """Scoped suspension of agency filtering for one block of work.

    Args:
        reason: Why cross-agency access is needed. Mandatory.
        actor: Who (user id, job name, script) performs the access. Mandatory.
        sink: Audit sink; defaults to :func:`kore.audit.get_audit_sink`.
        granularity: ``session`` (enter/exit events only) or ``statement``
            (one extra event per operation). Defaults to
            ``KORE_AUDIT_GRANULARITY``.
    """

    def __init__(
        self,
        *,
        reason: str,
        actor: str,
        sink: AuditSink | None = None,
        granularity: str | None = None,
    ) -> None:
        self.reason = _require_text("reason", reason)
        self.actor = _require_text("actor", actor)
        granularity = granularity or get_tenancy_settings().audit_granularity
        if granularity not in AUDIT_GRANULARITIES:
            raise ValueError(f"Unknown audit granularity: {granularity!r}")
        self.granularity = granularity
        self._sink = sink
        self.session_id = uuid.uuid4().hex
        self.operations: list[dict[str, Any]] = []
        self.started_at: dt.datetime | None = None
        self._token: Token[ScopeBypass | None] | None = None

    @property
    def active(self) -> bool:
        return self._token is not None

    @property
    def sink(self) -> AuditSink:
        return self._sink or get_audit_sink()

    def _emit(self, action: str, **fields: Any) -> None:
        self.sink.emit(
            AuditEvent(
                action=action,
                actor=self.actor,
                reason=self.reason,
                session_id=self.session_id,
                agency_id=get_current_tenant_id(),
                **fields,
            )
        )

    # Lifecycle ---------------------------------------------------------------
    def __enter__(self) -> "ScopeBypass":
        current = get_active_bypass()
        if current is not None:
            raise NestedBypassError(
                f"Scope bypass '{current.reason}' by {current.actor} is already active."
            )
        self.operations = []
        self.started_at = dt.datetime.now(dt.timezone.utc)
        self._emit("scope_bypass.enter", metadata={"granularity": self.granularity})
        self._token = _active_bypass.set(self)
        logger.info(
            "Scope bypass %s opened by %s: %s", self.session_id, self.actor, self.reason
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        token, self._token = self._token, None
        try:
            finished = dt.datetime.now(dt.timezone.utc)
            started = self.started_at or finished
            self._emit(
                "scope_bypass.exit",
                metadata={
                    "outcome": "ok" if exc_type is None else "error",
                    "error": exc_type.__name__ if exc_type is not None else None,
                    "operation_count": len(self.operations),
                    "operations": [dict(op) for op in self.operations],
                    "duration_ms": round((finished - started).total_seconds() * 1000, 2),
                },
            )
        finally:
            if token is not None:
                _active_bypass.reset(token)
            logger.info("Scope bypass %s closed", self.session_id)

    async def __aenter__(self) -> "ScopeBypass":
        return self.__enter__()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.__exit__(exc_type, exc, tb)

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Invoke ``func`` with the bypass active and return its result."""

        with self:
            return func(*args, **kwargs)

    # Recording ---------------------------------------------------------------
    def record(
        self,
        operation: str,
        entity_type: str | None = None,
        *,
        detail: dict[str, Any] | None = None,
    ) -> None:
        """Note a data access performed under this bypass.

        Raises:
            InactiveBypassError: If the block has already exited.
        """

        if not self.active:
            raise InactiveBypassError(
                f"Scope bypass {self.session_id} is closed; cannot record {operation!r}."
            )
        entry: dict[str, Any] = {"operation": operation, "entity_type": entity_type}
        if detail:
            entry["detail"] = detail
        self.operations.append(entry)
        if self.granularity == "statement":
            self._emit(
                "scope_bypass.operation",
                operation=operation,
                entity_type=entity_type,
                metadata=dict(detail or {}),
            )
