"""Audit sinks receiving scope bypass events.

A sink is anything with an ``emit(event)`` method. The default writes one
JSON line per event on the ``kore.audit`` logger, which ``init_logging``
routes to ``audit.log``. :class:`DatabaseAuditSink` persists events to the
``audit_log`` table through its own session so an entry survives even when
the audited operation rolls back.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import json
import logging
from collections.abc import Iterable
from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from kore.core.settings import get_tenancy_settings
from kore.models import AuditLog

__all__ = [
    "AuditEvent",
    "AuditSink",
    "CompositeAuditSink",
    "DatabaseAuditSink",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "configure_audit_sink",
    "get_audit_sink",
]

logger = logging.getLogger("kore.audit")


@dataclasses.dataclass(frozen=True)
class AuditEvent:
    """One entry of the cross-agency access trail."""

    action: str
    actor: str
    reason: str
    session_id: str
    operation: str | None = None
    entity_type: str | None = None
    agency_id: int | None = None
    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)
    occurred_at: dt.datetime = dataclasses.field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc)
    )

    def to_dict(self) -> dict[str, Any]:
        payload = dataclasses.asdict(self)
        payload["occurred_at"] = self.occurred_at.isoformat()
        return payload


class AuditSink(Protocol):
    """Destination for :class:`AuditEvent` objects."""

    def emit(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Write events as JSON lines on a logger."""

    def __init__(self, audit_logger: logging.Logger | None = None) -> None:
        self._logger = audit_logger or logger

    def emit(self, event: AuditEvent) -> None:
        self._logger.info(json.dumps(event.to_dict(), default=str, sort_keys=True))


class MemoryAuditSink:
    """Keep events in memory; handy for tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[str]:
        return [event.action for event in self.events]

    def clear(self) -> None:
        self.events.clear()


class DatabaseAuditSink:
    """Persist events as :class:`~kore.models.AuditLog` rows.

    Each event is committed in a dedicated session obtained from
    ``session_factory``; failures propagate to the caller.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def emit(self, event: AuditEvent) -> None:
        entry = AuditLog(
            action=event.action,
            actor=event.actor,
            reason=event.reason,
            session_id=event.session_id,
            operation=event.operation,
            entity_type=event.entity_type,
            agency_id=event.agency_id,
            metadata_json=event.metadata or None,
            created_at=event.occurred_at,
        )
        with self._session_factory.begin() as session:
            session.add(entry)


class CompositeAuditSink:
    """Fan events out to several sinks in order."""

    def __init__(self, *sinks: AuditSink) -> None:
        self._sinks: tuple[AuditSink, ...] = sinks

    @property
    def sinks(self) -> Iterable[AuditSink]:
        return self._sinks

    def emit(self, event: AuditEvent) -> None:
        for sink in self._sinks:
            sink.emit(event)


_configured_sink: AuditSink | None = None


def configure_audit_sink(sink: AuditSink | None) -> None:
    """Install ``sink`` as the process-wide default; ``None`` restores settings."""

    global _configured_sink
    _configured_sink = sink


def get_audit_sink() -> AuditSink:
    """Return the configured sink, building one from settings if needed."""

    global _configured_sink
    if _configured_sink is None:
        if get_tenancy_settings().audit_sink == "memory":
            _configured_sink = MemoryAuditSink()
        else:
            _configured_sink = LoggingAuditSink()
    return _configured_sink
