"""Persisted audit trail for scope bypass sessions."""

from __future__ import annotations

import datetime as dt
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from . import Base
from .mixins import utcnow


class AuditLog(Base):
    """Append-only record of a cross-agency access.

    ``agency_id`` is a plain column rather than a foreign key so entries
    outlive the agency they mention. Rows are never updated or deleted.
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_log_session_id", "session_id"),
        Index("ix_audit_log_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    action: Mapped[str] = mapped_column(String(length=64), nullable=False)
    actor: Mapped[str] = mapped_column(String(length=255), nullable=False)
    reason: Mapped[str] = mapped_column(Text(), nullable=False)
    session_id: Mapped[str] = mapped_column(String(length=32), nullable=False)
    operation: Mapped[str | None] = mapped_column(String(length=32))
    entity_type: Mapped[str | None] = mapped_column(String(length=64))
    agency_id: Mapped[int | None] = mapped_column(Integer())
    metadata_json: Mapped[dict[str, Any] | None] = mapped_column(JSON())
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert the entry to a JSON-friendly dictionary."""

        return {
            "id": self.id,
            "action": self.action,
            "actor": self.actor,
            "reason": self.reason,
            "session_id": self.session_id,
            "operation": self.operation,
            "entity_type": self.entity_type,
            "agency_id": self.agency_id,
            "metadata": self.metadata_json,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


__all__ = ["AuditLog"]
