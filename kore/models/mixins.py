"""Column mixins shared by tenant-owned models."""

from __future__ import annotations

import datetime as dt
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, declared_attr, mapped_column, relationship

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .agency import Agency


def utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class AgencyOwnedMixin:
    """Marks a model whose rows belong to exactly one agency.

    Subclasses receive a non-null ``agency_id`` foreign key and an ``agency``
    relationship. :class:`~kore.tenancy.repository.ScopedRepository` and the
    session guards recognise tenant-owned models through this mixin, so a
    table carrying ``agency_id`` without it is not isolated (see
    ``tools/check_tenant_models.py``).
    """

    @declared_attr
    def agency_id(cls) -> Mapped[int]:
        return mapped_column(
            ForeignKey("agencies.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    @declared_attr
    def agency(cls) -> Mapped["Agency"]:
        return relationship("Agency")


__all__ = ["AgencyOwnedMixin", "utcnow"]
