"""Agency (tenant) and user models.

An :class:`Agency` is the isolation boundary of the platform. Users belong to
one agency; they are resolved during authentication, before any tenant
context exists, so they are deliberately not an ``AgencyOwnedMixin`` model.
"""

from __future__ import annotations

import datetime as dt
from typing import List

from sqlalchemy import DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base
from .mixins import utcnow


class Agency(Base):
    """Represents a real-estate agency, the tenant of the platform.

    Attributes:
        id: Integer primary key.
        name: Display name of the agency.
        slug: Unique URL-safe identifier.
        locale: Default UI locale (``en``, ``fr``, ``ar``...).
        currency: ISO currency code used for invoices.
        country: Optional ISO country code.
        users: Members of the agency.
    """

    __tablename__ = "agencies"
    __table_args__ = (Index("ix_agencies_slug_unique", "slug", unique=True),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    slug: Mapped[str] = mapped_column(String(length=255), nullable=False)
    locale: Mapped[str] = mapped_column(
        String(length=8), nullable=False, default="en", server_default=text("'en'")
    )
    currency: Mapped[str] = mapped_column(
        String(length=3), nullable=False, default="MAD", server_default=text("'MAD'")
    )
    country: Mapped[str | None] = mapped_column(String(length=2))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    users: Mapped[List["User"]] = relationship(
        back_populates="agency",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class User(Base):
    """A person operating the ERP on behalf of one agency."""

    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_email_unique", "email", unique=True),
        Index("ix_users_agency_id", "agency_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    agency_id: Mapped[int] = mapped_column(
        ForeignKey("agencies.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="viewer",
        server_default=text("'viewer'"),
    )
    is_superadmin: Mapped[bool] = mapped_column(
        nullable=False, default=False, server_default=text("false")
    )
    is_active: Mapped[bool] = mapped_column(
        nullable=False, default=True, server_default=text("true")
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    agency: Mapped[Agency] = relationship(back_populates="users")


__all__ = ["Agency", "User"]
