"""Invoicing models."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import Date, ForeignKey, Index, Numeric, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base
from .mixins import AgencyOwnedMixin
from .property import Renter


class Invoice(AgencyOwnedMixin, Base):
    """A rent or service invoice issued by an agency to a renter."""

    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_agency_number_unique", "agency_id", "invoice_number", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    invoice_number: Mapped[str] = mapped_column(String(length=64), nullable=False)
    renter_id: Mapped[int | None] = mapped_column(ForeignKey("renters.id", ondelete="SET NULL"))
    issue_date: Mapped[dt.date] = mapped_column(Date(), nullable=False)
    due_date: Mapped[dt.date] = mapped_column(Date(), nullable=False)
    status: Mapped[str] = mapped_column(
        String(length=16),
        nullable=False,
        default="draft",
        server_default=text("'draft'"),
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(length=3), nullable=False, default="MAD")

    renter: Mapped[Renter | None] = relationship()

    @property
    def balance_due(self) -> Decimal:
        return (self.total_amount or Decimal("0")) - (self.paid_amount or Decimal("0"))


__all__ = ["Invoice"]
