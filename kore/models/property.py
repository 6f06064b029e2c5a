"""Property management models: owners, buildings, units, renters, repairs.

Every model here is tenant-owned. Relationships between them never cross an
agency boundary; the repository refuses to associate a unit with a building
of another agency.
"""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import List

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base
from .mixins import AgencyOwnedMixin, utcnow


class Owner(AgencyOwnedMixin, Base):
    """Landlord whose buildings the agency manages."""

    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(length=320))
    phone: Mapped[str | None] = mapped_column(String(length=64))
    address: Mapped[str | None] = mapped_column(Text())

    buildings: Mapped[List["Building"]] = relationship(back_populates="owner")


class Building(AgencyOwnedMixin, Base):
    """A managed building, the root of the property hierarchy.

    Attributes:
        owner_id: Optional landlord of the building.
        building_type: ``residential``, ``commercial`` or ``mixed``.
        units: Rentable units inside the building.
    """

    __tablename__ = "buildings"
    __table_args__ = (Index("ix_buildings_agency_city", "agency_id", "city"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    address: Mapped[str | None] = mapped_column(String(length=255))
    city: Mapped[str | None] = mapped_column(String(length=128))
    postal_code: Mapped[str | None] = mapped_column(String(length=16))
    country: Mapped[str | None] = mapped_column(String(length=2))
    building_type: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="residential",
        server_default=text("'residential'"),
    )
    construction_year: Mapped[int | None] = mapped_column(Integer())
    total_floors: Mapped[int | None] = mapped_column(Integer())
    owner_id: Mapped[int | None] = mapped_column(
        ForeignKey("owners.id", ondelete="SET NULL")
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    owner: Mapped[Owner | None] = relationship(back_populates="buildings")
    units: Mapped[List["Unit"]] = relationship(
        back_populates="building",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    maintenance_requests: Mapped[List["MaintenanceRequest"]] = relationship(
        back_populates="building",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def full_address(self) -> str:
        parts = [self.address, self.city, self.postal_code, self.country]
        return ", ".join(part for part in parts if part)


class Unit(AgencyOwnedMixin, Base):
    """A rentable apartment, office or shop inside a building."""

    __tablename__ = "units"
    __table_args__ = (
        Index("ix_units_building_number_unique", "building_id", "unit_number", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    building_id: Mapped[int] = mapped_column(
        ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False
    )
    unit_number: Mapped[str] = mapped_column(String(length=32), nullable=False)
    floor: Mapped[int | None] = mapped_column(Integer())
    unit_type: Mapped[str] = mapped_column(
        String(length=32), nullable=False, default="apartment"
    )
    bedrooms: Mapped[int | None] = mapped_column(Integer())
    area_sqm: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    monthly_rent: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    status: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="vacant",
        server_default=text("'vacant'"),
    )

    building: Mapped[Building] = relationship(back_populates="units")
    renters: Mapped[List["Renter"]] = relationship(back_populates="unit")


class Renter(AgencyOwnedMixin, Base):
    """A lessee occupying a unit."""

    __tablename__ = "renters"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    full_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(length=320))
    phone: Mapped[str | None] = mapped_column(String(length=64))
    unit_id: Mapped[int | None] = mapped_column(ForeignKey("units.id", ondelete="SET NULL"))
    lease_start: Mapped[dt.date | None] = mapped_column(Date())
    lease_end: Mapped[dt.date | None] = mapped_column(Date())

    unit: Mapped[Unit | None] = relationship(back_populates="renters")


class MaintenanceRequest(AgencyOwnedMixin, Base):
    """A repair or upkeep ticket raised for a building or one of its units."""

    __tablename__ = "maintenance_requests"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    building_id: Mapped[int] = mapped_column(
        ForeignKey("buildings.id", ondelete="CASCADE"), nullable=False
    )
    unit_id: Mapped[int | None] = mapped_column(ForeignKey("units.id", ondelete="SET NULL"))
    title: Mapped[str] = mapped_column(String(length=255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text())
    priority: Mapped[str] = mapped_column(String(length=16), nullable=False, default="normal")
    status: Mapped[str] = mapped_column(String(length=16), nullable=False, default="open")
    cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    building: Mapped[Building] = relationship(back_populates="maintenance_requests")
    unit: Mapped[Unit | None] = relationship()


__all__ = ["Building", "MaintenanceRequest", "Owner", "Renter", "Unit"]
