"""SQLAlchemy declarative base and KORE ERP models.

This package exposes a single declarative ``Base`` class plus the models
used across the backend. ``AgencyOwnedMixin`` marks every table whose rows
belong to exactly one agency; the tenancy layer filters those automatically.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export models so callers can write ``from kore.models import Building``.
from .mixins import AgencyOwnedMixin
from .agency import Agency, User
from .property import Building, MaintenanceRequest, Owner, Renter, Unit
from .billing import Invoice
from .audit import AuditLog


__all__ = [
    "AgencyOwnedMixin",
    "Agency",
    "AuditLog",
    "Base",
    "Building",
    "Invoice",
    "MaintenanceRequest",
    "Owner",
    "Renter",
    "Unit",
    "User",
]
