"""Platform administration endpoints spanning every agency."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from kore.models import Agency, Building, Unit, User
from kore.security import get_db_session, require_superadmin
from kore.tenancy import ScopeBypass, ScopedRepository

router = APIRouter(prefix="/api/admin", tags=["admin"])

SessionDep = Annotated[Session, Depends(get_db_session)]
SuperadminDep = Annotated[User, Depends(require_superadmin)]


class AgencySummary(BaseModel):
    id: int
    name: str
    slug: str
    buildings: int
    units: int


@router.get("/agencies/summary", response_model=list[AgencySummary])
def agencies_summary(session: SessionDep, user: SuperadminDep) -> list[AgencySummary]:
    """Count buildings and units of every agency under an audited bypass."""

    buildings = ScopedRepository(session, Building)
    units = ScopedRepository(session, Unit)
    summaries: list[AgencySummary] = []

    with ScopeBypass(reason="admin agency summary", actor=f"user:{user.id}"):
        agencies = session.scalars(select(Agency).order_by(Agency.id)).all()
        for agency in agencies:
            summaries.append(
                AgencySummary(
                    id=agency.id,
                    name=agency.name,
                    slug=agency.slug,
                    buildings=buildings.count({"agency_id": agency.id}),
                    units=units.count({"agency_id": agency.id}),
                )
            )
    return summaries


__all__ = ["router"]
