"""Building and unit endpoints, scoped to the caller's agency."""

from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from kore.models import Building, Unit
from kore.security import get_db_session, require_role
from kore.tenancy import ScopedRepository

router = APIRouter(prefix="/api", tags=["buildings"])

SessionDep = Annotated[Session, Depends(get_db_session)]
ViewerDep = Annotated[str, Depends(require_role("viewer"))]
OperatorDep = Annotated[str, Depends(require_role("operator"))]


class BuildingPayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    agency_id: int
    name: str
    address: str | None = None
    city: str | None = None
    postal_code: str | None = None
    country: str | None = None
    building_type: str
    construction_year: int | None = None
    total_floors: int | None = None
    owner_id: int | None = None
    created_at: dt.datetime


class CreateBuildingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=128)
    postal_code: str | None = Field(default=None, max_length=16)
    country: str | None = Field(default=None, min_length=2, max_length=2)
    building_type: str = "residential"
    construction_year: int | None = None
    total_floors: int | None = Field(default=None, ge=0)
    owner_id: int | None = None
    agency_id: int | None = None


class UpdateBuildingRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=255)
    city: str | None = Field(default=None, max_length=128)
    postal_code: str | None = Field(default=None, max_length=16)
    country: str | None = Field(default=None, min_length=2, max_length=2)
    building_type: str | None = None
    construction_year: int | None = None
    total_floors: int | None = Field(default=None, ge=0)
    owner_id: int | None = None
    agency_id: int | None = None


class UnitPayload(BaseModel):
    id: int
    building_id: int
    building_name: str
    city: str | None = None
    unit_number: str
    floor: int | None = None
    unit_type: str
    monthly_rent: Decimal | None = None
    status: str


def _get_building_or_404(repo: ScopedRepository[Building], building_id: int) -> Building:
    building = repo.get(building_id)
    if building is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Building not found.")
    return building


@router.get("/buildings", response_model=list[BuildingPayload])
def list_buildings(
    session: SessionDep,
    _role: ViewerDep,
    city: str | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[Building]:
    repo = ScopedRepository(session, Building)
    criteria = {"city": city} if city else None
    return repo.list(criteria, order_by=Building.id, limit=limit, offset=offset)


@router.post(
    "/buildings",
    response_model=BuildingPayload,
    status_code=status.HTTP_201_CREATED,
)
def create_building(
    payload: CreateBuildingRequest,
    session: SessionDep,
    _role: OperatorDep,
) -> Building:
    repo = ScopedRepository(session, Building)
    building = repo.create(payload.model_dump(exclude_none=True))
    session.commit()
    return building


@router.get("/buildings/{building_id}", response_model=BuildingPayload)
def get_building(building_id: int, session: SessionDep, _role: ViewerDep) -> Building:
    return _get_building_or_404(ScopedRepository(session, Building), building_id)


@router.patch("/buildings/{building_id}", response_model=BuildingPayload)
def update_building(
    building_id: int,
    payload: UpdateBuildingRequest,
    session: SessionDep,
    _role: OperatorDep,
) -> Building:
    repo = ScopedRepository(session, Building)
    building = _get_building_or_404(repo, building_id)
    repo.update(building, payload.model_dump(exclude_unset=True))
    session.commit()
    return building


@router.delete("/buildings/{building_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_building(building_id: int, session: SessionDep, _role: OperatorDep) -> Response:
    repo = ScopedRepository(session, Building)
    if repo.delete({"id": building_id}) == 0:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Building not found.")
    session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/units", response_model=list[UnitPayload])
def list_units(
    session: SessionDep,
    _role: ViewerDep,
    city: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
) -> list[UnitPayload]:
    repo = ScopedRepository(session, Unit)
    statement = (
        repo.select(Unit, Building)
        .join(Building, Unit.building_id == Building.id)
        .order_by(Building.name, Unit.unit_number)
    )
    if city:
        statement = statement.where(Building.city == city)
    if status_filter:
        statement = statement.where(Unit.status == status_filter)

    return [
        UnitPayload(
            id=unit.id,
            building_id=building.id,
            building_name=building.name,
            city=building.city,
            unit_number=unit.unit_number,
            floor=unit.floor,
            unit_type=unit.unit_type,
            monthly_rent=unit.monthly_rent,
            status=unit.status,
        )
        for unit, building in repo.execute(statement, operation="list").all()
    ]


__all__ = ["router"]
