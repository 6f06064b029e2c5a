import pathlib
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from kore.audit import MemoryAuditSink, configure_audit_sink
from kore.core.settings import reset_tenancy_settings_cache
from kore.core.tenant_context import clear_tenant_context
from kore.models import Agency, Building, Owner, Unit, User
from kore.models.session import create_schema, get_engine


@dataclass
class AgencyData:
    """Identifiers of the rows created by the ``agencies`` fixture."""

    session_factory: sessionmaker[Session]
    agency_ids: dict[str, int]
    building_ids: dict[str, int]
    unit_ids: dict[str, int]
    user_ids: dict[str, int] = field(default_factory=dict)

    def agency(self, slug: str) -> int:
        return self.agency_ids[slug]


@pytest.fixture(autouse=True)
def isolated_tenancy_state(monkeypatch: pytest.MonkeyPatch):
    """Start every test without tenant context, settings cache or custom sink."""

    for name in (
        "KORE_AUDIT_GRANULARITY",
        "KORE_AUDIT_SINK",
        "KORE_CLI_AGENCY_ID",
        "KORE_TOKEN_SECRET",
        "KORE_TOKEN_AUDIENCE",
        "KORE_TOKEN_ISSUER",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_tenancy_settings_cache()
    configure_audit_sink(None)
    clear_tenant_context()
    yield
    clear_tenant_context()
    configure_audit_sink(None)
    reset_tenancy_settings_cache()


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    sink = MemoryAuditSink()
    configure_audit_sink(sink)
    return sink


@pytest.fixture
def engine():
    engine = get_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def agencies(session_factory) -> AgencyData:
    """Two agencies with one owner, buildings and units each.

    ``atlas`` (Casablanca) has two buildings with two units each; ``rif``
    (Tangier) has one building with one unit. Rows are inserted with explicit
    agency ids and no tenant context.
    """

    agency_ids: dict[str, int] = {}
    building_ids: dict[str, int] = {}
    unit_ids: dict[str, int] = {}
    user_ids: dict[str, int] = {}

    with session_factory.begin() as session:
        for slug, name in (("atlas", "Atlas Immobilier"), ("rif", "Rif Properties")):
            agency = Agency(name=name, slug=slug)
            session.add(agency)
            session.flush()
            agency_ids[slug] = agency.id

        layout = {
            "atlas": ("Casablanca", {"anfa": ("A1", "A2"), "maarif": ("101", "102")}),
            "rif": ("Tangier", {"malabata": ("1",)}),
        }
        for slug, (city, buildings) in layout.items():
            agency_id = agency_ids[slug]
            owner = Owner(agency_id=agency_id, full_name=f"{slug.title()} Owner")
            session.add(owner)
            session.flush()
            for key, unit_numbers in buildings.items():
                building = Building(
                    agency_id=agency_id,
                    name=key.title(),
                    city=city,
                    owner_id=owner.id,
                )
                session.add(building)
                session.flush()
                building_ids[key] = building.id
                for number in unit_numbers:
                    unit = Unit(agency_id=agency_id, building_id=building.id, unit_number=number)
                    session.add(unit)
                    session.flush()
                    unit_ids[f"{key}-{number}"] = unit.id

            for role in ("viewer", "operator", "admin"):
                user = User(
                    agency_id=agency_id,
                    email=f"{role}@{slug}.example",
                    name=f"{slug.title()} {role.title()}",
                    role=role,
                )
                session.add(user)
                session.flush()
                user_ids[f"{slug}-{role}"] = user.id

    return AgencyData(
        session_factory=session_factory,
        agency_ids=agency_ids,
        building_ids=building_ids,
        unit_ids=unit_ids,
        user_ids=user_ids,
    )


TOKEN_SECRET = "secret-key"
TOKEN_AUDIENCE = "kore-api"
TOKEN_ISSUER = "auth.kore"


@pytest.fixture
def token_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Configure the agency token settings so the middleware is enabled."""

    monkeypatch.setenv("KORE_TOKEN_SECRET", TOKEN_SECRET)
    monkeypatch.setenv("KORE_TOKEN_AUDIENCE", TOKEN_AUDIENCE)
    monkeypatch.setenv("KORE_TOKEN_ISSUER", TOKEN_ISSUER)
    monkeypatch.setenv("KORE_TOKEN_ALGORITHM", "HS256")


@pytest.fixture
def issue_token() -> Callable[..., str]:
    """Return a callable that signs agency access tokens for tests."""

    def _issue(
        *,
        agency_id: object = 1,
        user_id: object = "1",
        secret: str = TOKEN_SECRET,
        expires_in: int = 300,
        **extra_claims: Any,
    ) -> str:
        payload: dict[str, Any] = {
            "aud": TOKEN_AUDIENCE,
            "iss": TOKEN_ISSUER,
            "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
            "type": "access",
        }
        if agency_id is not None:
            payload["agency_id"] = agency_id
        if user_id is not None:
            payload["user_id"] = user_id
        payload.update(extra_claims)
        return jwt.encode(payload, secret, algorithm="HS256")

    return _issue
