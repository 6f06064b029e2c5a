"""Utility script to bootstrap the database with demo agencies and properties.

Every write happens inside a single audited ``ScopeBypass`` because seeding
spans several agencies. Running the script again leaves existing agencies
untouched.
"""

from __future__ import annotations

import argparse
import logging
import os
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Sequence

from dotenv import load_dotenv
import psycopg
from sqlalchemy import select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from kore.audit import AuditSink
from kore.models import Agency, Building, Owner, Unit, User
from kore.models.session import as_sqlalchemy_url, create_schema, get_sessionmaker
from kore.tenancy import ScopeBypass, ScopedRepository

logger = logging.getLogger("seed")


@dataclass(slots=True)
class DemoBuilding:
    name: str
    address: str
    units: tuple[tuple[str, int, str], ...]


@dataclass(slots=True)
class DemoAgency:
    name: str
    slug: str
    city: str
    admin_email: str
    owner_name: str
    buildings: tuple[DemoBuilding, ...] = field(default_factory=tuple)


DEMO_AGENCIES: tuple[DemoAgency, ...] = (
    DemoAgency(
        name="Atlas Immobilier",
        slug="atlas",
        city="Casablanca",
        admin_email="admin@atlas.demo",
        owner_name="Karim Benali",
        buildings=(
            DemoBuilding(
                "Résidence Anfa",
                "12 Boulevard d'Anfa",
                (("A1", 1, "4500.00"), ("A2", 1, "4700.00"), ("B1", 2, "5200.00")),
            ),
            DemoBuilding("Maarif Center", "88 Rue Normandie", (("101", 1, "3900.00"),)),
        ),
    ),
    DemoAgency(
        name="Rif Properties",
        slug="rif",
        city="Tangier",
        admin_email="admin@rif.demo",
        owner_name="Salma Idrissi",
        buildings=(
            DemoBuilding(
                "Villa Malabata",
                "3 Avenue Mohammed VI",
                (("1", 0, "6100.00"), ("2", 1, "6300.00")),
            ),
        ),
    ),
)


@dataclass(slots=True)
class SeedConfig:
    """Configuration derived from the environment and CLI for the seed process."""

    db_url: str
    sqlalchemy_url: str
    actor: str
    wait: bool


def _to_bool(value: str | None) -> bool:
    """Parse a truthy string value into ``bool``."""

    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _safe_url(db_url: str) -> str:
    """Return a version of ``db_url`` with any password redacted."""

    parsed = make_url(db_url)
    if parsed.password is None:
        return db_url
    return parsed.render_as_string(hide_password=True)


def _build_database_url() -> str:
    """Compute the database URL from ``DATABASE_URL`` or ``PG*`` variables."""

    direct = os.getenv("DATABASE_URL")
    if direct:
        return direct

    host = os.getenv("PGHOST")
    port = os.getenv("PGPORT", "5432")
    database = os.getenv("PGDATABASE")
    user = os.getenv("PGUSER")
    password = os.getenv("PGPASSWORD")

    if not all([host, database, user]):
        raise RuntimeError(
            "DATABASE_URL is not configured and PGHOST/PGDATABASE/PGUSER are missing."
        )

    auth = user
    if password:
        auth = f"{user}:{password}"
    return f"postgresql://{auth}@{host}:{port}/{database}"


def _load_config(args: argparse.Namespace) -> SeedConfig:
    """Load seed configuration from environment variables and ``args``."""

    db_url = _build_database_url()
    return SeedConfig(
        db_url=db_url,
        sqlalchemy_url=as_sqlalchemy_url(db_url),
        actor=args.actor,
        wait=not args.no_wait and not _to_bool(os.getenv("SEED_SKIP_WAIT")),
    )


def wait_for_database(db_url: str, max_attempts: int = 10, delay: float = 3.0) -> None:
    """Attempt to establish a PostgreSQL connection, retrying if necessary."""

    safe_url = _safe_url(db_url)
    # psycopg only understands plain libpq URLs.
    conninfo = db_url.replace("postgresql+psycopg://", "postgresql://", 1)

    for attempt in range(1, max_attempts + 1):
        try:
            with psycopg.connect(conninfo, connect_timeout=5) as connection:
                with connection.cursor() as cursor:
                    cursor.execute("SELECT 1")
        except psycopg.OperationalError as exc:
            logger.info(
                "Database not ready (attempt %d/%d): %s; retrying in %.1fs",
                attempt,
                max_attempts,
                exc,
                delay,
            )
            if attempt >= max_attempts:
                raise RuntimeError("Database did not become ready in time") from exc
            time.sleep(delay)
            continue

        logger.info("Database connection established after %d attempt(s): %s", attempt, safe_url)
        return


def _seed_agency(session: Session, demo: DemoAgency) -> Agency:
    agency = Agency(name=demo.name, slug=demo.slug, country="MA", locale="fr")
    session.add(agency)
    session.flush()
    session.add(
        User(
            agency_id=agency.id,
            email=demo.admin_email,
            name=f"{demo.name} Admin",
            role="admin",
        )
    )

    owners = ScopedRepository(session, Owner)
    buildings = ScopedRepository(session, Building)
    units = ScopedRepository(session, Unit)

    owner = owners.create({"agency_id": agency.id, "full_name": demo.owner_name})
    for demo_building in demo.buildings:
        building = buildings.create(
            {
                "agency_id": agency.id,
                "name": demo_building.name,
                "address": demo_building.address,
                "city": demo.city,
                "country": "MA",
                "owner_id": owner.id,
            }
        )
        for unit_number, floor, rent in demo_building.units:
            units.create(
                {
                    "agency_id": agency.id,
                    "building_id": building.id,
                    "unit_number": unit_number,
                    "floor": floor,
                    "monthly_rent": Decimal(rent),
                }
            )
    return agency


def seed_demo_data(
    factory: sessionmaker[Session],
    *,
    actor: str = "seed",
    agencies: Sequence[DemoAgency] = DEMO_AGENCIES,
    sink: AuditSink | None = None,
) -> dict[str, int]:
    """Create the demo agencies that do not exist yet.

    Returns:
        Mapping of agency slug to agency id, for created and reused agencies.
    """

    result: dict[str, int] = {}
    with factory() as session, ScopeBypass(reason="seed", actor=actor, sink=sink):
        for demo in agencies:
            agency = session.execute(
                select(Agency).where(Agency.slug == demo.slug)
            ).scalar_one_or_none()
            if agency is None:
                agency = _seed_agency(session, demo)
                logger.info("Created agency %s (%s)", agency.slug, agency.id)
            else:
                logger.info("Agency %s already exists; reusing.", agency.slug)
            result[demo.slug] = agency.id
        session.commit()
    return result


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed KORE ERP with demo agencies.")
    parser.add_argument("--actor", default="seed", help="Actor recorded in the audit trail.")
    parser.add_argument(
        "--no-wait",
        action="store_true",
        help="Do not wait for PostgreSQL to accept connections.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    """Entrypoint for the seeding workflow."""

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")

    config = _load_config(_parse_args(argv))
    logger.info("Starting seed process using %s", _safe_url(config.db_url))

    if config.wait and make_url(config.sqlalchemy_url).get_backend_name() == "postgresql":
        wait_for_database(config.db_url)

    session_factory = get_sessionmaker(database_url=config.sqlalchemy_url)
    create_schema(session_factory.kw["bind"])

    agencies = seed_demo_data(session_factory, actor=config.actor)
    logger.info("Seed process completed. Agencies: %s", agencies)


if __name__ == "__main__":
    main()
