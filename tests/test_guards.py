"""Tests for the ``before_flush`` agency guards on plain sessions."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError

from kore.audit import MemoryAuditSink
from kore.core.tenant_context import tenant_scope
from kore.models import Building, Owner
from kore.tenancy import ImmutableFieldError, ScopeBypass, TenantMismatchError


def test_changing_agency_on_loaded_row_fails_flush(session, agencies) -> None:
    building = session.get(Building, agencies.building_ids["anfa"])
    building.agency_id = agencies.agency("rif")

    with pytest.raises(ImmutableFieldError):
        session.flush()
    session.rollback()

    session.expire_all()
    assert session.get(Building, agencies.building_ids["anfa"]).agency_id == agencies.agency("atlas")


def test_changing_agency_fails_under_bypass(session, agencies) -> None:
    building = session.get(Building, agencies.building_ids["malabata"])

    with ScopeBypass(reason="repair", actor="dba", sink=MemoryAuditSink()):
        building.agency_id = agencies.agency("atlas")
        with pytest.raises(ImmutableFieldError):
            session.flush()
    session.rollback()


def test_other_column_changes_are_allowed(session, agencies) -> None:
    building = session.get(Building, agencies.building_ids["anfa"])
    building.name = "Anfa Plaza"
    session.flush()
    session.commit()

    session.expire_all()
    assert session.get(Building, agencies.building_ids["anfa"]).name == "Anfa Plaza"


def test_new_instances_are_stamped_from_context(session, agencies) -> None:
    with tenant_scope(agencies.agency("rif")):
        owner = Owner(full_name="Direct add")
        session.add(owner)
        session.flush()

    assert owner.agency_id == agencies.agency("rif")


def test_new_instance_for_other_agency_is_rejected(session, agencies) -> None:
    with tenant_scope(agencies.agency("rif")):
        session.add(Owner(full_name="Intruder", agency_id=agencies.agency("atlas")))
        with pytest.raises(TenantMismatchError):
            session.flush()
    session.rollback()


def test_new_instance_for_other_agency_allowed_under_bypass(session, agencies) -> None:
    with tenant_scope(agencies.agency("rif")):
        with ScopeBypass(reason="transfer", actor="admin", sink=MemoryAuditSink()):
            owner = Owner(full_name="Moved", agency_id=agencies.agency("atlas"))
            session.add(owner)
            session.flush()

    assert owner.agency_id == agencies.agency("atlas")


def test_unstamped_row_without_context_violates_not_null(session, agencies) -> None:
    session.add(Owner(full_name="Nobody"))

    with pytest.raises(IntegrityError):
        session.flush()
    session.rollback()
