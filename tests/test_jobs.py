"""Tests for background job helpers."""

from __future__ import annotations

import asyncio

import pytest

from kore.core.exceptions import ContextAlreadySetError, NoActiveTenantError
from kore.core.settings import reset_tenancy_settings_cache
from kore.core.tenant_context import get_current_tenant_id, get_current_user_id, tenant_scope
from kore.models import Building
from kore.tenancy import (
    ScopedRepository,
    cli_tenant_scope,
    for_each_agency,
    run_as_tenant,
    tenant_job,
)


def test_run_as_tenant_sets_and_clears_context() -> None:
    seen = run_as_tenant(
        12, lambda x: (get_current_tenant_id(), get_current_user_id(), x), "arg", user_id="job"
    )

    assert seen == (12, "job", "arg")
    assert get_current_tenant_id() is None


def test_sync_tenant_job_scopes_repository(session, agencies) -> None:
    @tenant_job
    def building_names(agency_id: int, db) -> list[str]:
        return sorted(b.name for b in ScopedRepository(db, Building).list())

    assert building_names(agencies.agency("atlas"), session) == ["Anfa", "Maarif"]
    assert building_names(agencies.agency("rif"), session) == ["Malabata"]
    assert building_names.__name__ == "building_names"
    assert get_current_tenant_id() is None


def test_sync_job_clears_context_on_failure() -> None:
    @tenant_job
    def broken(agency_id: int) -> None:
        raise LookupError(agency_id)

    with pytest.raises(LookupError):
        broken(3)
    assert get_current_tenant_id() is None


def test_async_job_sees_its_agency() -> None:
    @tenant_job
    async def current(agency_id: int) -> tuple[int, int | None]:
        await asyncio.sleep(0)
        return agency_id, get_current_tenant_id()

    async def main():
        return await asyncio.gather(current(1), current(2))

    assert asyncio.run(main()) == [(1, 1), (2, 2)]


def test_async_job_cancellation_clears_context() -> None:
    observed: list[int | None] = []

    @tenant_job
    async def long_running(agency_id: int, started: asyncio.Event) -> None:
        try:
            started.set()
            await asyncio.sleep(10)
        finally:
            observed.append(get_current_tenant_id())

    async def main() -> int | None:
        started = asyncio.Event()
        task = asyncio.create_task(long_running(8, started))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        # The same loop runs the next job without inheriting agency 8.
        return await asyncio.create_task(_read_context())

    async def _read_context() -> int | None:
        return get_current_tenant_id()

    assert asyncio.run(main()) is None
    assert observed == [8]


def test_for_each_agency_runs_each_job_scoped(session, agencies, audit_sink) -> None:
    def count_buildings(agency_id: int) -> tuple[int | None, int]:
        return get_current_tenant_id(), ScopedRepository(session, Building).count()

    results = for_each_agency(session, count_buildings, reason="nightly stats", actor="scheduler")

    assert results == {
        agencies.agency("atlas"): (agencies.agency("atlas"), 2),
        agencies.agency("rif"): (agencies.agency("rif"), 1),
    }
    assert audit_sink.actions() == ["scope_bypass.enter", "scope_bypass.exit"]
    operations = audit_sink.events[-1].metadata["operations"]
    assert operations == [{"operation": "list", "entity_type": "Agency", "detail": {"count": 2}}]


def test_for_each_agency_refuses_to_run_inside_context(session, agencies, audit_sink) -> None:
    with tenant_scope(agencies.agency("atlas")):
        with pytest.raises(ContextAlreadySetError):
            for_each_agency(session, lambda agency_id: agency_id, reason="r", actor="a")


def test_cli_scope_reads_agency_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KORE_CLI_AGENCY_ID", "17")
    reset_tenancy_settings_cache()

    with cli_tenant_scope() as agency_id:
        assert agency_id == 17
        assert get_current_tenant_id() == 17
        assert get_current_user_id() == "cli"

    assert get_current_tenant_id() is None


def test_cli_scope_without_agency_fails_closed() -> None:
    with pytest.raises(NoActiveTenantError):
        with cli_tenant_scope():
            pass  # pragma: no cover - never entered
