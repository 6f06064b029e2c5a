"""Tests for the audited scope bypass."""

from __future__ import annotations

import asyncio
import contextvars
import json
import logging

import pytest

from kore.audit import AuditEvent, LoggingAuditSink, MemoryAuditSink
from kore.core.settings import reset_tenancy_settings_cache
from kore.core.tenant_context import tenant_scope
from kore.models import Building
from kore.tenancy import (
    InactiveBypassError,
    NestedBypassError,
    ScopeBypass,
    ScopedRepository,
    get_active_bypass,
)


class FailingSink:
    def emit(self, event: AuditEvent) -> None:
        raise ConnectionError("audit store unavailable")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"reason": "", "actor": "admin"},
        {"reason": "   ", "actor": "admin"},
        {"reason": "migration", "actor": ""},
        {"reason": None, "actor": "admin"},
    ],
)
def test_reason_and_actor_are_mandatory(kwargs) -> None:
    with pytest.raises(ValueError):
        ScopeBypass(**kwargs)


def test_unknown_granularity_is_rejected() -> None:
    with pytest.raises(ValueError):
        ScopeBypass(reason="r", actor="a", granularity="row")


def test_bypass_is_active_only_inside_block(audit_sink: MemoryAuditSink) -> None:
    bypass = ScopeBypass(reason="maintenance", actor="cron")
    assert get_active_bypass() is None
    assert not bypass.active

    with bypass as active:
        assert active is bypass
        assert get_active_bypass() is bypass
        assert bypass.active

    assert get_active_bypass() is None
    assert not bypass.active


def test_session_audit_has_enter_and_summary(audit_sink: MemoryAuditSink) -> None:
    with tenant_scope(42):
        with ScopeBypass(reason="monthly report", actor="superadmin") as bypass:
            bypass.record("list", "Building")

    assert audit_sink.actions() == ["scope_bypass.enter", "scope_bypass.exit"]
    enter, exit_ = audit_sink.events
    assert enter.session_id == exit_.session_id == bypass.session_id
    assert enter.reason == exit_.reason == "monthly report"
    assert enter.actor == exit_.actor == "superadmin"
    assert exit_.agency_id == 42
    assert exit_.metadata["outcome"] == "ok"
    assert exit_.metadata["operation_count"] == 1
    assert exit_.occurred_at >= enter.occurred_at


def test_audit_is_written_when_block_raises(audit_sink: MemoryAuditSink) -> None:
    with pytest.raises(KeyError):
        with ScopeBypass(reason="cleanup", actor="ops"):
            raise KeyError("missing")

    assert get_active_bypass() is None
    exit_event = audit_sink.events[-1]
    assert exit_event.action == "scope_bypass.exit"
    assert exit_event.metadata["outcome"] == "error"
    assert exit_event.metadata["error"] == "KeyError"


def test_nested_bypass_is_rejected(audit_sink: MemoryAuditSink) -> None:
    outer = ScopeBypass(reason="outer", actor="a")
    with outer:
        with pytest.raises(NestedBypassError):
            with ScopeBypass(reason="inner", actor="b"):
                pass  # pragma: no cover - never entered
        with pytest.raises(NestedBypassError):
            with outer:
                pass  # pragma: no cover - never entered
        assert get_active_bypass() is outer

    assert get_active_bypass() is None
    assert audit_sink.actions() == ["scope_bypass.enter", "scope_bypass.exit"]


def test_sink_failure_on_enter_prevents_activation() -> None:
    bypass = ScopeBypass(reason="r", actor="a", sink=FailingSink())

    with pytest.raises(ConnectionError):
        with bypass:
            pytest.fail("bypass must not activate")  # pragma: no cover

    assert get_active_bypass() is None
    assert not bypass.active


def test_statement_granularity_emits_one_event_per_access(session, agencies) -> None:
    sink = MemoryAuditSink()
    repo = ScopedRepository(session, Building)

    with ScopeBypass(reason="audit", actor="auditor", sink=sink, granularity="statement"):
        repo.list({"city": "Tangier"})
        repo.count()

    assert sink.actions() == [
        "scope_bypass.enter",
        "scope_bypass.operation",
        "scope_bypass.operation",
        "scope_bypass.exit",
    ]
    first = sink.events[1]
    assert first.operation == "list"
    assert first.entity_type == "Building"
    assert first.metadata == {"criteria": ["city"]}


def test_granularity_defaults_to_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KORE_AUDIT_GRANULARITY", "statement")
    reset_tenancy_settings_cache()

    assert ScopeBypass(reason="r", actor="a").granularity == "statement"


def test_run_invokes_callback_under_bypass(audit_sink: MemoryAuditSink) -> None:
    bypass = ScopeBypass(reason="r", actor="a")

    result = bypass.run(lambda value: (get_active_bypass() is bypass, value), 5)

    assert result == (True, 5)
    assert get_active_bypass() is None


def test_async_bypass_releases_on_cancellation(audit_sink: MemoryAuditSink) -> None:
    async def job(started: asyncio.Event) -> None:
        async with ScopeBypass(reason="batch", actor="worker"):
            started.set()
            await asyncio.sleep(10)

    async def main() -> object:
        started = asyncio.Event()
        task = asyncio.create_task(job(started))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return get_active_bypass()

    assert asyncio.run(main()) is None
    assert audit_sink.events[-1].metadata["outcome"] == "error"
    assert audit_sink.events[-1].metadata["error"] == "CancelledError"


def test_bypass_does_not_leak_into_sibling_tasks(audit_sink: MemoryAuditSink) -> None:
    async def bypassed(ready: asyncio.Event, done: asyncio.Event) -> None:
        async with ScopeBypass(reason="r", actor="a"):
            ready.set()
            await done.wait()

    async def observer(ready: asyncio.Event, done: asyncio.Event) -> object:
        await ready.wait()
        seen = get_active_bypass()
        done.set()
        return seen

    async def main() -> object:
        ready, done = asyncio.Event(), asyncio.Event()
        _, seen = await asyncio.gather(bypassed(ready, done), observer(ready, done))
        return seen

    assert asyncio.run(main()) is None


def test_logging_sink_writes_json(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO, logger="kore.audit")

    with ScopeBypass(reason="nightly", actor="scheduler", sink=LoggingAuditSink()):
        pass

    records = [r for r in caplog.records if r.name == "kore.audit"]
    assert len(records) == 2
    payload = json.loads(records[0].getMessage())
    assert payload["action"] == "scope_bypass.enter"
    assert payload["reason"] == "nightly"
    assert payload["actor"] == "scheduler"


def test_task_outliving_the_block_runs_scoped(session, agencies, audit_sink: MemoryAuditSink) -> None:
    repo = ScopedRepository(session, Building)

    async def main() -> tuple[object, list[str]]:
        released = asyncio.Event()

        async def late_reader() -> tuple[object, list[str]]:
            await released.wait()
            return get_active_bypass(), [b.name for b in repo.list()]

        with tenant_scope(agencies.agency("rif")):
            async with ScopeBypass(reason="quarterly report", actor="reporting"):
                task = asyncio.create_task(late_reader())
            released.set()
            return await task

    seen, names = asyncio.run(main())

    assert seen is None
    assert names == ["Malabata"]
    assert audit_sink.actions() == ["scope_bypass.enter", "scope_bypass.exit"]


def test_copied_context_loses_bypass_after_exit(audit_sink: MemoryAuditSink) -> None:
    with ScopeBypass(reason="export", actor="worker"):
        copied = contextvars.copy_context()
        assert copied.run(get_active_bypass) is not None

    assert copied.run(get_active_bypass) is None


def test_recording_on_closed_bypass_is_refused(audit_sink: MemoryAuditSink) -> None:
    with ScopeBypass(reason="export", actor="worker") as bypass:
        bypass.record("list", "Building")

    with pytest.raises(InactiveBypassError):
        bypass.record("list", "Building")

    assert audit_sink.events[-1].metadata["operation_count"] == 1


def test_new_bypass_allowed_where_a_closed_one_lingers(audit_sink: MemoryAuditSink) -> None:
    with ScopeBypass(reason="export", actor="worker"):
        copied = contextvars.copy_context()

    def reopen() -> bool:
        with ScopeBypass(reason="retry", actor="worker") as bypass:
            return get_active_bypass() is bypass

    assert copied.run(reopen) is True
