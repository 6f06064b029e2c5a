"""Tests for environment-driven tenancy settings."""

from __future__ import annotations

import pytest

from kore.core.settings import (
    TenancySettings,
    get_tenancy_settings,
    reset_tenancy_settings_cache,
)


def test_defaults() -> None:
    assert get_tenancy_settings() == TenancySettings()


def test_values_are_read_and_normalised(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KORE_AUDIT_GRANULARITY", " Statement ")
    monkeypatch.setenv("KORE_AUDIT_SINK", "MEMORY")
    monkeypatch.setenv("KORE_CLI_AGENCY_ID", "5")

    settings = get_tenancy_settings()

    assert settings.audit_granularity == "statement"
    assert settings.audit_sink == "memory"
    assert settings.cli_agency_id == 5


def test_settings_are_cached_until_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_tenancy_settings()
    monkeypatch.setenv("KORE_AUDIT_SINK", "memory")

    assert get_tenancy_settings() is first

    reset_tenancy_settings_cache()
    assert get_tenancy_settings().audit_sink == "memory"


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("KORE_AUDIT_GRANULARITY", "row"),
        ("KORE_AUDIT_SINK", "kafka"),
        ("KORE_CLI_AGENCY_ID", "forty-two"),
    ],
)
def test_invalid_values_are_rejected(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError):
        get_tenancy_settings()
