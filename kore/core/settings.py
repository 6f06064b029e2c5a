"""Runtime configuration for the tenancy layer, read from the environment."""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

__all__ = [
    "AUDIT_GRANULARITIES",
    "AUDIT_SINKS",
    "TenancySettings",
    "get_tenancy_settings",
    "reset_tenancy_settings_cache",
]

AUDIT_GRANULARITIES = ("session", "statement")
AUDIT_SINKS = ("log", "memory")


@dataclasses.dataclass(frozen=True)
class TenancySettings:
    """Knobs controlling auditing and CLI tenant resolution."""

    audit_granularity: str = "session"
    audit_sink: str = "log"
    cli_agency_id: int | None = None


def _parse_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    value = os.getenv(name, default).strip().lower() or default
    if value not in choices:
        raise ValueError(f"{name} must be one of {', '.join(choices)}; got {value!r}.")
    return value


@lru_cache(maxsize=1)
def get_tenancy_settings() -> TenancySettings:
    """Load settings from the environment."""

    cli_agency = os.getenv("KORE_CLI_AGENCY_ID", "").strip()
    try:
        cli_agency_id = int(cli_agency) if cli_agency else None
    except ValueError as exc:
        raise ValueError(f"KORE_CLI_AGENCY_ID must be an integer; got {cli_agency!r}.") from exc

    return TenancySettings(
        audit_granularity=_parse_choice(
            "KORE_AUDIT_GRANULARITY", "session", AUDIT_GRANULARITIES
        ),
        audit_sink=_parse_choice("KORE_AUDIT_SINK", "log", AUDIT_SINKS),
        cli_agency_id=cli_agency_id,
    )


def reset_tenancy_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_tenancy_settings.cache_clear()
