"""Agency isolation: scoped repositories, audited bypass and job helpers."""

from kore.core.exceptions import (
    ContextAlreadySetError,
    ImmutableFieldError,
    InactiveBypassError,
    NestedBypassError,
    NoActiveTenantError,
    TenancyError,
    TenantMismatchError,
)
from kore.core.tenant_context import TenantContext, tenant_scope

from . import guards
from .bypass import ScopeBypass, get_active_bypass
from .jobs import cli_tenant_scope, for_each_agency, run_as_tenant, tenant_job
from .repository import ScopedRepository, agency_criteria

__all__ = [
    "ContextAlreadySetError",
    "ImmutableFieldError",
    "InactiveBypassError",
    "NestedBypassError",
    "NoActiveTenantError",
    "ScopeBypass",
    "ScopedRepository",
    "TenancyError",
    "TenantContext",
    "TenantMismatchError",
    "agency_criteria",
    "cli_tenant_scope",
    "for_each_agency",
    "get_active_bypass",
    "guards",
    "run_as_tenant",
    "tenant_job",
    "tenant_scope",
]
