"""Errors raised by the agency isolation layer.

All of these signal programming or integrity problems rather than transient
faults. They are never retried and must reach the caller of the operation.
"""

from __future__ import annotations

__all__ = [
    "ContextAlreadySetError",
    "ImmutableFieldError",
    "InactiveBypassError",
    "NestedBypassError",
    "NoActiveTenantError",
    "TenancyError",
    "TenantMismatchError",
]


class TenancyError(RuntimeError):
    """Base class for agency isolation failures."""


class NoActiveTenantError(TenancyError):
    """A scoped operation ran without a tenant context and without a bypass."""

    def __init__(self, operation: str, entity_type: str | None = None) -> None:
        target = f" on {entity_type}" if entity_type else ""
        super().__init__(f"No active agency for '{operation}'{target}.")
        self.operation = operation
        self.entity_type = entity_type


class TenantMismatchError(TenancyError):
    """A record was created for, or associated with, a foreign agency."""

    def __init__(
        self,
        entity_type: str,
        expected: int | None,
        actual: int | None,
        *,
        detail: str | None = None,
    ) -> None:
        if actual is None:
            message = f"{entity_type} is not visible to agency {expected!r}."
        else:
            message = (
                f"{entity_type} belongs to agency {actual!r} but the operation "
                f"runs for agency {expected!r}."
            )
        if detail:
            message = f"{message} {detail}"
        super().__init__(message)
        self.entity_type = entity_type
        self.expected = expected
        self.actual = actual


class ImmutableFieldError(TenancyError):
    """The agency key of a persisted record was about to change."""

    def __init__(self, entity_type: str, field: str = "agency_id") -> None:
        super().__init__(f"{entity_type}.{field} cannot be modified after creation.")
        self.entity_type = entity_type
        self.field = field


class ContextAlreadySetError(TenancyError):
    """The tenant context was set twice without an intervening clear."""


class NestedBypassError(TenancyError):
    """A scope bypass was entered while another one was active."""


class InactiveBypassError(TenancyError):
    """Data access was recorded on a scope bypass that is no longer active."""
