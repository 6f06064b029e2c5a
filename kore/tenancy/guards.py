"""Session-level guards for tenant-owned instances.

The repository enforces the agency rules for the writes it performs; these
``before_flush`` hooks cover code that adds or mutates instances on a
``Session`` directly:

* a persistent instance whose ``agency_id`` changed fails the flush with
  :class:`~kore.core.exceptions.ImmutableFieldError`, bypass or not;
* a new instance without ``agency_id`` is stamped from the tenant context;
* a new instance carrying another agency's id fails with
  :class:`~kore.core.exceptions.TenantMismatchError` unless a bypass is active.

Without a tenant context new instances are left alone and the ``NOT NULL``
constraint on ``agency_id`` rejects unstamped rows.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from kore.core.exceptions import ImmutableFieldError, TenantMismatchError
from kore.core.tenant_context import get_current_tenant_id
from kore.models import AgencyOwnedMixin

from .bypass import get_active_bypass

__all__ = ["check_new_instance", "check_persistent_instance"]

logger = logging.getLogger(__name__)


def check_persistent_instance(instance: AgencyOwnedMixin) -> None:
    """Raise if the loaded ``agency_id`` of ``instance`` was modified."""

    history = inspect(instance).attrs.agency_id.history
    if history.added:
        logger.warning(
            "Blocked agency change on %s: %s -> %s",
            type(instance).__name__,
            history.deleted[0] if history.deleted else "<unloaded>",
            history.added[0],
        )
        raise ImmutableFieldError(type(instance).__name__)


def check_new_instance(instance: AgencyOwnedMixin, agency_id: int | None, bypassed: bool) -> None:
    """Stamp or validate the agency of a pending ``instance``."""

    if agency_id is None:
        return
    if instance.agency_id is None:
        instance.agency_id = agency_id
        return
    if instance.agency_id != agency_id and not bypassed:
        raise TenantMismatchError(type(instance).__name__, agency_id, instance.agency_id)


@event.listens_for(Session, "before_flush")
def _guard_agency_ownership(session: Session, flush_context: Any, instances: Any) -> None:
    agency_id = get_current_tenant_id()
    bypassed = get_active_bypass() is not None

    for instance in session.new:
        if isinstance(instance, AgencyOwnedMixin):
            check_new_instance(instance, agency_id, bypassed)

    for instance in session.dirty:
        if isinstance(instance, AgencyOwnedMixin):
            check_persistent_instance(instance)
