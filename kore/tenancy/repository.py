"""Agency-scoped data access over a SQLAlchemy session.

:class:`ScopedRepository` wraps one tenant-owned model and rewrites every
statement it executes so that it only touches rows of the current agency:

* the root table receives an explicit ``agency_id = :current`` predicate;
* every tenant-owned entity appearing anywhere in the statement (joins,
  aliases, relationship loads triggered by the result) receives the same
  predicate through :func:`sqlalchemy.orm.with_loader_criteria`.

The filter is part of the SQL sent to the database; rows of other agencies
are never fetched. Without a tenant context every operation fails with
:class:`~kore.core.exceptions.NoActiveTenantError` before any SQL is emitted,
unless a :class:`~kore.tenancy.bypass.ScopeBypass` is active, in which case
statements pass through unmodified and the access is recorded on the bypass.

Typical use inside a request::

    repo = ScopedRepository(session, Building)
    repo.list({"city": "Casablanca"}, order_by=Building.name)

    stmt = (
        repo.select(Unit)
        .join(Building, Unit.building_id == Building.id)
        .where(Building.city == "Rabat")
    )
    units = repo.scalars(stmt).all()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Generic, TypeVar

from sqlalchemy import Delete, Select, delete, func, inspect, select
from sqlalchemy.engine import Result, ScalarResult
from sqlalchemy.orm import MANYTOONE, Session, with_loader_criteria
from sqlalchemy.orm.util import LoaderCriteriaOption
from sqlalchemy.sql.elements import ColumnElement, TextClause

from kore.core.exceptions import (
    ImmutableFieldError,
    NoActiveTenantError,
    TenantMismatchError,
)
from kore.core.tenant_context import coerce_agency_id, get_current_tenant_id
from kore.models import AgencyOwnedMixin, Base

from .bypass import get_active_bypass

__all__ = ["Criteria", "ScopedRepository", "agency_criteria", "ensure_orm_references"]

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=AgencyOwnedMixin)
Criteria = Mapping[str, Any]

AGENCY_FIELD = "agency_id"


def agency_criteria(agency_id: int) -> LoaderCriteriaOption:
    """Loader criteria restricting every tenant-owned entity to ``agency_id``."""

    return with_loader_criteria(
        AgencyOwnedMixin,
        lambda cls: cls.agency_id == agency_id,
        include_aliases=True,
    )


def _tenant_schema_items() -> set[int]:
    items: set[int] = set()
    for mapper in Base.registry.mappers:
        if issubclass(mapper.class_, AgencyOwnedMixin):
            table = mapper.local_table
            items.add(id(table))
            items.update(id(column) for column in table.c)
    return items


def ensure_orm_references(*elements: Any) -> None:
    """Reject Core references to tenant-owned tables inside ``elements``.

    Loader criteria only reach mapped entities and their attributes. A plain
    ``Table``, ``Column`` or alias of a tenant-owned model, and textual SQL,
    would run unfiltered, so they raise :class:`TypeError` instead.
    """

    plain = _tenant_schema_items()
    stack = list(elements)
    seen: set[int] = set()
    while stack:
        element = stack.pop()
        if id(element) in seen:
            continue
        seen.add(id(element))
        if isinstance(element, TextClause):
            raise TypeError("Textual SQL cannot be scoped to an agency.")
        if id(element) in plain:
            raise TypeError(
                f"{element!r} refers to a tenant-owned table without its mapped "
                "class and cannot be scoped to an agency."
            )
        # mapped entities and attributes
        if "parententity" in getattr(element, "_annotations", {}):
            continue
        get_children = getattr(element, "get_children", None)
        if callable(get_children):
            stack.extend(get_children())


class ScopedRepository(Generic[ModelT]):
    """Tenant-isolating repository for a single ``AgencyOwnedMixin`` model.

    Args:
        session: Session bound to the current operation. The repository never
            commits; transaction boundaries belong to the caller.
        model: Mapped class inheriting :class:`~kore.models.AgencyOwnedMixin`.
    """

    def __init__(self, session: Session, model: type[ModelT]) -> None:
        if not (isinstance(model, type) and issubclass(model, AgencyOwnedMixin)):
            raise TypeError(f"{model!r} is not a tenant-owned model.")
        self._session = session
        self._model = model
        self._mapper = inspect(model)
        self._columns = frozenset(attr.key for attr in self._mapper.column_attrs)

    @property
    def model(self) -> type[ModelT]:
        return self._model

    @property
    def entity_type(self) -> str:
        return self._model.__name__

    @property
    def session(self) -> Session:
        return self._session

    # Scope resolution --------------------------------------------------------
    def _resolve_scope(
        self, operation: str, criteria: Criteria | None = None
    ) -> int | None:
        """Return the agency to filter on, or ``None`` when bypassed."""

        bypass = get_active_bypass()
        if bypass is not None:
            detail = {"criteria": sorted(criteria)} if criteria else None
            bypass.record(operation, self.entity_type, detail=detail)
            return None
        agency_id = get_current_tenant_id()
        if agency_id is None:
            logger.error(
                "Refused %s on %s without an agency context", operation, self.entity_type
            )
            raise NoActiveTenantError(operation, self.entity_type)
        return agency_id

    def _conditions(
        self, criteria: Criteria | None, where: Iterable[ColumnElement[bool]] = ()
    ) -> list[ColumnElement[bool]]:
        conditions: list[ColumnElement[bool]] = []
        for key, value in (criteria or {}).items():
            if key not in self._columns:
                raise ValueError(f"{self.entity_type} has no column named {key!r}.")
            column = getattr(self._model, key)
            if isinstance(value, (list, tuple, set, frozenset)):
                conditions.append(column.in_(list(value)))
            elif value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == value)
        conditions.extend(where)
        return conditions

    def _scope_statement(self, statement: Any, agency_id: int | None) -> Any:
        if agency_id is None:
            return statement
        ensure_orm_references(statement)
        return statement.options(agency_criteria(agency_id))

    def _filtered_select(
        self,
        agency_id: int | None,
        criteria: Criteria | None,
        where: Iterable[ColumnElement[bool]],
    ) -> Select[tuple[ModelT]]:
        statement = select(self._model).where(*self._conditions(criteria, where))
        if agency_id is not None:
            statement = statement.where(self._model.agency_id == agency_id)
        return self._scope_statement(statement, agency_id)

    # Reads -------------------------------------------------------------------
    def find(
        self,
        criteria: Criteria | None = None,
        *,
        where: Iterable[ColumnElement[bool]] = (),
    ) -> ModelT | None:
        """Return the first matching record of the current agency, or ``None``."""

        agency_id = self._resolve_scope("find", criteria)
        statement = self._filtered_select(agency_id, criteria, where).limit(1)
        return self._session.scalars(statement).first()

    def get(self, record_id: Any) -> ModelT | None:
        """Return the record with primary key ``record_id`` if it is visible."""

        return self.find({"id": record_id})

    def list(
        self,
        criteria: Criteria | None = None,
        *,
        where: Iterable[ColumnElement[bool]] = (),
        order_by: Any = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ModelT]:
        """Return every matching record of the current agency."""

        agency_id = self._resolve_scope("list", criteria)
        statement = self._filtered_select(agency_id, criteria, where)
        if order_by is not None:
            if isinstance(order_by, (list, tuple)):
                statement = statement.order_by(*order_by)
            else:
                statement = statement.order_by(order_by)
        if limit is not None:
            statement = statement.limit(limit)
        if offset is not None:
            statement = statement.offset(offset)
        return list(self._session.scalars(statement).all())

    def count(
        self,
        criteria: Criteria | None = None,
        *,
        where: Iterable[ColumnElement[bool]] = (),
    ) -> int:
        """Count matching records of the current agency."""

        agency_id = self._resolve_scope("count", criteria)
        statement = (
            select(func.count())
            .select_from(self._model)
            .where(*self._conditions(criteria, where))
        )
        if agency_id is not None:
            statement = statement.where(self._model.agency_id == agency_id)
        statement = self._scope_statement(statement, agency_id)
        return int(self._session.execute(statement).scalar_one())

    # Composed statements -----------------------------------------------------
    def select(self, *entities: Any) -> Select[Any]:
        """Start a ``SELECT`` of ``entities`` (default: the repository model).

        The statement is not scoped yet; pass it to :meth:`execute` or
        :meth:`scalars`, which inject the agency predicate on every
        tenant-owned entity it references.
        """

        return select(*(entities or (self._model,)))

    @staticmethod
    def _require_select(statement: Any) -> None:
        if not isinstance(statement, Select):
            raise TypeError(f"Expected a SELECT statement, got {type(statement).__name__}.")

    def execute(self, statement: Select[Any], *, operation: str = "query") -> Result[Any]:
        """Execute an ORM ``SELECT`` with agency scoping applied to all entities.

        Raises:
            TypeError: If ``statement`` is not a ``SELECT``, or if it reaches a
                tenant-owned table through Core constructs (``Model.__table__``,
                its columns, aliases of it, textual SQL) while scoped.
        """

        self._require_select(statement)
        agency_id = self._resolve_scope(operation)
        return self._session.execute(self._scope_statement(statement, agency_id))

    def scalars(self, statement: Select[Any], *, operation: str = "query") -> ScalarResult[Any]:
        """Like :meth:`execute` but returning the first column as scalars."""

        self._require_select(statement)
        agency_id = self._resolve_scope(operation)
        return self._session.scalars(self._scope_statement(statement, agency_id))

    # Writes ------------------------------------------------------------------
    def create(self, record: ModelT | Criteria) -> ModelT:
        """Persist a new record stamped with the current agency.

        Raises:
            NoActiveTenantError: Without tenant context and without bypass, or
                under a bypass when neither the record nor the context names an
                agency.
            TenantMismatchError: If the record, or a tenant-owned row it
                references, belongs to another agency and no bypass is active.
        """

        instance = record if isinstance(record, self._model) else self._model(**record)
        current = get_current_tenant_id()
        bypass = get_active_bypass()

        if instance.agency_id is not None:
            instance.agency_id = coerce_agency_id(instance.agency_id)

        if bypass is None:
            if current is None:
                raise NoActiveTenantError("create", self.entity_type)
            if instance.agency_id is None:
                instance.agency_id = current
            elif instance.agency_id != current:
                logger.warning(
                    "Refused to create %s for agency %s from agency %s",
                    self.entity_type,
                    instance.agency_id,
                    current,
                )
                raise TenantMismatchError(self.entity_type, current, instance.agency_id)
        else:
            if instance.agency_id is None:
                if current is None:
                    raise NoActiveTenantError("create", self.entity_type)
                instance.agency_id = current
            bypass.record("create", self.entity_type, detail={"agency_id": instance.agency_id})

        self._check_references(instance)
        self._session.add(instance)
        self._session.flush()
        return instance

    def update(self, record: ModelT, changes: Criteria) -> ModelT:
        """Apply ``changes`` to ``record`` and flush.

        Raises:
            ImmutableFieldError: If ``changes`` touches ``agency_id``; this holds
                under a bypass too.
            TenantMismatchError: If ``record`` belongs to another agency and no
                bypass is active, or if a changed reference points at a row of
                another agency. In the latter case ``record`` is restored.
            ValueError: If ``changes`` names an unknown column.
        """

        if AGENCY_FIELD in changes:
            raise ImmutableFieldError(self.entity_type, AGENCY_FIELD)
        if not isinstance(record, self._model):
            raise TypeError(f"Expected a {self.entity_type} instance, got {type(record)!r}.")

        agency_id = self._resolve_scope("update", changes)
        if agency_id is not None and record.agency_id != agency_id:
            raise TenantMismatchError(self.entity_type, agency_id, record.agency_id)

        unknown = set(changes) - self._columns
        if unknown:
            raise ValueError(
                f"{self.entity_type} has no column(s) named {', '.join(sorted(unknown))}."
            )
        previous = {key: getattr(record, key) for key in changes}
        for key, value in changes.items():
            setattr(record, key, value)
        try:
            self._check_references(record)
        except TenantMismatchError:
            for key, value in previous.items():
                setattr(record, key, value)
            raise

        self._session.flush()
        return record

    def delete(
        self,
        criteria: Criteria | None = None,
        *,
        where: Iterable[ColumnElement[bool]] = (),
    ) -> int:
        """Delete matching records of the current agency; return the row count."""

        agency_id = self._resolve_scope("delete", criteria)
        statement: Delete = delete(self._model).where(*self._conditions(criteria, where))
        if agency_id is not None:
            statement = statement.where(self._model.agency_id == agency_id)
        statement = self._scope_statement(statement, agency_id)
        result = self._session.execute(
            statement, execution_options={"synchronize_session": "fetch"}
        )
        return int(result.rowcount or 0)

    # Association checks ------------------------------------------------------
    def _check_references(self, instance: ModelT) -> None:
        """Ensure many-to-one targets that are tenant-owned share the agency.

        Without a bypass the lookup only sees rows of the record's agency: a
        foreign row and a missing row are refused alike, and the error never
        names the other agency.
        """

        scoped = get_active_bypass() is None
        for relationship in self._mapper.relationships:
            if relationship.direction is not MANYTOONE:
                continue
            target = relationship.mapper.class_
            if not issubclass(target, AgencyOwnedMixin):
                continue

            visible, parent_agency = self._referenced_agency(
                instance, relationship, target, scoped=scoped
            )
            detail = f"{self.entity_type}.{relationship.key} cannot cross agencies."
            if not visible:
                logger.warning(
                    "Refused %s.%s pointing outside agency %s",
                    self.entity_type,
                    relationship.key,
                    instance.agency_id,
                )
                raise TenantMismatchError(target.__name__, instance.agency_id, None, detail=detail)
            if parent_agency is not None and parent_agency != instance.agency_id:
                raise TenantMismatchError(
                    target.__name__, instance.agency_id, parent_agency, detail=detail
                )

    def _referenced_agency(
        self, instance: ModelT, relationship: Any, target: type, *, scoped: bool
    ) -> tuple[bool, int | None]:
        pairs = list(relationship.local_remote_pairs)
        if len(pairs) == 1:
            local, remote = pairs[0]
            value = getattr(instance, self._mapper.get_property_by_column(local).key)
            if value is not None:
                statement = select(target.agency_id).where(remote == value)
                if scoped:
                    statement = statement.where(target.agency_id == instance.agency_id)
                with self._session.no_autoflush:
                    agency_id = self._session.execute(statement).scalar_one_or_none()
                return agency_id is not None or not scoped, agency_id

        loaded = inspect(instance).attrs[relationship.key].loaded_value
        if isinstance(loaded, AgencyOwnedMixin):
            return True, loaded.agency_id
        return True, None
