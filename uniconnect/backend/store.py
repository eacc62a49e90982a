"""Async, postgrest-style query builder over the SQLAlchemy relational store.

Every statement runs in its own session on a worker thread, is checked against
the access policies of :mod:`uniconnect.backend.policies` and resolves to a
:class:`StoreResponse`. Failures never raise out of ``execute``; callers branch
on ``response.error`` or call ``response.unwrap()``.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Literal, Mapping

from sqlalchemy import DateTime, Table, Uuid, delete, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import Base, SessionLocal
from ..errors import DuplicateRecordError, PermissionDeniedError, StoreOperationError
from .policies import PolicyContext, PolicyViolation, policy_for
from .realtime import ChangeEvent, RealtimeBus

logger = logging.getLogger(__name__)

Row = dict[str, Any]

PERMISSION_DENIED = "42501"
UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"
NOT_NULL_VIOLATION = "23502"
INTEGRITY_VIOLATION = "23000"
INVALID_TEXT_REPRESENTATION = "22P02"
UNDEFINED_TABLE = "42P01"
UNDEFINED_COLUMN = "42703"
MISSING_FILTER = "21000"
NOT_SINGLE_ROW = "PGRST116"
INTERNAL_ERROR = "XX000"


@dataclass(frozen=True)
class StoreError:
    code: str
    message: str
    details: str | None = None


@dataclass
class StoreResponse:
    """Result of one statement: rows on success, a :class:`StoreError` otherwise."""

    data: Any = None
    error: StoreError | None = None
    count: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        if self.error is not None:
            raise error_from(self.error)
        return self.data


def error_from(error: StoreError) -> StoreOperationError:
    if error.code == PERMISSION_DENIED:
        return PermissionDeniedError(error)
    if error.code == UNIQUE_VIOLATION:
        return DuplicateRecordError(error)
    return StoreOperationError(error)


class _StatementFailed(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.error = StoreError(code=code, message=message)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _integrity_code(exc: IntegrityError) -> str:
    pgcode = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if pgcode:
        return str(pgcode)
    text = str(exc.orig).lower()
    if "unique" in text:
        return UNIQUE_VIOLATION
    if "foreign key" in text:
        return FOREIGN_KEY_VIOLATION
    if "check constraint" in text:
        return CHECK_VIOLATION
    if "not null" in text:
        return NOT_NULL_VIOLATION
    return INTEGRITY_VIOLATION


_OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "eq": lambda column, value: column == value,
    "neq": lambda column, value: column != value,
    "gt": lambda column, value: column > value,
    "gte": lambda column, value: column >= value,
    "lt": lambda column, value: column < value,
    "lte": lambda column, value: column <= value,
    "in": lambda column, value: column.in_(value),
    "is": lambda column, value: column.is_(value),
}


class TableQuery:
    """Chainable statement builder returned by :meth:`Store.table`."""

    def __init__(self, store: "Store", table_name: str) -> None:
        self._store = store
        self.table_name = table_name
        self.action: Literal["select", "insert", "upsert", "update", "delete"] = "select"
        self.columns = "*"
        self.payload: Any = None
        self.filters: list[tuple[str, str, Any]] = []
        self.ordering: list[tuple[str, bool]] = []
        self.row_limit: int | None = None
        self.cardinality: Literal["single", "maybe_single"] | None = None
        self.count_mode: Literal["exact"] | None = None
        self.head = False
        self.on_conflict: str | None = None
        self.ignore_duplicates = False

    # statement kind
    def select(self, columns: str = "*", *, count: Literal["exact"] | None = None, head: bool = False) -> "TableQuery":
        self.columns = columns
        self.count_mode = count
        self.head = head
        return self

    def insert(self, rows: Mapping[str, Any] | Iterable[Mapping[str, Any]]) -> "TableQuery":
        self.action = "insert"
        self.payload = [dict(rows)] if isinstance(rows, Mapping) else [dict(row) for row in rows]
        return self

    def upsert(
        self,
        rows: Mapping[str, Any] | Iterable[Mapping[str, Any]],
        *,
        on_conflict: str = "id",
        ignore_duplicates: bool = False,
    ) -> "TableQuery":
        self.insert(rows)
        self.action = "upsert"
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, values: Mapping[str, Any]) -> "TableQuery":
        self.action = "update"
        self.payload = dict(values)
        return self

    def delete(self) -> "TableQuery":
        self.action = "delete"
        return self

    # filters
    def _filter(self, column: str, operator: str, value: Any) -> "TableQuery":
        self.filters.append((column, operator, value))
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "eq", value)

    def neq(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "neq", value)

    def gt(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "gt", value)

    def gte(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "gte", value)

    def lt(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "lt", value)

    def lte(self, column: str, value: Any) -> "TableQuery":
        return self._filter(column, "lte", value)

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        return self._filter(column, "in", list(values))

    def is_(self, column: str, value: bool | None) -> "TableQuery":
        return self._filter(column, "is", value)

    # shaping
    def order(self, column: str, *, desc: bool = False) -> "TableQuery":
        self.ordering.append((column, desc))
        return self

    def limit(self, count: int) -> "TableQuery":
        self.row_limit = count
        return self

    def single(self) -> "TableQuery":
        self.cardinality = "single"
        return self

    def maybe_single(self) -> "TableQuery":
        self.cardinality = "maybe_single"
        return self

    async def execute(self) -> StoreResponse:
        return await self._store._execute(self)


class Store:
    """Entry point of the relational store, optionally bound to an acting user."""

    def __init__(
        self,
        bus: RealtimeBus,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        tables: Mapping[str, Table] | None = None,
        actor_id: uuid.UUID | str | None = None,
        bypass_policies: bool = False,
    ) -> None:
        self.bus = bus
        self._session_factory = session_factory
        self._tables = tables if tables is not None else Base.metadata.tables
        self.actor_id = uuid.UUID(str(actor_id)) if actor_id is not None else None
        self.bypass_policies = bypass_policies

    def as_actor(self, user_id: uuid.UUID | str | None) -> "Store":
        return Store(self.bus, session_factory=self._session_factory, tables=self._tables, actor_id=user_id)

    def service(self) -> "Store":
        return Store(self.bus, session_factory=self._session_factory, tables=self._tables, bypass_policies=True)

    def table(self, name: str) -> TableQuery:
        return TableQuery(self, name)

    async def _execute(self, query: TableQuery) -> StoreResponse:
        response, changes = await asyncio.to_thread(self._run, query)
        if changes:
            self.bus.publish(changes)
        return response

    # worker-thread side
    def _run(self, query: TableQuery) -> tuple[StoreResponse, list[ChangeEvent]]:
        table = self._tables.get(query.table_name)
        if table is None:
            return StoreResponse(error=StoreError(UNDEFINED_TABLE, f'relation "{query.table_name}" does not exist')), []

        with self._session_factory() as session:
            try:
                ctx = None if self.bypass_policies else PolicyContext.load(session, self._tables, self.actor_id)
                handler = getattr(self, f"_run_{query.action}")
                data, count, changes = handler(session, table, query, ctx)
                data = self._shape(query, data)
                session.commit()
            except _StatementFailed as exc:
                session.rollback()
                logger.debug("Store %s on %s failed: %s", query.action, table.name, exc.error.message)
                return StoreResponse(error=exc.error), []
            except PolicyViolation as exc:
                session.rollback()
                logger.warning(
                    "Policy denied %s on %s for actor %s: %s", query.action, table.name, self.actor_id, exc
                )
                return StoreResponse(error=StoreError(PERMISSION_DENIED, str(exc))), []
            except IntegrityError as exc:
                session.rollback()
                code = _integrity_code(exc)
                logger.debug("Integrity error %s on %s: %s", code, table.name, exc.orig)
                return StoreResponse(error=StoreError(code, str(exc.orig))), []
            except SQLAlchemyError as exc:
                session.rollback()
                logger.exception("Store %s on %s failed", query.action, table.name)
                return StoreResponse(error=StoreError(INTERNAL_ERROR, str(exc))), []
        return StoreResponse(data=data, count=count), changes

    @staticmethod
    def _shape(query: TableQuery, rows: list[Row]) -> Any:
        if query.cardinality is None:
            return rows
        if len(rows) == 1:
            return rows[0]
        if not rows and query.cardinality == "maybe_single":
            return None
        raise _StatementFailed(NOT_SINGLE_ROW, f"JSON object requested, multiple (or no) rows returned ({len(rows)})")

    @staticmethod
    def _column(table: Table, name: str):
        column = table.c.get(name)
        if column is None:
            raise _StatementFailed(UNDEFINED_COLUMN, f'column "{name}" of relation "{table.name}" does not exist')
        return column

    def _coerce(self, table: Table, name: str, value: Any) -> Any:
        column = self._column(table, name)
        if value is None:
            return None
        try:
            if isinstance(column.type, Uuid) and not isinstance(value, uuid.UUID):
                return uuid.UUID(str(value))
            if isinstance(column.type, DateTime):
                if isinstance(value, str):
                    value = datetime.fromisoformat(value)
                if isinstance(value, datetime):
                    return _as_utc(value)
        except ValueError as exc:
            raise _StatementFailed(INVALID_TEXT_REPRESENTATION, f"invalid input for {name}: {value!r}") from exc
        return value

    def _values(self, table: Table, raw: Mapping[str, Any]) -> Row:
        return {name: self._coerce(table, name, value) for name, value in raw.items()}

    def _row(self, table: Table, mapping: Mapping[str, Any]) -> Row:
        row: Row = {}
        for column in table.columns:
            value = mapping[column.name]
            if isinstance(value, datetime):
                value = _as_utc(value)
            row[column.name] = value
        return row

    def _project(self, table: Table, query: TableQuery, rows: list[Row]) -> list[Row]:
        if query.columns.strip() == "*":
            return rows
        names = [name.strip() for name in query.columns.split(",") if name.strip()]
        for name in names:
            self._column(table, name)
        return [{name: row[name] for name in names} for row in rows]

    def _filtered(self, table: Table, query: TableQuery, ctx: PolicyContext | None):
        stmt = select(table)
        for name, operator, value in query.filters:
            column = self._column(table, name)
            if operator == "in":
                value = [self._coerce(table, name, item) for item in value]
            elif operator != "is":
                value = self._coerce(table, name, value)
            stmt = stmt.where(_OPERATORS[operator](column, value))
        if ctx is not None:
            clause = policy_for(table.name).visible(ctx, table)
            if clause is not None:
                stmt = stmt.where(clause)
        return stmt

    def _fetch_by_ids(self, session: Session, table: Table, ids: list[Any]) -> list[Row]:
        if not ids:
            return []
        found = {
            row["id"]: self._row(table, row)
            for row in session.execute(select(table).where(table.c.id.in_(ids))).mappings()
        }
        return [found[row_id] for row_id in ids if row_id in found]

    def _run_select(self, session, table, query, ctx):
        stmt = self._filtered(table, query, ctx)
        count = None
        if query.count_mode == "exact":
            count = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
        if query.head:
            return [], count, []
        for name, desc in query.ordering:
            column = self._column(table, name)
            stmt = stmt.order_by(column.desc() if desc else column.asc())
        if query.row_limit is not None:
            stmt = stmt.limit(query.row_limit)
        rows = [self._row(table, row) for row in session.execute(stmt).mappings()]
        return self._project(table, query, rows), count, []

    def _insert_row(self, session: Session, table: Table, values: Row, ctx: PolicyContext | None) -> Any:
        if "id" in table.c and values.get("id") is None:
            values["id"] = uuid.uuid4()
        if ctx is not None:
            policy_for(table.name).check_insert(ctx, values)
        session.execute(insert(table).values(**values))
        return values["id"]

    def _run_insert(self, session, table, query, ctx):
        ids = [self._insert_row(session, table, self._values(table, raw), ctx) for raw in query.payload]
        rows = self._fetch_by_ids(session, table, ids)
        changes = [ChangeEvent(table.name, "INSERT", new=dict(row)) for row in rows]
        return self._project(table, query, rows), len(rows), changes

    def _run_upsert(self, session, table, query, ctx):
        conflict = [name.strip() for name in (query.on_conflict or "id").split(",")]
        affected: list[Row] = []
        changes: list[ChangeEvent] = []
        for raw in query.payload:
            values = self._values(table, raw)
            match = select(table)
            for name in conflict:
                match = match.where(self._column(table, name) == values.get(name))
            existing = session.execute(match).mappings().first()
            if existing is None:
                row_id = self._insert_row(session, table, values, ctx)
                row = self._fetch_by_ids(session, table, [row_id])[0]
                changes.append(ChangeEvent(table.name, "INSERT", new=dict(row)))
                affected.append(row)
                continue
            if query.ignore_duplicates:
                continue
            old = self._row(table, existing)
            changes_to_apply = {name: value for name, value in values.items() if name != "id"}
            if ctx is not None:
                policy_for(table.name).check_update(ctx, old, changes_to_apply)
            session.execute(update(table).where(table.c.id == old["id"]).values(**changes_to_apply))
            row = self._fetch_by_ids(session, table, [old["id"]])[0]
            changes.append(ChangeEvent(table.name, "UPDATE", new=dict(row), old=old))
            affected.append(row)
        return self._project(table, query, affected), len(affected), changes

    def _targets(self, session, table, query, ctx) -> list[Row]:
        if not query.filters:
            raise _StatementFailed(MISSING_FILTER, f"{query.action.upper()} on {table.name} requires a filter")
        return [self._row(table, row) for row in session.execute(self._filtered(table, query, ctx)).mappings()]

    def _run_update(self, session, table, query, ctx):
        values = self._values(table, query.payload)
        old_rows = self._targets(session, table, query, ctx)
        if ctx is not None:
            for old in old_rows:
                policy_for(table.name).check_update(ctx, old, values)
        ids = [row["id"] for row in old_rows]
        if ids:
            session.execute(update(table).where(table.c.id.in_(ids)).values(**values))
        new_rows = self._fetch_by_ids(session, table, ids)
        previous = {row["id"]: row for row in old_rows}
        changes = [ChangeEvent(table.name, "UPDATE", new=dict(row), old=previous[row["id"]]) for row in new_rows]
        return self._project(table, query, new_rows), len(new_rows), changes

    def _run_delete(self, session, table, query, ctx):
        old_rows = self._targets(session, table, query, ctx)
        if ctx is not None:
            for old in old_rows:
                policy_for(table.name).check_delete(ctx, old)
        ids = [row["id"] for row in old_rows]
        if ids:
            session.execute(delete(table).where(table.c.id.in_(ids)))
        changes = [ChangeEvent(table.name, "DELETE", old=dict(row)) for row in old_rows]
        return self._project(table, query, old_rows), len(old_rows), changes


__all__ = [
    "Row",
    "Store",
    "StoreError",
    "StoreResponse",
    "TableQuery",
    "error_from",
    "PERMISSION_DENIED",
    "UNIQUE_VIOLATION",
    "FOREIGN_KEY_VIOLATION",
    "NOT_SINGLE_ROW",
]
