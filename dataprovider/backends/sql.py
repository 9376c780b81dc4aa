"""SQLAlchemy Core backend speaking the same chainable protocol as the Supabase client.

Tables are reflected on first use. Every committed insert/update/delete is published
to the channels subscribed on this backend, which gives local and test setups the
same realtime contract as the hosted backend.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import MetaData, Table, and_, create_engine, delete, func, insert, not_, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, NoSuchTableError, OperationalError, SQLAlchemyError

from ..utils import utc_now_iso

logger = logging.getLogger(__name__)

_OR_CONDITION = re.compile(r"^(\w+)\.(eq|neq|gt|gte|lt|lte|like|ilike|is)\.(.*)$", re.DOTALL)


class SqlBackendError(Exception):
    """Backend failure carrying a PostgreSQL-style SQLSTATE code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    @classmethod
    def from_exception(cls, exc: SQLAlchemyError) -> "SqlBackendError":
        orig = getattr(exc, "orig", None)
        text = str(orig or exc)
        # psycopg2 exposes pgcode, psycopg 3 sqlstate
        code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
        return cls(code or _guess_code(exc, text), text)


def _guess_code(exc: SQLAlchemyError, text: str) -> str:
    lowered = text.lower()
    if isinstance(exc, NoSuchTableError) or "no such table" in lowered:
        return "42P01"
    if "no such column" in lowered or "unconsumed column" in lowered:
        return "42703"
    if isinstance(exc, IntegrityError):
        if "unique" in lowered:
            return "23505"
        if "foreign key" in lowered:
            return "23503"
        if "not null" in lowered:
            return "23502"
        return "23000"
    if isinstance(exc, OperationalError):
        return "08006"
    return "XX000"


@dataclass
class SqlResult:
    data: List[Dict[str, Any]] = field(default_factory=list)
    count: Optional[int] = None


def _column(table: Table, name: str):
    try:
        return table.c[name]
    except KeyError:
        raise SqlBackendError("42703", f'column "{name}" of relation "{table.name}" does not exist') from None


def _selected(table: Table, columns: str) -> list:
    names = [c.strip() for c in (columns or "*").split(",") if c.strip()]
    if not names or "*" in names:
        return list(table.c)
    return [_column(table, n) for n in names]


def _primary_key(table: Table, row: Dict[str, Any]) -> Tuple:
    names = [c.name for c in table.primary_key.columns] or ["id"]
    return tuple(row.get(n) for n in names)


def _or_condition(table: Table, condition: str):
    match = _OR_CONDITION.match(condition.strip())
    if match is None:
        raise SqlBackendError("PGRST100", f'failed to parse logic tree ("{condition}")')
    name, op, value = match.groups()
    column = _column(table, name)
    if op == "is":
        return column.is_({"null": None, "true": True, "false": False}.get(value.lower(), value))
    if op in ("like", "ilike"):
        return getattr(column, op)(value, escape="\\")
    return {
        "eq": column == value,
        "neq": column != value,
        "gt": column > value,
        "gte": column >= value,
        "lt": column < value,
        "lte": column <= value,
    }[op]


class SqlQuery:
    """Accumulates predicates, ordering and a row window; runs them in `execute()`."""

    def __init__(
        self,
        backend: "SqlBackend",
        table: str,
        action: str,
        columns: str = "*",
        count: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> None:
        self._backend = backend
        self._table = table
        self._action = action
        self._columns = columns
        self._count = count
        self._payload = payload
        self._where: List[Callable[[Table], Any]] = []
        self._order: List[Tuple[str, bool]] = []
        self._range: Optional[Tuple[int, int]] = None
        self._negate = False

    # ---- Predicates ----
    def _add(self, column: str, build: Callable[[Any], Any]) -> "SqlQuery":
        negate, self._negate = self._negate, False

        def clause(table: Table):
            expr = build(_column(table, column))
            return not_(expr) if negate else expr

        self._where.append(clause)
        return self

    def eq(self, column: str, value: Any) -> "SqlQuery":
        return self._add(column, lambda c: c == value)

    def neq(self, column: str, value: Any) -> "SqlQuery":
        return self._add(column, lambda c: c != value)

    def gt(self, column: str, value: Any) -> "SqlQuery":
        return self._add(column, lambda c: c > value)

    def gte(self, column: str, value: Any) -> "SqlQuery":
        return self._add(column, lambda c: c >= value)

    def lt(self, column: str, value: Any) -> "SqlQuery":
        return self._add(column, lambda c: c < value)

    def lte(self, column: str, value: Any) -> "SqlQuery":
        return self._add(column, lambda c: c <= value)

    def ilike(self, column: str, pattern: str) -> "SqlQuery":
        return self._add(column, lambda c: c.ilike(pattern))

    def in_(self, column: str, values: list) -> "SqlQuery":
        values = list(values)
        return self._add(column, lambda c: c.in_(values))

    def is_(self, column: str, value: Any) -> "SqlQuery":
        if value == "null":
            value = None
        return self._add(column, lambda c: c.is_(value))

    def or_(self, filters: str) -> "SqlQuery":
        """PostgREST logic tree: comma separated `column.op.value` conditions, any of which may match."""
        negate, self._negate = self._negate, False

        def clause(table: Table):
            expr = or_(*[_or_condition(table, part) for part in filters.split(",")])
            return not_(expr) if negate else expr

        self._where.append(clause)
        return self

    @property
    def not_(self) -> "SqlQuery":
        self._negate = True
        return self

    def order(self, column: str, *, desc: bool = False) -> "SqlQuery":
        self._order.append((column, desc))
        return self

    def range(self, start: int, end: int) -> "SqlQuery":
        self._range = (start, end)
        return self

    # ---- Execution ----
    def execute(self) -> SqlResult:
        try:
            table = self._backend.reflect(self._table)
            where = [clause(table) for clause in self._where]
            with self._backend.engine.begin() as conn:
                result, events = getattr(self, f"_run_{self._action}")(conn, table, where)
        except SQLAlchemyError as exc:
            raise SqlBackendError.from_exception(exc) from exc

        for event_type, new, old in events:
            self._backend.publish(self._table, event_type, new, old)
        return result

    def _run_select(self, conn, table: Table, where: list):
        stmt = select(*_selected(table, self._columns))
        if where:
            stmt = stmt.where(and_(*where))
        for column, desc in self._order:
            col = _column(table, column)
            stmt = stmt.order_by(col.desc() if desc else col.asc())
        if self._range is not None:
            start, end = self._range
            stmt = stmt.offset(start).limit(max(end - start + 1, 0))
        rows = [dict(r) for r in conn.execute(stmt).mappings()]

        count = None
        if self._count == "exact":
            count_stmt = select(func.count()).select_from(table)
            if where:
                count_stmt = count_stmt.where(and_(*where))
            count = conn.execute(count_stmt).scalar_one()
        return SqlResult(rows, count), []

    def _run_insert(self, conn, table: Table, where: list):
        payloads = self._payload if isinstance(self._payload, list) else [self._payload]
        rows = []
        for payload in payloads:
            stmt = insert(table).values(**payload).returning(*table.c)
            rows.append(dict(conn.execute(stmt).mappings().one()))
        return SqlResult(rows, len(rows)), [("INSERT", row, {}) for row in rows]

    def _run_update(self, conn, table: Table, where: list):
        before = select(table)
        stmt = update(table).values(**self._payload).returning(*table.c)
        if where:
            before = before.where(and_(*where))
            stmt = stmt.where(and_(*where))
        old = {_primary_key(table, dict(r)): dict(r) for r in conn.execute(before).mappings()}
        rows = [dict(r) for r in conn.execute(stmt).mappings()]
        events = [("UPDATE", row, old.get(_primary_key(table, row), {})) for row in rows]
        return SqlResult(rows, len(rows)), events

    def _run_delete(self, conn, table: Table, where: list):
        stmt = delete(table).returning(*table.c)
        if where:
            stmt = stmt.where(and_(*where))
        rows = [dict(r) for r in conn.execute(stmt).mappings()]
        return SqlResult(rows, len(rows)), [("DELETE", {}, row) for row in rows]


class SqlTable:
    def __init__(self, backend: "SqlBackend", name: str) -> None:
        self._backend = backend
        self.name = name

    def select(self, columns: str = "*", count: Optional[str] = None) -> SqlQuery:
        return SqlQuery(self._backend, self.name, "select", columns=columns, count=count)

    def insert(self, payload) -> SqlQuery:
        return SqlQuery(self._backend, self.name, "insert", payload=payload)

    def update(self, payload: dict) -> SqlQuery:
        return SqlQuery(self._backend, self.name, "update", payload=payload)

    def delete(self) -> SqlQuery:
        return SqlQuery(self._backend, self.name, "delete")


# ---- Change feed ----
_FILTER_RE = re.compile(r"^(\w+)=(eq|neq|lt|lte|gt|gte|in)\.(.*)$")


def _compare(op: str, actual: Any, expected: str) -> bool:
    if op == "in":
        options = [o.strip().strip('"') for o in expected.strip("()").split(",")]
        return str(actual) in options
    if op in ("eq", "neq"):
        return (str(actual) == expected) is (op == "eq")
    if actual is None:
        return False
    try:
        left, right = float(actual), float(expected)
    except (TypeError, ValueError):
        left, right = str(actual), expected
    return {"lt": left < right, "lte": left <= right, "gt": left > right, "gte": left >= right}[op]


@dataclass
class _Binding:
    event: str
    callback: Callable[[dict], None]
    table: str
    filter: Optional[str]

    def matches(self, table: str, payload: dict) -> bool:
        if self.event not in ("*", payload["eventType"]):
            return False
        if self.table not in ("*", table):
            return False
        if not self.filter:
            return True
        parsed = _FILTER_RE.match(self.filter)
        if not parsed:
            logger.warning("Unsupported realtime filter %r; events not delivered", self.filter)
            return False
        column, op, expected = parsed.groups()
        row = payload["new"] or payload["old"]
        return _compare(op, row.get(column), expected)


class SqlChannel:
    def __init__(self, backend: "SqlBackend", name: str) -> None:
        self._backend = backend
        self.name = name
        self.joined = False
        self._bindings: List[_Binding] = []

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None) -> "SqlChannel":
        self._bindings.append(_Binding(event, callback, table, filter))
        return self

    def subscribe(self) -> "SqlChannel":
        self.joined = True
        self._backend._join(self)
        return self

    def unsubscribe(self) -> None:
        self.joined = False
        self._backend._leave(self)

    def dispatch(self, table: str, payload: dict) -> None:
        for binding in self._bindings:
            if binding.matches(table, payload):
                binding.callback(payload)


class SqlBackend:
    """Relational backend over a SQLAlchemy engine."""

    def __init__(self, engine: Engine, schema: Optional[str] = None) -> None:
        self.engine = engine
        self.metadata = MetaData(schema=schema)
        self._tables: Dict[str, Table] = {}
        self._channels: List[SqlChannel] = []

    @classmethod
    def from_url(cls, url: str) -> "SqlBackend":
        return cls(create_engine(url, pool_pre_ping=True))

    def reflect(self, name: str) -> Table:
        table = self._tables.get(name)
        if table is None:
            table = Table(name, self.metadata, autoload_with=self.engine)
            self._tables[name] = table
        return table

    def table(self, name: str) -> SqlTable:
        return SqlTable(self, name)

    # ---- Realtime ----
    def channel(self, name: str) -> SqlChannel:
        return SqlChannel(self, name)

    def remove_channel(self, channel: SqlChannel) -> None:
        channel.unsubscribe()

    def _join(self, channel: SqlChannel) -> None:
        if channel not in self._channels:
            self._channels.append(channel)

    def _leave(self, channel: SqlChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    def publish(self, table: str, event_type: str, new: dict, old: dict) -> None:
        payload = {
            "schema": self.metadata.schema or "public",
            "table": table,
            "eventType": event_type,
            "new": new,
            "old": old,
            "commit_timestamp": utc_now_iso(),
        }
        for channel in list(self._channels):
            try:
                channel.dispatch(table, payload)
            except Exception:  # noqa: BLE001
                logger.exception("Realtime listener on channel %s failed", channel.name)
