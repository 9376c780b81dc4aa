import os
from typing import Any, Dict, List, Optional

import pytest
from flask import Flask
from flask_caching import Cache
from sqlalchemy import Column, Float, Integer, MetaData, String, Table, create_engine
from sqlalchemy.pool import StaticPool

# Ensure a predictable environment before importing the package
os.environ.setdefault("DISABLE_AUTH", "1")
os.environ.setdefault("DATA_BACKEND", "SQL")
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("CACHE_TYPE", "SimpleCache")
os.environ.setdefault("CACHE_TIMEOUT_SECONDS", "5")
os.environ.setdefault("LOG_LEVEL", "WARNING")


# ---- Recording fakes for the chainable client ----
class FakeResponse:
    def __init__(self, data=None, count=None) -> None:
        self.data = data
        self.count = count


class FakeBackendError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class FakeQuery:
    """Records every chained call as a tuple; `not_` prefixes the next one with 'not.'."""

    def __init__(self, client: "FakeClient", table: str) -> None:
        self.client = client
        self.table = table
        self.calls: List[tuple] = []
        self._negate = False

    def _record(self, name: str, *args) -> "FakeQuery":
        if self._negate:
            name, self._negate = f"not.{name}", False
        self.calls.append((name, *args))
        return self

    def select(self, columns="*", count=None):
        return self._record("select", columns, count)

    def insert(self, payload):
        return self._record("insert", payload)

    def update(self, payload):
        return self._record("update", payload)

    def delete(self):
        return self._record("delete")

    def eq(self, column, value):
        return self._record("eq", column, value)

    def neq(self, column, value):
        return self._record("neq", column, value)

    def gt(self, column, value):
        return self._record("gt", column, value)

    def gte(self, column, value):
        return self._record("gte", column, value)

    def lt(self, column, value):
        return self._record("lt", column, value)

    def lte(self, column, value):
        return self._record("lte", column, value)

    def ilike(self, column, pattern):
        return self._record("ilike", column, pattern)

    def in_(self, column, values):
        return self._record("in_", column, values)

    def is_(self, column, value):
        return self._record("is_", column, value)

    def or_(self, filters):
        return self._record("or_", filters)

    @property
    def not_(self):
        self._negate = True
        return self

    def order(self, column, *, desc=False):
        return self._record("order", column, desc)

    def range(self, start, end):
        return self._record("range", start, end)

    def execute(self):
        self.client.executed.append(self)
        if self.client.error is not None:
            raise self.client.error
        return FakeResponse(self.client.data, self.client.count)


class FakeChannel:
    def __init__(self, name: str) -> None:
        self.name = name
        self.bindings: List[Dict[str, Any]] = []
        self.subscribed = False

    def on_postgres_changes(self, event, callback, table="*", schema="public", filter=None):
        self.bindings.append({"event": event, "callback": callback, "table": table, "filter": filter})
        return self

    def subscribe(self):
        self.subscribed = True
        return self

    def emit(self, payload: Dict[str, Any]) -> None:
        for binding in self.bindings:
            binding["callback"](payload)


class FakeClient:
    """Stands in for a Supabase client; every execute returns `data`/`count` or raises `error`."""

    def __init__(self) -> None:
        self.queries: List[FakeQuery] = []
        self.executed: List[FakeQuery] = []
        self.channels: List[FakeChannel] = []
        self.removed: List[FakeChannel] = []
        self.data: Optional[list] = []
        self.count: Optional[int] = None
        self.error: Optional[Exception] = None

    def table(self, name: str) -> FakeQuery:
        query = FakeQuery(self, name)
        self.queries.append(query)
        return query

    def channel(self, name: str) -> FakeChannel:
        channel = FakeChannel(name)
        self.channels.append(channel)
        return channel

    def remove_channel(self, channel: FakeChannel) -> None:
        self.removed.append(channel)

    @property
    def last(self) -> FakeQuery:
        return self.queries[-1]


@pytest.fixture()
def fake_client() -> FakeClient:
    return FakeClient()


# ---- SQLite ----
def item_columns():
    return (
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("name", String(100), nullable=False, unique=True),
        Column("category", String(50)),
        Column("price", Float),
        Column("tenant_id", String(20)),
        Column("created_at", String(40)),
        Column("updated_at", String(40)),
        Column("created_by", String(100)),
        Column("updated_by", String(100)),
        Column("deleted_at", String(40)),
        Column("deleted_by", String(100)),
    )


@pytest.fixture()
def engine():
    """In-memory SQLite shared across connections, with an `items` table."""
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    metadata = MetaData()
    Table("items", metadata, *item_columns())
    metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def sql_backend(engine):
    from dataprovider.backends import SqlBackend

    return SqlBackend(engine)


@pytest.fixture()
def flask_cache() -> Cache:
    server = Flask(__name__)
    return Cache(server, config={"CACHE_TYPE": "SimpleCache", "CACHE_DEFAULT_TIMEOUT": 60})


@pytest.fixture()
def backend_error():
    """Factory for errors shaped like the hosted client's (`code` + `message`)."""
    return FakeBackendError
