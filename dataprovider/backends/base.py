from __future__ import annotations

from typing import Any, Callable, Optional, Protocol


class QueryBuilder(Protocol):
    """Chainable PostgREST-style builder: each call returns a builder, `execute()` runs it.

    `not_` negates the predicate that follows it. `execute()` returns an object with
    `.data` (list of row dicts) and `.count` (int or None) and raises on backend failure.
    """

    def eq(self, column: str, value: Any) -> "QueryBuilder": ...

    def neq(self, column: str, value: Any) -> "QueryBuilder": ...

    def gt(self, column: str, value: Any) -> "QueryBuilder": ...

    def gte(self, column: str, value: Any) -> "QueryBuilder": ...

    def lt(self, column: str, value: Any) -> "QueryBuilder": ...

    def lte(self, column: str, value: Any) -> "QueryBuilder": ...

    def ilike(self, column: str, pattern: str) -> "QueryBuilder": ...

    def in_(self, column: str, values: list) -> "QueryBuilder": ...

    def is_(self, column: str, value: Any) -> "QueryBuilder": ...

    def or_(self, filters: str) -> "QueryBuilder": ...

    @property
    def not_(self) -> "QueryBuilder": ...

    def order(self, column: str, *, desc: bool = False) -> "QueryBuilder": ...

    def range(self, start: int, end: int) -> "QueryBuilder": ...

    def execute(self) -> Any: ...


class TableRef(Protocol):
    """Entry point for one resource: starts a read or a write."""

    def select(self, columns: str = "*", count: Optional[str] = None) -> QueryBuilder: ...

    def insert(self, payload: dict) -> QueryBuilder: ...

    def update(self, payload: dict) -> QueryBuilder: ...

    def delete(self) -> QueryBuilder: ...


class Channel(Protocol):
    """Live change stream for one or more tables."""

    def on_postgres_changes(
        self,
        event: str,
        callback: Callable[[dict], None],
        table: str = "*",
        schema: str = "public",
        filter: Optional[str] = None,
    ) -> "Channel": ...

    def subscribe(self) -> Any: ...


class BackendClient(Protocol):
    """What the provider needs from a backend connection. Supabase's client matches it."""

    def table(self, name: str) -> TableRef: ...

    def channel(self, name: str) -> Channel: ...

    def remove_channel(self, channel: Channel) -> Any: ...
