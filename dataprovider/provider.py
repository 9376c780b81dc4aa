"""Resource provider: listing, CRUD, bulk operations and realtime over a backend client.

Soft delete, tenant scoping and audit stamps come from the provider's frozen
`ProviderConfig` and are applied on every call, so callers never hand-write them.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .backends import BackendClient, Channel, QueryBuilder, create_backend
from .config import Settings, get_settings
from .errors import DataProviderError, duplicate, error_code, from_backend, not_found, realtime_unavailable
from .filters import apply_filters, build_search_filter
from .types import CHANGE_TYPES, ChangeEvent, ListResponse, Meta, ProviderConfig, QueryParams
from .utils import utc_now_iso

logger = logging.getLogger(__name__)

ID_FIELD = "id"
CREATED_AT = "created_at"
UPDATED_AT = "updated_at"
CREATED_BY = "created_by"
UPDATED_BY = "updated_by"
DELETED_AT = "deleted_at"
DELETED_BY = "deleted_by"

MetaLike = Union[Meta, Mapping[str, Any], None]
Unsubscribe = Callable[[], None]


def channel_name(resource: str, filter: Optional[str] = None) -> str:
    """One realtime channel per (resource, filter) pair."""
    return f"{resource}_{filter or 'all'}"


def _rows(response: Any) -> List[Dict[str, Any]]:
    return list(getattr(response, "data", None) or [])


def _fill(payload: Dict[str, Any], key: str, value: Any) -> None:
    # caller-supplied values win
    if payload.get(key) is None:
        payload[key] = value


class ResourceProvider:
    """CRUD/listing engine for named resources over a chainable backend client."""

    def __init__(self, client: BackendClient, config: Optional[ProviderConfig] = None) -> None:
        self._client = client
        self.config = config or ProviderConfig()
        # Live realtime channels of this provider, keyed by channel name
        self._channels: Dict[str, Channel] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, client: Optional[BackendClient] = None) -> "ResourceProvider":
        settings = settings or get_settings()
        return cls(client or create_backend(settings), ProviderConfig.from_settings(settings))

    # ---- Policies ----
    def _soft_delete_scope(self, query: QueryBuilder, resource: str, meta: Meta, include_deleted: bool) -> QueryBuilder:
        if not self.config.soft_delete:
            return query
        if include_deleted:
            logger.info("Soft-delete filter bypassed on '%s' by user %s (tenant %s)",
                        resource, meta.user_id, meta.tenant_id)
            return query
        return query.is_(DELETED_AT, None)

    def _tenant_scope(self, query: QueryBuilder, meta: Meta) -> QueryBuilder:
        if self.config.tenant_field and meta.tenant_id is not None:
            return query.eq(self.config.tenant_field, meta.tenant_id)
        return query

    def _stamp_update(self, data: Mapping[str, Any], meta: Meta) -> Dict[str, Any]:
        payload = dict(data)
        if self.config.audit_fields:
            payload[UPDATED_AT] = utc_now_iso()
        if meta.user_id is not None:
            payload[UPDATED_BY] = meta.user_id
        return payload

    @staticmethod
    def _execute(query: QueryBuilder, overrides: Optional[Dict[str, Callable[[Any], DataProviderError]]] = None):
        """Run the query; any backend failure leaves as a DataProviderError."""
        try:
            return query.execute()
        except Exception as exc:  # noqa: BLE001
            code = error_code(exc)
            if overrides and code in overrides:
                raise overrides[code](exc) from exc
            raise from_backend(exc) from exc

    # ---- Reads ----
    def get_list(self, params: Union[QueryParams, Mapping[str, Any]]) -> ListResponse:
        if not isinstance(params, QueryParams):
            params = QueryParams.model_validate(params)
        meta = Meta.of(params.meta)

        query = self._client.table(params.resource).select(params.select, count="exact")
        query = self._soft_delete_scope(query, params.resource, meta, params.include_deleted)
        query = self._tenant_scope(query, meta)
        query = apply_filters(query, params.filters)
        if params.search:
            expression = build_search_filter(params.search, params.search_fields)
            if expression:
                query = query.or_(expression)
            else:
                logger.warning("Search on '%s' ignored: no search fields given", params.resource)

        if params.sort:
            for sort in params.sort:
                query = query.order(sort.field, desc=sort.order == "desc")
        else:
            query = query.order(self.config.default_sort_field, desc=self.config.default_sort_order == "desc")

        page = params.pagination.page if params.pagination else 1
        page_size = params.pagination.page_size if params.pagination else self.config.default_page_size
        start = (page - 1) * page_size
        query = query.range(start, start + page_size - 1)

        response = self._execute(query)
        count = getattr(response, "count", None)
        return ListResponse(data=_rows(response), total=count or 0)

    def get_one(
        self,
        resource: str,
        id: Any,
        *,
        select: str = "*",
        meta: MetaLike = None,
        include_deleted: bool = False,
    ) -> Dict[str, Any]:
        meta = Meta.of(meta)
        query = self._client.table(resource).select(select).eq(ID_FIELD, id)
        query = self._tenant_scope(query, meta)
        query = self._soft_delete_scope(query, resource, meta, include_deleted)

        rows = _rows(self._execute(query, {"PGRST116": not_found}))
        if not rows:
            raise not_found({"resource": resource, "id": id})
        return rows[0]

    # ---- Writes ----
    def create(self, resource: str, data: Mapping[str, Any], *, meta: MetaLike = None) -> Dict[str, Any]:
        meta = Meta.of(meta)
        payload = dict(data)
        if self.config.tenant_field and meta.tenant_id is not None:
            _fill(payload, self.config.tenant_field, meta.tenant_id)
        if self.config.audit_fields:
            now = utc_now_iso()
            _fill(payload, CREATED_AT, now)
            _fill(payload, UPDATED_AT, now)
        if meta.user_id is not None:
            _fill(payload, CREATED_BY, meta.user_id)

        rows = _rows(self._execute(self._client.table(resource).insert(payload), {"23505": duplicate}))
        return rows[0] if rows else payload

    def update(self, resource: str, id: Any, data: Mapping[str, Any], *, meta: MetaLike = None) -> Dict[str, Any]:
        meta = Meta.of(meta)
        query = self._client.table(resource).update(self._stamp_update(data, meta)).eq(ID_FIELD, id)
        query = self._tenant_scope(query, meta)

        rows = _rows(self._execute(query, {"PGRST116": not_found}))
        if not rows:
            raise not_found({"resource": resource, "id": id})
        return rows[0]

    def update_many(self, resource: str, ids: Iterable[Any], data: Mapping[str, Any], *, meta: MetaLike = None) -> None:
        ids = list(ids)
        if not ids:
            return
        meta = Meta.of(meta)
        query = self._client.table(resource).update(self._stamp_update(data, meta)).in_(ID_FIELD, ids)
        self._execute(self._tenant_scope(query, meta))

    def delete(self, resource: str, id: Any, *, meta: MetaLike = None) -> None:
        self._remove(resource, meta, lambda query: query.eq(ID_FIELD, id))

    def delete_many(self, resource: str, ids: Iterable[Any], *, meta: MetaLike = None) -> None:
        ids = list(ids)
        if not ids:
            return
        self._remove(resource, meta, lambda query: query.in_(ID_FIELD, ids))

    def _remove(self, resource: str, meta: MetaLike, narrow: Callable[[QueryBuilder], QueryBuilder]) -> None:
        meta = Meta.of(meta)
        table = self._client.table(resource)
        if self.config.soft_delete:
            # the row stays; reads exclude it through the deleted_at predicate
            payload: Dict[str, Any] = {DELETED_AT: utc_now_iso()}
            if meta.user_id is not None:
                payload[DELETED_BY] = meta.user_id
            query = table.update(payload)
        else:
            query = table.delete()
        self._execute(self._tenant_scope(narrow(query), meta))

    # ---- Escape hatch ----
    def custom(self, resource: str, query: Callable[[Any], Any]) -> Any:
        """Run `query(table_builder)`; it returns `{data, error}` (mapping or attributes)."""
        try:
            result = query(self._client.table(resource))
        except DataProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise from_backend(exc) from exc

        if isinstance(result, Mapping):
            error, data = result.get("error"), result.get("data")
        else:
            error, data = getattr(result, "error", None), getattr(result, "data", None)
        if error:
            raise from_backend(error)
        return data

    # ---- Realtime ----
    @staticmethod
    def _realtime(call: Callable[..., Any], *args: Any) -> Any:
        """Run a channel operation; any backend failure leaves as a DataProviderError."""
        try:
            return call(*args)
        except DataProviderError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise realtime_unavailable(exc) from exc

    def subscribe(
        self,
        resource: str,
        callback: Callable[[ChangeEvent], None],
        filter: Optional[str] = None,
        events: Optional[Iterable[str]] = None,
    ) -> Unsubscribe:
        """Open the change stream for `(resource, filter)`, replacing a live channel of the same name.

        `filter` is a server-side expression such as `tenant_id=eq.42`. Only the event
        kinds in `events` (default: all) reach `callback`.
        """
        wanted = {e.upper() for e in events} if events else set(CHANGE_TYPES)
        name = channel_name(resource, filter)

        existing = self._channels.pop(name, None)
        if existing is not None:
            logger.debug("Replacing realtime channel %s", name)
            self._realtime(self._client.remove_channel, existing)

        def on_change(payload: Mapping[str, Any]) -> None:
            event = ChangeEvent.from_payload(payload)
            if event.event_type in wanted:
                callback(event)

        def open_channel() -> Channel:
            opened = self._client.channel(name)
            opened.on_postgres_changes("*", callback=on_change, table=resource, schema="public", filter=filter)
            opened.subscribe()
            return opened

        channel = self._realtime(open_channel)
        self._channels[name] = channel
        logger.info("Realtime channel %s opened", name)

        closed = False

        def unsubscribe() -> None:
            nonlocal closed
            if closed:
                return
            closed = True
            # a replaced channel was already removed by the subscribe that replaced it
            if self._channels.get(name) is channel:
                del self._channels[name]
                self._realtime(self._client.remove_channel, channel)
                logger.info("Realtime channel %s closed", name)

        return unsubscribe

    @property
    def channels(self) -> Tuple[str, ...]:
        return tuple(self._channels)

    def get_client(self) -> BackendClient:
        return self._client
