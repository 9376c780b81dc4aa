from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from flask_caching import Cache

from .cache import CacheFacade
from .config import Settings, get_settings
from .keys import list_key, one_key
from .provider import MetaLike, ResourceProvider, Unsubscribe
from .types import ChangeEvent, Filter, ListResponse, Pagination, QueryParams, Sort

logger = logging.getLogger(__name__)

ParamsLike = Union[QueryParams, Mapping[str, Any]]


def _params(params: ParamsLike) -> QueryParams:
    if isinstance(params, QueryParams):
        return params
    return QueryParams.model_validate(params)


def _item_scope(resource: str, id: Any) -> str:
    return f"{resource}:{id}"


class ResourceRepository:
    """Cache-aware reads and mutations over a ResourceProvider.

    Reads are memoized per canonical parameter set, so identical queries share one entry.
    A mutation invalidates its resource only after the provider call returned; a failed
    mutation raises unchanged and leaves the cache untouched.
    """

    def __init__(
        self,
        provider: ResourceProvider,
        cache_facade: Optional[CacheFacade] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.provider = provider
        self.cache_facade = cache_facade or CacheFacade(cache=None, timeout_seconds=self.settings.cache_timeout_seconds)

    # ---- Cache wiring ----
    def set_cache(self, cache: Cache) -> None:
        self.cache_facade = CacheFacade(cache, timeout_seconds=self.settings.cache_timeout_seconds)

    def _list_key(self, params: QueryParams) -> str:
        return self.cache_facade.scoped(list_key(params), params.resource)

    def _one_key(self, resource: str, id: Any, select: str, meta: MetaLike, include_deleted: bool) -> str:
        key = one_key(resource, id, select, meta, include_deleted)
        return self.cache_facade.scoped(key, resource, _item_scope(resource, id))

    # ---- Reads ----
    def get_list(self, params: ParamsLike) -> ListResponse:
        params = _params(params)
        return self.cache_facade.get_or_load(self._list_key(params), lambda: self.provider.get_list(params))

    def get_one(
        self,
        resource: str,
        id: Any,
        *,
        select: str = "*",
        meta: MetaLike = None,
        include_deleted: bool = False,
    ) -> Dict[str, Any]:
        key = self._one_key(resource, id, select, meta, include_deleted)
        return self.cache_facade.get_or_load(
            key,
            lambda: self.provider.get_one(resource, id, select=select, meta=meta, include_deleted=include_deleted),
        )

    def prefetch(self, params: ParamsLike) -> None:
        self.get_list(params)

    def refresh(self, params: ParamsLike) -> ListResponse:
        """Drop the cached entry for exactly these parameters and load it again."""
        params = _params(params)
        self.cache_facade.delete(self._list_key(params))
        return self.get_list(params)

    def invalidate(self, resource: str, id: Any = None) -> None:
        """Invalidate every cached read of `resource`, or only the record `id`."""
        self.cache_facade.bump(resource if id is None else _item_scope(resource, id))

    # ---- Mutations ----
    def create(self, resource: str, data: Mapping[str, Any], *, meta: MetaLike = None, invalidate_list: bool = True) -> Dict[str, Any]:
        record = self.provider.create(resource, data, meta=meta)
        if invalidate_list:
            self.invalidate(resource)
        return record

    def update(
        self,
        resource: str,
        id: Any,
        data: Mapping[str, Any],
        *,
        meta: MetaLike = None,
        invalidate_list: bool = True,
    ) -> Dict[str, Any]:
        record = self.provider.update(resource, id, data, meta=meta)
        if invalidate_list:
            self.invalidate(resource)
        self.invalidate(resource, id)
        return record

    def update_many(
        self,
        resource: str,
        ids: Iterable[Any],
        data: Mapping[str, Any],
        *,
        meta: MetaLike = None,
        invalidate_list: bool = True,
    ) -> None:
        ids = list(ids)
        self.provider.update_many(resource, ids, data, meta=meta)
        if invalidate_list:
            self.invalidate(resource)
        for id in ids:
            self.invalidate(resource, id)

    def delete(self, resource: str, id: Any, *, meta: MetaLike = None, invalidate_list: bool = True) -> None:
        self.provider.delete(resource, id, meta=meta)
        if invalidate_list:
            self.invalidate(resource)
        self.invalidate(resource, id)

    def delete_many(self, resource: str, ids: Iterable[Any], *, meta: MetaLike = None, invalidate_list: bool = True) -> None:
        ids = list(ids)
        self.provider.delete_many(resource, ids, meta=meta)
        if invalidate_list:
            self.invalidate(resource)
        for id in ids:
            self.invalidate(resource, id)

    # ---- Optimistic list patches ----
    def snapshot(self, params: ParamsLike) -> Optional[ListResponse]:
        return self.cache_facade.get(self._list_key(_params(params)))

    def restore(self, params: ParamsLike, snapshot: Optional[ListResponse]) -> None:
        key = self._list_key(_params(params))
        if snapshot is None:
            self.cache_facade.delete(key)
        else:
            self.cache_facade.set(key, snapshot)

    def _patch_list(self, params: ParamsLike, patch: Callable[[Optional[ListResponse]], Optional[ListResponse]]) -> None:
        key = self._list_key(_params(params))
        updated = patch(self.cache_facade.get(key))
        if updated is not None:
            self.cache_facade.set(key, updated)

    def add_to_list(self, params: ParamsLike, item: Dict[str, Any]) -> None:
        def patch(current):
            if current is None:
                return ListResponse(data=[item], total=1)
            return ListResponse(data=[item, *current.data], total=current.total + 1)

        self._patch_list(params, patch)

    def update_in_list(self, params: ParamsLike, id: Any, updates: Mapping[str, Any]) -> None:
        def patch(current):
            if current is None:
                return None
            rows = [{**row, **updates} if row.get("id") == id else row for row in current.data]
            return ListResponse(data=rows, total=current.total)

        self._patch_list(params, patch)

    def remove_from_list(self, params: ParamsLike, id: Any) -> None:
        def patch(current):
            if current is None:
                return None
            rows = [row for row in current.data if row.get("id") != id]
            return ListResponse(data=rows, total=max(current.total - (len(current.data) - len(rows)), 0))

        self._patch_list(params, patch)

    # ---- Realtime bridge ----
    def watch(
        self,
        resource: str,
        callback: Optional[Callable[[ChangeEvent], None]] = None,
        *,
        filter: Optional[str] = None,
        events: Optional[Iterable[str]] = None,
        auto_invalidate: bool = True,
    ) -> Unsubscribe:
        """Subscribe to `resource` changes; cached reads are invalidated before `callback` runs."""

        def on_change(event: ChangeEvent) -> None:
            if auto_invalidate:
                self.invalidate(resource)
                if event.record_id is not None:
                    self.invalidate(resource, event.record_id)
            if callback is not None:
                callback(event)

        return self.provider.subscribe(resource, on_change, filter=filter, events=events)

    # ---- Facade ----
    def resource(
        self,
        name: str,
        *,
        pagination: Optional[Union[Pagination, Mapping[str, Any]]] = None,
        sort: Optional[List[Union[Sort, Mapping[str, Any]]]] = None,
        filters: Optional[List[Union[Filter, Mapping[str, Any]]]] = None,
        select: str = "*",
        meta: MetaLike = None,
        include_deleted: bool = False,
        search: Optional[str] = None,
        search_fields: Optional[List[str]] = None,
    ) -> "ResourceHandle":
        params = QueryParams.model_validate({
            "resource": name,
            "pagination": pagination,
            "sort": sort,
            "filters": filters or [],
            "select": select,
            "meta": meta,
            "include_deleted": include_deleted,
            "search": search,
            "search_fields": search_fields or [],
        })
        return ResourceHandle(self, params)


class ResourceHandle:
    """List reads plus every mutation for one resource, bound to one parameter set."""

    def __init__(self, repository: ResourceRepository, params: QueryParams) -> None:
        self.repository = repository
        self.params = params

    @property
    def resource(self) -> str:
        return self.params.resource

    @property
    def meta(self):
        return self.params.meta

    def fetch(self) -> ListResponse:
        return self.repository.get_list(self.params)

    def refetch(self) -> ListResponse:
        return self.repository.refresh(self.params)

    @property
    def data(self) -> List[Dict[str, Any]]:
        return self.fetch().data

    @property
    def total(self) -> int:
        return self.fetch().total

    def one(self, id: Any) -> Dict[str, Any]:
        return self.repository.get_one(
            self.resource,
            id,
            select=self.params.select,
            meta=self.meta,
            include_deleted=self.params.include_deleted,
        )

    def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self.repository.create(self.resource, data, meta=self.meta)

    def update(self, id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        return self.repository.update(self.resource, id, data, meta=self.meta)

    def update_many(self, ids: Iterable[Any], data: Mapping[str, Any]) -> None:
        self.repository.update_many(self.resource, ids, data, meta=self.meta)

    def delete(self, id: Any) -> None:
        self.repository.delete(self.resource, id, meta=self.meta)

    def delete_many(self, ids: Iterable[Any]) -> None:
        self.repository.delete_many(self.resource, ids, meta=self.meta)

    def watch(self, callback: Optional[Callable[[ChangeEvent], None]] = None, **kwargs: Any) -> Unsubscribe:
        return self.repository.watch(self.resource, callback, **kwargs)
