"""Deterministic cache keys for list and single-record reads.

Logically identical parameter sets map to the same key: filters, search fields (and the values of
`in`/`nin`) are compared as sets, meta keys are sorted. The sort list keeps its order
because the first entry is the primary sort.
"""
from __future__ import annotations

import hashlib
import json
from typing import Any, Dict, Mapping, Optional, Union

from .types import Meta, QueryParams

_UNORDERED_VALUES = {"in", "nin"}


def _dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _digest(value: Any) -> str:
    return hashlib.sha1(_dump(value).encode("utf-8")).hexdigest()[:16]


def _canonical_filter(flt: Dict[str, Any]) -> Dict[str, Any]:
    value = flt.get("value")
    if flt.get("operator") in _UNORDERED_VALUES and isinstance(value, list):
        value = sorted(value, key=_dump)
    return {"field": flt.get("field"), "operator": flt.get("operator"), "value": value}


def canonical_params(params: Union[QueryParams, Mapping[str, Any]]) -> Dict[str, Any]:
    if not isinstance(params, QueryParams):
        params = QueryParams.model_validate(params)
    raw = params.model_dump(mode="json", exclude_none=True)
    raw["filters"] = sorted((_canonical_filter(f) for f in raw.get("filters", [])), key=_dump)
    raw["search_fields"] = sorted(set(raw.get("search_fields", [])))
    # empty sort / meta / search read the same as absent ones
    for name in ("sort", "meta", "search", "search_fields"):
        if not raw.get(name):
            raw.pop(name, None)
    return raw


def list_key(params: Union[QueryParams, Mapping[str, Any]]) -> str:
    canonical = canonical_params(params)
    return f"{canonical['resource']}:list:{_digest(canonical)}"


def one_key(
    resource: str,
    id: Any,
    select: str = "*",
    meta: Optional[Union[Meta, Mapping[str, Any]]] = None,
    include_deleted: bool = False,
) -> str:
    extra = {
        "select": select,
        "meta": Meta.of(meta).model_dump(mode="json", exclude_none=True),
        "include_deleted": include_deleted,
    }
    return f"{resource}:one:{id}:{_digest(extra)}"
