"""Filter translation onto a chainable query builder, and the query-string filter convention.

Translation degrades gracefully: a malformed filter is logged and skipped so that
one bad entry (often decoded from a URL) never breaks a whole listing.
"""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import parse_qsl

from .backends.base import QueryBuilder
from .types import OPERATORS, Filter

logger = logging.getLogger(__name__)

RESERVED_PARAMS = frozenset({"page", "pageSize", "sort", "sortOrder", "select", "search"})

_COMPARISONS = {"eq", "neq", "gt", "gte", "lt", "lte"}
_PATTERNS = {"contains": "%{}%", "startswith": "{}%", "endswith": "%{}"}
_LIST_OPERATORS = {"in", "nin", "between"}

_KEY_RE = re.compile(r"^(.+)_(" + "|".join(OPERATORS) + r")$")
_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?$")
_LIKE_WILDCARDS = re.compile(r"[%_]")


# ---- Translation ----
def apply_filters(query: QueryBuilder, filters: Optional[Iterable[Filter]]) -> QueryBuilder:
    """Fold filters onto the query; every filter narrows the result further (AND only)."""
    for flt in filters or ():
        query = apply_filter(query, flt)
    return query


def apply_filter(query: QueryBuilder, flt: Filter) -> QueryBuilder:
    field, operator, value = flt.field, flt.operator, flt.value

    if operator in _COMPARISONS:
        return getattr(query, operator)(field, value)

    if operator in _PATTERNS:
        return query.ilike(field, _PATTERNS[operator].format(value))

    if operator in ("in", "nin"):
        if not isinstance(value, (list, tuple)):
            logger.warning("Filter operator '%s' on '%s' expects a list value, got %s; skipped",
                           operator, field, type(value).__name__)
            return query
        if operator == "in":
            return query.in_(field, list(value))
        return query.not_.in_(field, list(value))

    if operator == "null":
        return query.is_(field, None)

    if operator == "nnull":
        return query.not_.is_(field, None)

    if operator == "between":
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            logger.warning("Filter operator 'between' on '%s' expects [min, max], got %r; skipped", field, value)
            return query
        low, high = value
        return query.gte(field, low).lte(field, high)

    logger.warning("Unknown filter operator '%s' on '%s'; skipped", operator, field)
    return query


def build_search_filter(term: Optional[str], fields: Iterable[str]) -> str:
    """PostgREST `or` expression matching `term` as a case-insensitive substring of any field.

    `%` and `_` in the term are escaped so they match literally. No term or no fields gives "".
    """
    fields = list(fields)
    if not term or not fields:
        return ""
    escaped = _LIKE_WILDCARDS.sub(lambda m: "\\" + m.group(0), term)
    return ",".join(f"{field}.ilike.%{escaped}%" for field in fields)


# ---- Query-string convention ----
def _pairs(params: Any) -> List[Tuple[str, str]]:
    if isinstance(params, str):
        return parse_qsl(params.lstrip("?"), keep_blank_values=True)
    if hasattr(params, "getlist"):
        # werkzeug MultiDict and friends: keep repeated keys
        return [(key, value) for key in params for value in params.getlist(key)]
    if isinstance(params, Mapping):
        return [(key, value) for key, value in params.items()]
    return [(key, value) for key, value in params]


def _to_number(raw: str) -> Optional[Union[int, float]]:
    text = raw.strip()
    if not _NUMBER_RE.match(text):
        return None
    if re.fullmatch(r"[+-]?\d+", text):
        return int(text)
    number = float(text)
    return number if math.isfinite(number) else None


def _coerce(operator: str, raw: str) -> Any:
    if operator in _LIST_OPERATORS:
        if raw == "":
            return []
        items = []
        for part in raw.split(","):
            number = _to_number(part)
            items.append(part.strip() if number is None else number)
        return items
    if operator in ("null", "nnull") or raw == "":
        return None
    if raw == "true":
        return True
    if raw == "false":
        return False
    number = _to_number(raw)
    return raw if number is None else number


def parse_filters_from_search_params(
    params: Any,
    allowed_fields: Optional[Iterable[str]] = None,
) -> List[Filter]:
    """Read `field=value` (eq) and `field_<op>=value` pairs into filters.

    `params` may be a query string, a mapping, a multi-dict or an iterable of pairs.
    Fields outside `allowed_fields` are dropped silently.
    """
    allowed = set(allowed_fields) if allowed_fields is not None else None
    filters: List[Filter] = []

    for key, raw in _pairs(params):
        if key in RESERVED_PARAMS:
            continue

        match = _KEY_RE.match(key)
        if match:
            field, operator = match.group(1), match.group(2)
        else:
            field, operator = key, "eq"

        if allowed is not None and field not in allowed:
            continue

        filters.append(Filter(field=field, operator=operator, value=_coerce(operator, str(raw))))

    return filters


def _format(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def filters_to_search_params(filters: Iterable[Filter]) -> Dict[str, str]:
    """Inverse of `parse_filters_from_search_params`; a later filter on the same key wins."""
    params: Dict[str, str] = {}
    for flt in filters:
        key = flt.field if flt.operator == "eq" else f"{flt.field}_{flt.operator}"
        if isinstance(flt.value, (list, tuple)):
            params[key] = ",".join(_format(v) for v in flt.value)
        else:
            params[key] = _format(flt.value)
    return params
