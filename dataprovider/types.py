from __future__ import annotations

from typing import Any, Dict, List, Literal, Mapping, Optional, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .config import Settings

FilterOperator = Literal[
    "eq",
    "neq",
    "gt",
    "gte",
    "lt",
    "lte",
    "contains",
    "startswith",
    "endswith",
    "in",
    "nin",
    "null",
    "nnull",
    "between",
]
OPERATORS = get_args(FilterOperator)

ChangeType = Literal["INSERT", "UPDATE", "DELETE"]
CHANGE_TYPES = get_args(ChangeType)


class Filter(BaseModel):
    """A single condition. `operator` stays a plain string so the translator can skip unknown ones."""

    field: str
    operator: str = "eq"
    value: Any = None


class Sort(BaseModel):
    field: str
    order: Literal["asc", "desc"] = "asc"


class Pagination(BaseModel):
    page: int = Field(default=1, ge=1)
    page_size: int = Field(gt=0)


class Meta(BaseModel):
    """Per-call context: tenant scope and acting user."""

    model_config = ConfigDict(extra="allow")

    tenant_id: Optional[Union[int, str]] = None
    user_id: Optional[Union[int, str]] = None

    @model_validator(mode="before")
    @classmethod
    def _camel_case_keys(cls, data: Any) -> Any:
        # camelCase keys as sent by browser clients
        if isinstance(data, Mapping) and ("tenantId" in data or "userId" in data):
            data = dict(data)
            if "tenantId" in data:
                data.setdefault("tenant_id", data.pop("tenantId"))
            if "userId" in data:
                data.setdefault("user_id", data.pop("userId"))
        return data

    @classmethod
    def of(cls, value: Union["Meta", Mapping[str, Any], None]) -> "Meta":
        if value is None:
            return cls()
        if isinstance(value, Meta):
            return value
        return cls.model_validate(dict(value))


class QueryParams(BaseModel):
    resource: str
    pagination: Optional[Pagination] = None
    sort: Optional[List[Sort]] = None
    filters: List[Filter] = Field(default_factory=list)
    select: str = "*"
    meta: Optional[Meta] = None
    include_deleted: bool = False
    # free-text term matched against `search_fields` (OR of case-insensitive substrings)
    search: Optional[str] = None
    search_fields: List[str] = Field(default_factory=list)


class ListResponse(BaseModel):
    data: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0


class ChangeEvent(BaseModel):
    """Row-level change delivered by a realtime channel."""

    event_type: ChangeType
    new: Dict[str, Any] = Field(default_factory=dict)
    old: Dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: Optional[str] = None

    @property
    def record_id(self) -> Any:
        return self.new.get("id") or self.old.get("id")

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChangeEvent":
        """Normalize either the `eventType/new/old` shape or the realtime-py `data.type/record` shape."""
        if "eventType" in payload:
            return cls(
                event_type=payload["eventType"],
                new=payload.get("new") or {},
                old=payload.get("old") or {},
                commit_timestamp=payload.get("commit_timestamp"),
            )
        data = payload.get("data", payload)
        return cls(
            event_type=data.get("type") or data.get("eventType"),
            new=data.get("record") or {},
            old=data.get("old_record") or {},
            commit_timestamp=data.get("commit_timestamp"),
        )


class ProviderConfig(BaseModel):
    """Construction-time provider policy. Frozen: one instance per backend connection."""

    model_config = ConfigDict(frozen=True)

    default_page_size: int = Field(default=25, gt=0)
    soft_delete: bool = False
    tenant_field: Optional[str] = None
    audit_fields: bool = True
    default_sort_field: str = "created_at"
    default_sort_order: Literal["asc", "desc"] = "desc"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderConfig":
        return cls(
            default_page_size=settings.default_page_size,
            soft_delete=settings.soft_delete,
            tenant_field=settings.tenant_field,
            audit_fields=settings.audit_fields,
            default_sort_field=settings.default_sort_field,
            default_sort_order=settings.default_sort_order,
        )
