from . import config
from .cache import CacheFacade
from .errors import DataProviderError
from .filters import apply_filters, filters_to_search_params, parse_filters_from_search_params
from .provider import ResourceProvider
from .repository import ResourceHandle, ResourceRepository
from .server import ServerFactory, create_app
from .types import (
    ChangeEvent,
    Filter,
    ListResponse,
    Meta,
    Pagination,
    ProviderConfig,
    QueryParams,
    Sort,
)

__all__ = [
    "config",
    "CacheFacade",
    "ChangeEvent",
    "DataProviderError",
    "Filter",
    "ListResponse",
    "Meta",
    "Pagination",
    "ProviderConfig",
    "QueryParams",
    "ResourceHandle",
    "ResourceProvider",
    "ResourceRepository",
    "ServerFactory",
    "Sort",
    "apply_filters",
    "create_app",
    "filters_to_search_params",
    "parse_filters_from_search_params",
]
