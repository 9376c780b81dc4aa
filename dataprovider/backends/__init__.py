"""Backend connections the provider runs its queries against.

Public exports:
- BackendClient, TableRef, QueryBuilder, Channel protocols
- SqlBackend (SQLAlchemy) and SupabaseBackend (PostgREST + realtime)
- create_backend: selection by DATA_BACKEND
"""
from ..config import Settings, get_settings
from .base import BackendClient, Channel, QueryBuilder, TableRef
from .sql import SqlBackend, SqlBackendError
from .supabase import RealtimeBridge, SupabaseBackend, create_supabase_client


def create_backend(settings: Settings | None = None) -> BackendClient:
    settings = settings or get_settings()
    if settings.data_backend == "SQL":
        if not settings.db_url:
            raise RuntimeError("DB_URL must be set when DATA_BACKEND=SQL")
        return SqlBackend.from_url(settings.db_url)
    return SupabaseBackend.from_settings(settings)


__all__ = [
    "BackendClient",
    "Channel",
    "QueryBuilder",
    "TableRef",
    "RealtimeBridge",
    "SqlBackend",
    "SqlBackendError",
    "SupabaseBackend",
    "create_supabase_client",
    "create_backend",
]
