from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =========================
# Configuration (ENV-DRIVEN via Pydantic)
# =========================


class Settings(BaseSettings):
    """Settings read from environment and validated by Pydantic.

    Only a single `.env` file at the project root is read. Real environment
    variables always take precedence over `.env` values.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
        env_file=str(Path(__file__).resolve().parent.parent / ".env"),
        env_file_encoding="utf-8",
    )

    # App/server
    app_title: str = Field(default="Resource Data Provider", alias="APP_TITLE")
    port: int = Field(default=8050, ge=1, le=65535, alias="PORT")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Backend connection
    data_backend: Literal["SUPABASE", "SQL"] = Field(default="SUPABASE", alias="DATA_BACKEND")
    supabase_url: str = Field(default="", alias="SUPABASE_URL")
    supabase_key: str = Field(default="", alias="SUPABASE_KEY")
    realtime_timeout_seconds: float = Field(default=10.0, gt=0, alias="REALTIME_TIMEOUT_SECONDS")
    db_url: str = Field(default="", alias="DB_URL")

    # Provider policy
    default_page_size: int = Field(default=25, gt=0, alias="DEFAULT_PAGE_SIZE")
    soft_delete: bool = Field(default=False, alias="SOFT_DELETE")
    tenant_field: Optional[str] = Field(default=None, alias="TENANT_FIELD")
    audit_fields: bool = Field(default=True, alias="AUDIT_FIELDS")
    default_sort_field: str = Field(default="created_at", alias="DEFAULT_SORT_FIELD")
    default_sort_order: Literal["asc", "desc"] = Field(default="desc", alias="DEFAULT_SORT_ORDER")

    # Auth/JWT
    disable_auth: bool = Field(default=False, alias="DISABLE_AUTH")
    jwt_secret: str = Field(default="dev-secret", alias="JWT_SECRET")
    jwt_issuer: Optional[str] = Field(default=None, alias="JWT_ISSUER")
    jwt_audience: Optional[str] = Field(default=None, alias="JWT_AUDIENCE")
    dev_tenant_id: Optional[str] = Field(default=None, alias="DEV_TENANT_ID")

    # Cache
    cache_type: Literal["SimpleCache", "RedisCache", "NullCache"] = Field(default="SimpleCache", alias="CACHE_TYPE")
    cache_timeout_seconds: int = Field(default=300, ge=0, alias="CACHE_TIMEOUT_SECONDS")
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")

    # HTTP API: resource name -> filterable fields (["*"] means any field)
    api_resources: Dict[str, List[str]] = Field(default_factory=dict, alias="API_RESOURCES")
    # columns searched by `?search=`; defaults to the resource's allow-list
    api_search_fields: Dict[str, List[str]] = Field(default_factory=dict, alias="API_SEARCH_FIELDS")
    export_max_rows: int = Field(default=5000, ge=1, alias="EXPORT_MAX_ROWS")

    @field_validator("data_backend", mode="before")
    @classmethod
    def _upper_data_backend(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("default_sort_order", mode="before")
    @classmethod
    def _lower_sort_order(cls, v):
        if isinstance(v, str):
            return v.lower()
        return v

    @field_validator("tenant_field", mode="before")
    @classmethod
    def _blank_tenant_field(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


# Singleton accessor to avoid repeated disk reads/parsing
_settings_singleton: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the singleton Settings instance, initializing it on first call."""
    global _settings_singleton
    if _settings_singleton is None:
        _settings_singleton = Settings()
    return _settings_singleton
