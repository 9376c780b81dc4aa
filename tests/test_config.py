import pytest
from pydantic import ValidationError

from dataprovider.config import Settings, get_settings
from dataprovider.types import ProviderConfig


def test_settings_env_var_precedence(monkeypatch):
    """Test that environment variables take precedence over .env file."""
    monkeypatch.setenv("APP_TITLE", "FromEnvVar")
    s = Settings()
    assert s.app_title == "FromEnvVar"


def test_settings_aliases_env(monkeypatch):
    monkeypatch.setenv("PORT", "8123")
    monkeypatch.setenv("DEBUG", "1")
    monkeypatch.setenv("DATA_BACKEND", "sql")
    monkeypatch.setenv("DEFAULT_SORT_ORDER", "ASC")
    monkeypatch.setenv("TENANT_FIELD", " ")
    monkeypatch.setenv("API_RESOURCES", '{"items": ["name", "price"], "notes": ["*"]}')
    s = Settings()
    assert s.port == 8123
    assert s.debug is True
    assert s.data_backend == "SQL"
    assert s.default_sort_order == "asc"
    assert s.tenant_field is None
    assert s.api_resources == {"items": ["name", "price"], "notes": ["*"]}


def test_direct_instantiation_defaults(monkeypatch):
    for name in ("DEFAULT_PAGE_SIZE", "SOFT_DELETE", "AUDIT_FIELDS", "DEFAULT_SORT_FIELD"):
        monkeypatch.delenv(name, raising=False)
    s = Settings()
    assert s.default_page_size == 25
    assert s.soft_delete is False
    assert s.audit_fields is True
    assert s.default_sort_field == "created_at"
    assert s.cache_type in ("SimpleCache", "RedisCache", "NullCache")


def test_provider_config_is_frozen_copy_of_settings():
    cfg = ProviderConfig.from_settings(Settings(soft_delete=True, tenant_field="org_id", default_page_size=50))
    assert (cfg.soft_delete, cfg.tenant_field, cfg.default_page_size) == (True, "org_id", 50)
    with pytest.raises(ValidationError):
        cfg.soft_delete = False


def test_get_settings_is_singleton():
    assert get_settings() is get_settings()
