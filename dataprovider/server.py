from typing import Optional

from flask import Flask
from flask_caching import Cache

from .api import ResourceApi
from .auth import AuthService
from .backends import BackendClient
from .cache import CacheFacade
from .config import Settings, get_settings
from .log import configure_logging
from .provider import ResourceProvider
from .repository import ResourceRepository
from .utils import utc_now_iso


class ServerFactory:
    """Class-based factory for the Flask server, Cache, provider and repository."""

    def __init__(self, settings: Optional[Settings] = None, backend: Optional[BackendClient] = None) -> None:
        self.settings = settings or get_settings()
        # Injected backend client (tests); otherwise chosen by DATA_BACKEND
        self.backend = backend

    def create_server(self) -> Flask:
        server = Flask(__name__)

        @server.route("/health")
        def health():
            return {"status": "ok", "time": utc_now_iso()}

        return server

    def create_cache(self, server: Flask) -> Cache:
        cache = Cache(server, config={
            "CACHE_TYPE": self.settings.cache_type,
            "CACHE_DEFAULT_TIMEOUT": self.settings.cache_timeout_seconds,
            **({"CACHE_REDIS_URL": self.settings.redis_url} if self.settings.cache_type == "RedisCache" else {})
        })
        return cache

    def create_repository(self, cache: Optional[Cache]) -> ResourceRepository:
        provider = ResourceProvider.from_settings(self.settings, client=self.backend)
        facade = CacheFacade(cache, timeout_seconds=self.settings.cache_timeout_seconds)
        return ResourceRepository(provider, facade, settings=self.settings)

    def create_app(self) -> Flask:
        configure_logging(self.settings.log_level)
        server = self.create_server()
        cache = self.create_cache(server)
        repository = self.create_repository(cache)

        auth = AuthService(self.settings)
        auth.init_app(server)
        server.register_blueprint(ResourceApi(repository, auth, self.settings).blueprint())
        server.extensions["dataprovider"] = repository
        return server


def create_app(settings: Optional[Settings] = None, backend: Optional[BackendClient] = None) -> Flask:
    return ServerFactory(settings, backend).create_app()
