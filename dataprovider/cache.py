from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Optional

from flask_caching import Cache

logger = logging.getLogger(__name__)


class CacheFacade:
    """Thin wrapper over Flask-Caching to make caching injectable and optional.

    When no cache is provided, every read goes to its loader and invalidation is a no-op.
    Entries are stored under the generation token of their scopes; bumping a scope's
    token orphans everything stored under the old one, which works the same for
    SimpleCache and RedisCache.
    """

    def __init__(self, cache: Optional[Cache], timeout_seconds: int, prefix: str = "dp") -> None:
        self.cache = cache
        self.timeout_seconds = timeout_seconds
        self.prefix = prefix

    def _generation_key(self, scope: str) -> str:
        return f"{self.prefix}:gen:{scope}"

    def generation(self, scope: str) -> str:
        if self.cache is None:
            return "0"
        key = self._generation_key(scope)
        token = self.cache.get(key)
        if token is None:
            # add() keeps a token another worker stored first
            self.cache.add(key, uuid.uuid4().hex, timeout=0)
            token = self.cache.get(key)
        return token or "0"

    def bump(self, scope: str) -> None:
        if self.cache is None:
            return
        logger.debug("Invalidating cache scope %s", scope)
        self.cache.set(self._generation_key(scope), uuid.uuid4().hex, timeout=0)

    def scoped(self, key: str, *scopes: str) -> str:
        tokens = ":".join(self.generation(scope) for scope in scopes)
        return f"{self.prefix}:{tokens}:{key}"

    # ---- Entries ----
    def get(self, key: str) -> Any:
        if self.cache is None:
            return None
        return self.cache.get(key)

    def set(self, key: str, value: Any) -> None:
        if self.cache is None:
            return
        self.cache.set(key, value, timeout=self.timeout_seconds)

    def delete(self, key: str) -> None:
        if self.cache is None:
            return
        self.cache.delete(key)

    def get_or_load(self, key: str, loader: Callable[[], Any]) -> Any:
        if self.cache is None:
            return loader()
        value = self.cache.get(key)
        if value is not None:
            logger.debug("Cache hit %s", key)
            return value
        logger.debug("Cache miss %s", key)
        value = loader()
        self.cache.set(key, value, timeout=self.timeout_seconds)
        return value
