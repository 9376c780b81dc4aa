"""Supabase backend: PostgREST queries through the sync client, realtime through the async one.

supabase-py's sync `Client` has no realtime support, so channels run on an
`AsyncRealtimeClient` owned by a private event loop thread. Channel calls block
until the loop has carried them out.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Callable, List, Optional

from ..config import Settings, get_settings

logger = logging.getLogger(__name__)


def create_supabase_client(settings: Settings | None = None):
    """Create a Supabase client from settings.

    Raises at call-time (not import-time) if credentials are missing.
    """
    settings = settings or get_settings()
    if not settings.supabase_url or not settings.supabase_key:
        raise RuntimeError(
            "Supabase credentials missing. Set SUPABASE_URL and SUPABASE_KEY "
            "in environment or .env at the project root."
        )

    # Import here so the SQL backend works without touching the Supabase stack.
    from supabase import create_client

    return create_client(settings.supabase_url, settings.supabase_key)


def realtime_url(supabase_url: str) -> str:
    """Websocket endpoint of a project, derived the way supabase-py derives it."""
    return f"{supabase_url.rstrip('/')}/realtime/v1".replace("http", "ws", 1)


class RealtimeBridge:
    """Blocking facade over `realtime.AsyncRealtimeClient` running on its own loop thread.

    The websocket is opened on the first channel subscription.
    """

    def __init__(self, url: str, key: str, timeout_seconds: float = 10.0) -> None:
        self.url = url
        self.key = key
        self.timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._client: Any = None

    def _start_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            loop = asyncio.new_event_loop()
            thread = threading.Thread(target=loop.run_forever, name="supabase-realtime", daemon=True)
            thread.start()
            self._loop, self._thread = loop, thread
        return self._loop

    def run(self, coro) -> Any:
        if threading.current_thread() is self._thread:
            coro.close()
            raise RuntimeError("Realtime channel calls cannot be made from a realtime callback")
        future = asyncio.run_coroutine_threadsafe(coro, self._start_loop())
        return future.result(timeout=self.timeout_seconds)

    async def _connect(self):
        from realtime import AsyncRealtimeClient

        client = AsyncRealtimeClient(self.url, token=self.key, auto_reconnect=True)
        await client.connect()
        logger.info("Realtime connected to %s", self.url)
        return client

    def client(self) -> Any:
        with self._lock:
            if self._client is None:
                self._client = self.run(self._connect())
            return self._client

    def close(self) -> None:
        with self._lock:
            if self._loop is None:
                return
            if self._client is not None:
                self.run(self._client.close())
                self._client = None
            self._loop.call_soon_threadsafe(self._loop.stop)
            self._thread.join(timeout=self.timeout_seconds)
            self._loop.close()
            self._loop, self._thread = None, None


class SupabaseChannel:
    """Collects bindings, then joins one async channel on the bridge loop at `subscribe()`."""

    def __init__(self, bridge: RealtimeBridge, name: str) -> None:
        self._bridge = bridge
        self.name = name
        self._bindings: List[dict] = []
        self._channel: Any = None

    def on_postgres_changes(
        self,
        event: str,
        callback: Callable[[dict], None],
        table: str = "*",
        schema: str = "public",
        filter: Optional[str] = None,
    ) -> "SupabaseChannel":
        self._bindings.append({"event": event, "callback": callback, "table": table, "schema": schema, "filter": filter})
        return self

    async def _join(self, client) -> Any:
        channel = client.channel(self.name)
        for binding in self._bindings:
            channel.on_postgres_changes(**binding)
        await channel.subscribe()
        return channel

    def subscribe(self) -> "SupabaseChannel":
        client = self._bridge.client()
        self._channel = self._bridge.run(self._join(client))
        return self

    def unsubscribe(self) -> None:
        if self._channel is None:
            return
        channel, self._channel = self._channel, None
        self._bridge.run(self._bridge.client().remove_channel(channel))


class SupabaseBackend:
    """`BackendClient` over a sync supabase-py client plus a realtime bridge."""

    def __init__(self, client: Any, realtime: RealtimeBridge) -> None:
        self.client = client
        self.realtime = realtime

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SupabaseBackend":
        settings = settings or get_settings()
        client = create_supabase_client(settings)
        bridge = RealtimeBridge(
            realtime_url(settings.supabase_url),
            settings.supabase_key,
            timeout_seconds=settings.realtime_timeout_seconds,
        )
        return cls(client, bridge)

    def table(self, name: str):
        return self.client.table(name)

    def channel(self, name: str) -> SupabaseChannel:
        return SupabaseChannel(self.realtime, name)

    def remove_channel(self, channel: SupabaseChannel) -> None:
        channel.unsubscribe()

    def close(self) -> None:
        self.realtime.close()
