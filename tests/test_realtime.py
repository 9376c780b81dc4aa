import pytest

from dataprovider.cache import CacheFacade
from dataprovider.config import Settings
from dataprovider.provider import ResourceProvider
from dataprovider.repository import ResourceRepository
from dataprovider.types import ChangeEvent


def insert_payload(row):
    return {"eventType": "INSERT", "new": row, "old": {}, "commit_timestamp": "2024-01-01T00:00:00Z"}


def test_subscribe_opens_one_named_channel(fake_client):
    provider = ResourceProvider(fake_client)
    received = []

    provider.subscribe("items", received.append, filter="tenant_id=eq.t1")

    (channel,) = fake_client.channels
    assert channel.name == "items_tenant_id=eq.t1"
    assert channel.subscribed
    assert channel.bindings[0]["table"] == "items"
    assert channel.bindings[0]["filter"] == "tenant_id=eq.t1"
    assert provider.channels == ("items_tenant_id=eq.t1",)

    channel.emit(insert_payload({"id": 1}))
    assert received == [ChangeEvent(event_type="INSERT", new={"id": 1}, commit_timestamp="2024-01-01T00:00:00Z")]


def test_resubscribe_replaces_channel(fake_client):
    provider = ResourceProvider(fake_client)
    first = provider.subscribe("items", lambda e: None)
    provider.subscribe("items", lambda e: None)

    old, new = fake_client.channels
    assert fake_client.removed == [old]
    assert provider.channels == ("items_all",)

    # the replaced subscription no longer owns the channel
    first()
    assert fake_client.removed == [old]


def test_unsubscribe_is_idempotent(fake_client):
    provider = ResourceProvider(fake_client)
    unsubscribe = provider.subscribe("items", lambda e: None)
    unsubscribe()
    unsubscribe()
    assert len(fake_client.removed) == 1
    assert provider.channels == ()


def test_event_kind_filter(fake_client):
    provider = ResourceProvider(fake_client)
    received = []
    provider.subscribe("items", received.append, events=["delete"])

    channel = fake_client.channels[0]
    channel.emit(insert_payload({"id": 1}))
    channel.emit({"eventType": "DELETE", "new": {}, "old": {"id": 1}})
    assert [e.event_type for e in received] == ["DELETE"]
    assert received[0].record_id == 1


def test_change_event_from_realtime_py_shape():
    event = ChangeEvent.from_payload({"data": {"type": "UPDATE", "record": {"id": 2}, "old_record": {"id": 2, "n": 1}}})
    assert event.event_type == "UPDATE"
    assert event.old == {"id": 2, "n": 1}
    assert event.record_id == 2


def test_sql_backend_publishes_committed_changes(sql_backend):
    provider = ResourceProvider(sql_backend)
    received = []
    unsubscribe = provider.subscribe("items", received.append)

    row = provider.create("items", {"name": "a"})
    provider.update("items", row["id"], {"name": "b"})
    provider.delete("items", row["id"])

    assert [e.event_type for e in received] == ["INSERT", "UPDATE", "DELETE"]
    assert received[1].old["name"] == "a"
    assert received[1].new["name"] == "b"
    assert received[2].old["id"] == row["id"]

    unsubscribe()
    provider.create("items", {"name": "c"})
    assert len(received) == 3


def test_sql_backend_channel_filter(sql_backend):
    provider = ResourceProvider(sql_backend)
    received = []
    provider.subscribe("items", received.append, filter="category=eq.tools")

    provider.create("items", {"name": "a", "category": "tools"})
    provider.create("items", {"name": "b", "category": "food"})
    assert [e.new["name"] for e in received] == ["a"]


def test_failed_mutation_publishes_nothing(sql_backend):
    provider = ResourceProvider(sql_backend)
    received = []
    provider.subscribe("items", received.append)
    provider.create("items", {"name": "a"})
    with pytest.raises(Exception):
        provider.create("items", {"name": "a"})
    assert len(received) == 1


def test_watch_invalidates_before_callback(sql_backend, flask_cache):
    writer = ResourceProvider(sql_backend)
    repo = ResourceRepository(ResourceProvider(sql_backend), CacheFacade(flask_cache, 60), settings=Settings())
    params = {"resource": "items", "sort": [{"field": "name"}]}
    assert repo.get_list(params).total == 0

    seen_totals = []
    unsubscribe = repo.watch("items", lambda event: seen_totals.append(repo.get_list(params).total))

    # a write that bypasses the repository still refreshes its cache
    writer.create("items", {"name": "a"})
    assert seen_totals == [1]
    unsubscribe()


def test_watch_without_auto_invalidate(fake_client, flask_cache):
    repo = ResourceRepository(ResourceProvider(fake_client), CacheFacade(flask_cache, 60), settings=Settings())
    params = {"resource": "items"}
    fake_client.data, fake_client.count = [{"id": 1}], 1
    repo.get_list(params)

    events = []
    repo.watch("items", events.append, auto_invalidate=False)
    fake_client.channels[0].emit(insert_payload({"id": 2}))

    assert len(events) == 1
    fake_client.data, fake_client.count = [{"id": 1}, {"id": 2}], 2
    assert repo.get_list(params).total == 1
