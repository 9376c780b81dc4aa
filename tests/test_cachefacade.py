from __future__ import annotations

from dataprovider.cache import CacheFacade


def test_cachefacade_no_cache_is_noop():
    calls = {"n": 0}

    def load():
        calls["n"] += 1
        return calls["n"]

    facade = CacheFacade(cache=None, timeout_seconds=1)
    assert facade.get_or_load("k", load) == 1
    assert facade.get_or_load("k", load) == 2
    # Without cache, every read executes the loader
    assert calls["n"] == 2
    facade.bump("items")
    assert facade.scoped("k", "items") == "dp:0:k"


def test_cachefacade_with_flask_cache_memoizes(flask_cache):
    facade = CacheFacade(cache=flask_cache, timeout_seconds=60)
    calls = {"n": 0}

    def load():
        calls["n"] += 1
        return {"value": 11}

    key = facade.scoped("items:list:abc", "items")
    assert facade.get_or_load(key, load) == {"value": 11}
    assert facade.get_or_load(key, load) == {"value": 11}
    # Second call should hit cache
    assert calls["n"] == 1


def test_bump_orphans_scoped_entries(flask_cache):
    facade = CacheFacade(cache=flask_cache, timeout_seconds=60)
    list_key = facade.scoped("items:list:abc", "items")
    one_key = facade.scoped("items:one:1:x", "items", "items:1")
    other_key = facade.scoped("users:list:abc", "users")

    assert facade.scoped("items:list:abc", "items") == list_key

    facade.bump("items:1")
    assert facade.scoped("items:list:abc", "items") == list_key
    assert facade.scoped("items:one:1:x", "items", "items:1") != one_key

    facade.bump("items")
    assert facade.scoped("items:list:abc", "items") != list_key
    assert facade.scoped("users:list:abc", "users") == other_key


def test_set_get_delete(flask_cache):
    facade = CacheFacade(cache=flask_cache, timeout_seconds=60)
    facade.set("k", [1, 2])
    assert facade.get("k") == [1, 2]
    facade.delete("k")
    assert facade.get("k") is None
