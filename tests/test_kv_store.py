from __future__ import annotations

import json

import pytest

import agent_coordination.storage.kv as kv_module
from agent_coordination.core.config import Settings
from agent_coordination.storage.kv import (
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    SetCondition,
    build_key_value_store,
)


class _FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self.expirations: dict[str, int | None] = {}

    def set(self, key: str, value: str, *, nx: bool = False, xx: bool = False, ex: int | None = None):
        if nx and key in self._store:
            return None
        if xx and key not in self._store:
            return None
        self._store[key] = value
        self.expirations[key] = ex
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def delete(self, key: str) -> int:
        return 1 if self._store.pop(key, None) is not None else 0


def test_create_if_absent_only_succeeds_once(store) -> None:
    assert store.set("run:u1:t1", {"holder": "a"}, ttl_seconds=10, condition=SetCondition.CREATE_IF_ABSENT)
    assert not store.set("run:u1:t1", {"holder": "b"}, ttl_seconds=10, condition=SetCondition.CREATE_IF_ABSENT)
    assert store.get("run:u1:t1") == {"holder": "a"}


def test_expired_entry_counts_as_absent(store, clock) -> None:
    store.set("k", "v", ttl_seconds=5)
    clock.advance(4.9)
    assert store.get("k") == "v"

    clock.advance(0.1)
    assert store.get("k") is None
    assert store.set("k", "w", ttl_seconds=5, condition=SetCondition.CREATE_IF_ABSENT)


def test_update_if_present_requires_live_entry(store, clock) -> None:
    assert not store.set("k", 1, condition=SetCondition.UPDATE_IF_PRESENT)

    store.set("k", 1, ttl_seconds=1)
    assert store.set("k", 2, condition=SetCondition.UPDATE_IF_PRESENT)
    assert store.get("k") == 2

    store.set("expiring", 1, ttl_seconds=1)
    clock.advance(2)
    assert not store.set("expiring", 2, condition=SetCondition.UPDATE_IF_PRESENT)


def test_values_are_copied_on_read_and_write(store) -> None:
    value = {"nested": {"count": 1}}
    store.set("k", value)
    value["nested"]["count"] = 2

    read = store.get("k")
    read["nested"]["count"] = 3
    assert store.get("k") == {"nested": {"count": 1}}


def test_delete_reports_whether_a_live_entry_was_removed(store, clock) -> None:
    store.set("k", "v", ttl_seconds=1)
    assert store.delete("k") is True
    assert store.delete("k") is False

    store.set("gone", "v", ttl_seconds=1)
    clock.advance(1)
    assert store.delete("gone") is False


def test_rejects_non_positive_ttl() -> None:
    memory = InMemoryKeyValueStore()
    with pytest.raises(ValueError):
        memory.set("k", "v", ttl_seconds=0)
    with pytest.raises(ValueError):
        RedisKeyValueStore(_FakeRedis()).set("k", "v", ttl_seconds=-1)


def test_redis_store_maps_conditions_and_ttl() -> None:
    fake_redis = _FakeRedis()
    redis_store = RedisKeyValueStore(fake_redis)

    assert redis_store.set("run:u1:t1", {"b": 1, "a": 2}, ttl_seconds=30, condition=SetCondition.CREATE_IF_ABSENT)
    assert not redis_store.set("run:u1:t1", {"a": 3}, ttl_seconds=30, condition=SetCondition.CREATE_IF_ABSENT)
    assert not redis_store.set("missing", {"a": 1}, condition=SetCondition.UPDATE_IF_PRESENT)

    assert fake_redis.expirations["run:u1:t1"] == 30
    assert json.loads(fake_redis.get("run:u1:t1")) == {"a": 2, "b": 1}
    assert redis_store.get("run:u1:t1") == {"a": 2, "b": 1}

    assert redis_store.delete("run:u1:t1") is True
    assert redis_store.delete("run:u1:t1") is False
    assert redis_store.get("run:u1:t1") is None


def test_redis_store_returns_raw_value_when_not_json() -> None:
    fake_redis = _FakeRedis()
    fake_redis.set("k", "not json{")

    assert RedisKeyValueStore(fake_redis).get("k") == "not json{"


def test_build_key_value_store_selects_backend(monkeypatch) -> None:
    fake_redis = _FakeRedis()
    urls: list[str] = []
    monkeypatch.setattr(kv_module, "_redis_client", lambda redis_url: urls.append(redis_url) or fake_redis)

    assert isinstance(build_key_value_store(Settings(kv_backend="memory")), InMemoryKeyValueStore)
    assert isinstance(
        build_key_value_store(Settings(kv_backend="redis", redis_url="redis://cache:6379/2")), RedisKeyValueStore
    )
    assert urls == ["redis://cache:6379/2"]


def test_redis_store_ping_reports_connection_errors() -> None:
    class _DownRedis(_FakeRedis):
        def ping(self) -> bool:
            raise ConnectionError("connection refused")

    class _UpRedis(_FakeRedis):
        def ping(self) -> bool:
            return True

    assert RedisKeyValueStore(_UpRedis()).ping() == (True, None)
    assert RedisKeyValueStore(_DownRedis()).ping() == (False, "connection refused")
