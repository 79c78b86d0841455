"""Key/value store primitives with TTL and conditional-set semantics."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
import json
from threading import Lock
import time
from typing import Any, Callable, Dict, Optional, Protocol, Tuple

from redis import Redis

from agent_coordination.core.config import Settings
from agent_coordination.core.logger import get_logger


logger = get_logger("agent_coordination.storage.kv")


class SetCondition(str, Enum):
    CREATE_IF_ABSENT = "nx"
    UPDATE_IF_PRESENT = "xx"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any:
        """Return the live value for key, or None when absent or expired."""

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl_seconds: Optional[int] = None,
        condition: Optional[SetCondition] = None,
    ) -> bool:
        """Write value; return False when the condition was not met."""

    def delete(self, key: str) -> bool:
        """Remove key; return whether a live entry was removed."""


@dataclass
class _Entry:
    value: Any
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class InMemoryKeyValueStore:
    """Process-local store; conditional sets are atomic under one mutex."""

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._lock = Lock()
        self._store: Dict[str, _Entry] = {}

    def _live_entry(self, key: str, now: float) -> Optional[_Entry]:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.is_expired(now):
            del self._store[key]
            return None
        return entry

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                return None
            return copy.deepcopy(entry.value)

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl_seconds: Optional[int] = None,
        condition: Optional[SetCondition] = None,
    ) -> bool:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        with self._lock:
            now = self._clock()
            existing = self._live_entry(key, now)
            if condition == SetCondition.CREATE_IF_ABSENT and existing is not None:
                return False
            if condition == SetCondition.UPDATE_IF_PRESENT and existing is None:
                return False

            expires_at = now + ttl_seconds if ttl_seconds is not None else None
            self._store[key] = _Entry(value=copy.deepcopy(value), expires_at=expires_at)
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            if entry is None:
                return False
            del self._store[key]
            return True


@lru_cache(maxsize=4)
def _redis_client(redis_url: str) -> Redis:
    return Redis.from_url(redis_url, decode_responses=True)


class RedisKeyValueStore:
    """Redis-backed store using SET NX/XX EX; values are stored as JSON."""

    def __init__(self, redis_client: Redis) -> None:
        self._redis = redis_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisKeyValueStore":
        return cls(_redis_client(settings.redis_url))

    def ping(self) -> Tuple[bool, Optional[str]]:
        try:
            self._redis.ping()
        except Exception as exc:
            logger.error("kv_store_unreachable", error=str(exc))
            return False, str(exc)
        return True, None

    def get(self, key: str) -> Any:
        raw = self._redis.get(key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except (TypeError, ValueError):
            return raw

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl_seconds: Optional[int] = None,
        condition: Optional[SetCondition] = None,
    ) -> bool:
        if ttl_seconds is not None and ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        payload = json.dumps(value, separators=(",", ":"), ensure_ascii=True, sort_keys=True)
        written = self._redis.set(
            key,
            payload,
            nx=condition == SetCondition.CREATE_IF_ABSENT,
            xx=condition == SetCondition.UPDATE_IF_PRESENT,
            ex=ttl_seconds,
        )
        return bool(written)

    def delete(self, key: str) -> bool:
        return int(self._redis.delete(key)) > 0


def build_key_value_store(settings: Settings) -> KeyValueStore:
    backend = settings.kv_backend.strip().lower()
    if backend == "redis":
        return RedisKeyValueStore.from_settings(settings)
    return InMemoryKeyValueStore()
