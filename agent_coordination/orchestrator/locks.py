"""Per-tenant/resource lock primitives built on a conditional-set key/value store."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
import json
import os
import time
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

from pydantic import BaseModel, Field, JsonValue, ValidationError

from agent_coordination.core.config import DEFAULT_LOCK_KEY_PREFIX, DEFAULT_LOCK_TTL_SECONDS, Settings
from agent_coordination.core.errors import LockContentionError
from agent_coordination.core.logger import get_logger
from agent_coordination.core.metrics import record_lock_acquire, record_lock_release
from agent_coordination.storage.kv import KeyValueStore, SetCondition


LOCK_KEY_TEMPLATE = "{prefix}:{tenant_id}:{resource_id}"

T = TypeVar("T")

logger = get_logger("agent_coordination.orchestrator.locks")


def _isoformat(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


def _require_token(name: str, value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} must be a non-empty string")
    if any(char.isspace() for char in value):
        raise ValueError(f"{name} must not contain whitespace")
    return value


def make_lock_key(tenant_id: str, resource_id: str, *, prefix: str = DEFAULT_LOCK_KEY_PREFIX) -> str:
    return LOCK_KEY_TEMPLATE.format(
        prefix=_require_token("prefix", prefix),
        tenant_id=_require_token("tenant_id", tenant_id),
        resource_id=_require_token("resource_id", resource_id),
    )


class LockMetadata(BaseModel):
    locked_at: str
    lock_id: Optional[str] = None
    process_id: Optional[str] = None
    expires_at: Optional[str] = None
    metadata: Dict[str, JsonValue] = Field(default_factory=dict)

    @classmethod
    def from_stored(cls, raw: Any) -> "LockMetadata":
        if isinstance(raw, LockMetadata):
            return raw
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                return cls(locked_at="invalid data")
        if not isinstance(raw, dict):
            return cls(locked_at="invalid data")
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return cls(locked_at="invalid data")


@dataclass(frozen=True)
class LockResult:
    success: bool
    lock_key: str
    metadata: Optional[LockMetadata] = None
    active_lock_metadata: Optional[LockMetadata] = None


@dataclass
class LockHandle:
    manager: "LockManager"
    tenant_id: str
    resource_id: str
    lock_key: str
    acquired: bool
    holder_metadata: Optional[LockMetadata] = None
    _released: bool = field(default=False, repr=False)

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        if not self.acquired or self._released:
            return False
        removed = self.manager.release(self.tenant_id, self.resource_id)
        self._released = True
        return removed


class LockManager:
    """Acquire and release one lock per tenant/resource using create-if-absent sets."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        default_ttl_seconds: int = DEFAULT_LOCK_TTL_SECONDS,
        key_prefix: str = DEFAULT_LOCK_KEY_PREFIX,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self._store = store
        self._default_ttl_seconds = default_ttl_seconds
        self._key_prefix = _require_token("key_prefix", key_prefix)
        self._clock = clock

    @classmethod
    def from_settings(cls, store: KeyValueStore, settings: Settings) -> "LockManager":
        return cls(
            store,
            default_ttl_seconds=settings.lock_default_ttl_seconds,
            key_prefix=settings.lock_key_prefix,
        )

    @property
    def default_ttl_seconds(self) -> int:
        return self._default_ttl_seconds

    @property
    def key_prefix(self) -> str:
        return self._key_prefix

    def lock_key(self, tenant_id: str, resource_id: str) -> str:
        return make_lock_key(tenant_id, resource_id, prefix=self._key_prefix)

    def _default_metadata(self, tenant_id: str, resource_id: str, ttl_seconds: int) -> LockMetadata:
        now = self._clock()
        return LockMetadata(
            locked_at=_isoformat(now),
            lock_id=f"{tenant_id}-{resource_id}-{int(now * 1000)}",
            process_id=str(os.getpid()),
            expires_at=_isoformat(now + ttl_seconds),
        )

    def acquire(
        self,
        tenant_id: str,
        resource_id: str,
        *,
        ttl_seconds: Optional[int] = None,
        metadata: Optional[LockMetadata] = None,
    ) -> LockResult:
        key = self.lock_key(tenant_id, resource_id)
        ttl = self._default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if ttl <= 0:
            raise ValueError("ttl_seconds must be positive")

        lock_metadata = metadata or self._default_metadata(tenant_id, resource_id, ttl)
        if lock_metadata.expires_at is None:
            lock_metadata = lock_metadata.model_copy(update={"expires_at": _isoformat(self._clock() + ttl)})

        acquired = self._store.set(
            key,
            lock_metadata.model_dump(mode="json"),
            ttl_seconds=ttl,
            condition=SetCondition.CREATE_IF_ABSENT,
        )
        if not acquired:
            raw_active = self._store.get(key)
            active = LockMetadata.from_stored(raw_active) if raw_active is not None else LockMetadata(locked_at="unknown")
            record_lock_acquire(outcome="contended")
            logger.info("lock_contended", lock_key=key, active_lock_id=active.lock_id)
            return LockResult(success=False, lock_key=key, active_lock_metadata=active)

        record_lock_acquire(outcome="acquired")
        logger.info("lock_acquired", lock_key=key, ttl_seconds=ttl, lock_id=lock_metadata.lock_id)
        return LockResult(success=True, lock_key=key, metadata=lock_metadata)

    def release(self, tenant_id: str, resource_id: str) -> bool:
        key = self.lock_key(tenant_id, resource_id)
        removed = self._store.delete(key)
        record_lock_release(outcome="released" if removed else "absent")
        logger.info("lock_released", lock_key=key, removed=removed)
        return removed

    def check(self, tenant_id: str, resource_id: str) -> Optional[LockMetadata]:
        raw = self._store.get(self.lock_key(tenant_id, resource_id))
        if raw is None:
            return None
        return LockMetadata.from_stored(raw)

    def _release_quietly(self, handle: LockHandle) -> None:
        try:
            handle.release()
        except Exception as exc:
            record_lock_release(outcome="error")
            logger.error("lock_release_failed", lock_key=handle.lock_key, error=str(exc))

    @contextmanager
    def hold(
        self,
        tenant_id: str,
        resource_id: str,
        *,
        ttl_seconds: Optional[int] = None,
        metadata: Optional[LockMetadata] = None,
    ) -> Iterator[LockHandle]:
        """Hold the lock for the body of a ``with`` block; fail fast on contention."""

        result = self.acquire(tenant_id, resource_id, ttl_seconds=ttl_seconds, metadata=metadata)
        if not result.success:
            active = result.active_lock_metadata.model_dump(mode="json") if result.active_lock_metadata else None
            raise LockContentionError(result.lock_key, active)

        handle = LockHandle(
            manager=self,
            tenant_id=tenant_id,
            resource_id=resource_id,
            lock_key=result.lock_key,
            acquired=True,
            holder_metadata=result.metadata,
        )
        try:
            yield handle
        except BaseException:
            self._release_quietly(handle)
            raise
        else:
            self._release_quietly(handle)

    def with_lock(
        self,
        tenant_id: str,
        resource_id: str,
        operation: Callable[[], T],
        *,
        ttl_seconds: Optional[int] = None,
        metadata: Optional[LockMetadata] = None,
    ) -> T:
        with self.hold(tenant_id, resource_id, ttl_seconds=ttl_seconds, metadata=metadata):
            return operation()
