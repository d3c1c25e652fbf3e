"""Redis-backed distributed lock.

``SET key token NX PX ttl`` acquires; release deletes the key only while it
still holds our token, so a holder whose lock expired cannot free a lock that
now belongs to someone else. A crashed holder is bounded by the TTL.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import redis

from novel2epub.core.errors import LockTimeoutError

logger = logging.getLogger(__name__)

_RETRY_INTERVAL_SEC = 0.05


@dataclass(frozen=True)
class LockHandle:
    key: str
    token: str


class DistributedLock:
    def __init__(
        self,
        client: redis.Redis,
        prefix: str = "novel2epub:lock:",
        default_ttl_ms: int = 30_000,
        default_wait_ms: int = 5_000,
    ):
        self._redis = client
        self._prefix = prefix
        self._default_ttl_ms = default_ttl_ms
        self._default_wait_ms = default_wait_ms

    def _lock_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    @staticmethod
    def _new_token() -> str:
        return f"{os.getpid()}-{uuid.uuid4().hex}"

    def try_acquire(self, key: str, ttl_ms: int | None = None) -> LockHandle | None:
        token = self._new_token()
        acquired = self._redis.set(self._lock_key(key), token, nx=True, px=ttl_ms or self._default_ttl_ms)
        if acquired:
            logger.debug("Acquired lock %s", key)
            return LockHandle(key=key, token=token)
        return None

    def acquire(self, key: str, ttl_ms: int | None = None, wait_timeout_ms: int | None = None) -> LockHandle | None:
        """Block up to ``wait_timeout_ms`` for the lock; None on timeout."""
        wait_ms = self._default_wait_ms if wait_timeout_ms is None else wait_timeout_ms
        deadline = time.monotonic() + wait_ms / 1000.0
        while True:
            handle = self.try_acquire(key, ttl_ms)
            if handle is not None:
                return handle
            if time.monotonic() >= deadline:
                logger.warning("Timed out acquiring lock %s after %dms", key, wait_ms)
                return None
            time.sleep(_RETRY_INTERVAL_SEC)

    def release(self, handle: LockHandle) -> bool:
        lock_key = self._lock_key(handle.key)

        def _txn(pipe: redis.client.Pipeline) -> bool:
            current = pipe.get(lock_key)
            if isinstance(current, bytes):
                current = current.decode("utf-8")
            if current != handle.token:
                return False
            pipe.multi()
            pipe.delete(lock_key)
            return True

        released = self._redis.transaction(_txn, lock_key, value_from_callable=True)
        if released:
            logger.debug("Released lock %s", handle.key)
        else:
            logger.warning("Lock %s expired or was taken over before release", handle.key)
        return released

    def is_locked(self, key: str) -> bool:
        return bool(self._redis.exists(self._lock_key(key)))

    @contextmanager
    def hold(self, key: str, ttl_ms: int | None = None, wait_timeout_ms: int | None = None) -> Iterator[LockHandle]:
        handle = self.acquire(key, ttl_ms, wait_timeout_ms)
        if handle is None:
            raise LockTimeoutError(key)
        try:
            yield handle
        finally:
            self.release(handle)
