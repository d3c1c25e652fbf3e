import time

import pytest

from novel2epub.core.errors import LockTimeoutError
from novel2epub.services.locks import DistributedLock, LockHandle


@pytest.fixture
def lock(redis_client):
    return DistributedLock(redis_client, default_ttl_ms=5_000, default_wait_ms=100)


def test_only_one_holder(lock):
    first = lock.try_acquire("job:1")
    assert first is not None
    assert lock.try_acquire("job:1") is None
    assert lock.is_locked("job:1")

    assert lock.release(first) is True
    assert not lock.is_locked("job:1")


def test_release_checks_token(lock):
    held = lock.try_acquire("job:1")
    assert lock.release(LockHandle(key="job:1", token="someone-else")) is False
    assert lock.is_locked("job:1")
    lock.release(held)


def test_acquire_times_out(lock):
    lock.try_acquire("job:1")
    started = time.monotonic()
    assert lock.acquire("job:1", wait_timeout_ms=100) is None
    assert time.monotonic() - started >= 0.1


def test_lock_expires_after_ttl(lock):
    lock.try_acquire("job:1", ttl_ms=50)
    time.sleep(0.1)
    assert lock.try_acquire("job:1") is not None


def test_hold_raises_when_busy(lock):
    lock.try_acquire("job:1")
    with pytest.raises(LockTimeoutError):
        with lock.hold("job:1", wait_timeout_ms=0):
            pass


def test_hold_releases_on_exit(lock):
    with pytest.raises(RuntimeError):
        with lock.hold("job:1"):
            assert lock.is_locked("job:1")
            raise RuntimeError("inside")
    assert not lock.is_locked("job:1")
