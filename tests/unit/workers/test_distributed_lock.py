"""Unit tests for DistributedLock.

Uses fakeredis for fast, isolated testing without a real Redis server.
"""

import time
from datetime import timedelta

import pytest

# Try to import fakeredis, skip tests if not available
try:
    import fakeredis
    FAKEREDIS_AVAILABLE = True
except ImportError:
    FAKEREDIS_AVAILABLE = False

pytestmark = pytest.mark.skipif(
    not FAKEREDIS_AVAILABLE,
    reason="fakeredis not installed"
)

from specvital_collector.workers.lock import DEFAULT_LOCK_KEY, DistributedLock


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest.fixture
def make_lock(server):
    """Build locks on separate clients sharing one fake server, like replicas."""
    locks = []

    def factory(**kwargs):
        lock = DistributedLock(fakeredis.FakeRedis(server=server), **kwargs)
        locks.append(lock)
        return lock

    yield factory
    for lock in locks:
        lock.close()


class TestAcquire:
    def test_only_one_replica_wins(self, make_lock):
        first, second = make_lock(), make_lock()

        assert first.try_acquire() is True
        assert second.try_acquire() is False
        assert first.owned()
        assert not second.owned()

    def test_release_lets_another_replica_acquire(self, make_lock):
        first, second = make_lock(), make_lock()
        first.try_acquire()
        first.release()
        assert second.try_acquire() is True

    def test_ttl_applied(self, make_lock, server):
        lock = make_lock(ttl=timedelta(seconds=30))
        lock.try_acquire()
        ttl = fakeredis.FakeRedis(server=server).pttl(DEFAULT_LOCK_KEY)
        assert 0 < ttl <= 30_000

    def test_release_without_acquire_is_noop(self, make_lock):
        make_lock().release()

    def test_release_after_expiry_does_not_delete_new_holder(self, make_lock, server):
        first, second = make_lock(), make_lock()
        first.try_acquire()
        fakeredis.FakeRedis(server=server).delete(DEFAULT_LOCK_KEY)
        assert second.try_acquire() is True

        first.release()
        assert second.owned()


class TestHold:
    def test_renews_while_held(self, make_lock, server):
        lock = make_lock(ttl=timedelta(seconds=1), renew_interval=0.1)
        client = fakeredis.FakeRedis(server=server)
        lock.try_acquire()

        with lock.hold() as lost:
            time.sleep(1.3)
            assert not lost.is_set()
            assert client.exists(DEFAULT_LOCK_KEY)

        assert not client.exists(DEFAULT_LOCK_KEY)

    def test_lost_lock_is_signalled(self, make_lock, server):
        lock = make_lock(ttl=timedelta(seconds=5), renew_interval=0.05)
        lock.try_acquire()

        with lock.hold() as lost:
            fakeredis.FakeRedis(server=server).set(DEFAULT_LOCK_KEY, "someone-else")
            assert lost.wait(2)

        assert fakeredis.FakeRedis(server=server).get(DEFAULT_LOCK_KEY) == b"someone-else"

    def test_released_on_error(self, make_lock, server):
        lock = make_lock()
        lock.try_acquire()
        with pytest.raises(RuntimeError):
            with lock.hold():
                raise RuntimeError("tick failed")
        assert not fakeredis.FakeRedis(server=server).exists(DEFAULT_LOCK_KEY)


def test_default_renew_interval_is_third_of_ttl(make_lock):
    lock = make_lock(ttl=timedelta(minutes=3))
    assert lock.renew_interval == 60
