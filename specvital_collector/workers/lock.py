"""Redis-backed distributed lock for leader election between replicas.

Built on :class:`redis.lock.Lock`: acquisition is ``SET NX PX`` with a
random token, and release and extension are Lua scripts that act only
while the stored token is still ours. A lock whose holder dies expires
after its TTL.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import timedelta

import redis
from redis.exceptions import LockError, LockNotOwnedError

from specvital_collector.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_LOCK_KEY = "scheduler:auto-refresh:lock"
DEFAULT_LOCK_TTL = timedelta(minutes=10)


class DistributedLock:
    """Non-blocking, renewable lock on a single Redis key.

    Args:
        client: Redis client
        key: Lock key shared by all contenders
        ttl: Expiry applied on acquire and on every renewal
        renew_interval: Seconds between renewals while held (ttl/3 if None)
    """

    def __init__(
        self,
        client: redis.Redis,
        key: str = DEFAULT_LOCK_KEY,
        ttl: timedelta = DEFAULT_LOCK_TTL,
        renew_interval: float | None = None,
    ):
        self._client = client
        self.key = key
        self.ttl = ttl
        self.renew_interval = renew_interval or ttl.total_seconds() / 3
        # Not thread-local: the renewer thread must see the owner's token
        self._lock = client.lock(
            key,
            timeout=ttl.total_seconds(),
            blocking=False,
            thread_local=False,
        )

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> DistributedLock:
        return cls(redis.Redis.from_url(redis_url), **kwargs)

    def try_acquire(self) -> bool:
        """Acquire the lock if it is free. Never blocks."""
        acquired = bool(self._lock.acquire(blocking=False))
        if acquired:
            logger.info("lock_acquired", key=self.key, ttl=self.ttl.total_seconds())
        else:
            logger.debug("lock_held_elsewhere", key=self.key)
        return acquired

    def extend(self) -> None:
        """Reset the TTL of a held lock.

        Raises:
            LockNotOwnedError: The lock expired or was taken by another holder
        """
        self._lock.extend(self.ttl.total_seconds(), replace_ttl=True)

    def release(self) -> None:
        """Release the lock if this instance still owns it."""
        try:
            self._lock.release()
        except LockNotOwnedError:
            logger.warning("lock_not_owned_on_release", key=self.key)
        except LockError:
            logger.debug("lock_release_without_acquire", key=self.key)
        else:
            logger.info("lock_released", key=self.key)

    def owned(self) -> bool:
        return bool(self._lock.owned())

    @contextmanager
    def hold(self) -> Iterator[threading.Event]:
        """Keep an acquired lock alive for the duration of the block.

        Yields an event that is set if a renewal fails, meaning another
        replica may now hold the lock. The lock is released on exit.
        """
        lost = threading.Event()
        stop = threading.Event()
        renewer = threading.Thread(
            target=self._renew_until_stopped,
            args=(stop, lost),
            name=f"lock-renewer:{self.key}",
            daemon=True,
        )
        renewer.start()
        try:
            yield lost
        finally:
            stop.set()
            renewer.join(timeout=self.renew_interval)
            self.release()

    def _renew_until_stopped(self, stop: threading.Event, lost: threading.Event) -> None:
        while not stop.wait(self.renew_interval):
            try:
                self.extend()
            except Exception as e:
                logger.error("lock_renewal_failed", key=self.key, error=str(e))
                lost.set()
                return
            logger.debug("lock_renewed", key=self.key)

    def close(self) -> None:
        """Release the lock if held and close the Redis client."""
        try:
            if self._lock.local.token is not None:
                self.release()
        finally:
            self._client.close()
