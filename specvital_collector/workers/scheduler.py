"""Auto-refresh scheduler loop.

Every replica runs the loop; on each tick only the replica that wins the
distributed lock enqueues refresh tasks. The lock is renewed while the tick
runs, and the tick stops early if a renewal fails.
"""

from __future__ import annotations

import threading
from datetime import timedelta

from specvital_collector.logging_config import LogContext, get_logger
from specvital_collector.services.autorefresh import AutoRefreshUseCase, RefreshResult
from specvital_collector.workers.lock import DistributedLock

logger = get_logger(__name__)

DEFAULT_INTERVAL = timedelta(hours=1)


class AutoRefreshScheduler:
    """Runs :class:`AutoRefreshUseCase` periodically under a distributed lock."""

    def __init__(
        self,
        use_case: AutoRefreshUseCase,
        lock: DistributedLock,
        interval: timedelta = DEFAULT_INTERVAL,
    ):
        self._use_case = use_case
        self._lock = lock
        self.interval = interval if interval > timedelta(0) else DEFAULT_INTERVAL
        self._stop = threading.Event()

    def tick(self) -> RefreshResult | None:
        """Run one refresh if this replica wins the lock.

        Returns:
            The refresh counters, or None when another replica holds the lock
        """
        if not self._lock.try_acquire():
            return None

        with self._lock.hold() as lost:
            return self._use_case.run(
                should_abort=lambda: lost.is_set() or self._stop.is_set()
            )

    def run(self, stop_event: threading.Event | None = None) -> None:
        """Tick now and then every ``interval`` until ``stop_event`` is set."""
        if stop_event is not None:
            self._stop = stop_event
        logger.info("scheduler_started", interval=self.interval.total_seconds())

        tick_number = 0
        while not self._stop.is_set():
            tick_number += 1
            with LogContext(tick=tick_number):
                try:
                    self.tick()
                except Exception as e:
                    logger.error("scheduler_tick_failed", error=str(e), exc_info=True)
            self._stop.wait(self.interval.total_seconds())

        logger.info("scheduler_stopped")

    def stop(self) -> None:
        self._stop.set()
