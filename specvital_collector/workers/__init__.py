"""Queue workers, task handlers and the auto-refresh scheduler.

Start a worker:
    specvital-collector worker

Start the scheduler:
    specvital-collector scheduler
"""

from specvital_collector.workers.handlers import AnalyzeHandler
from specvital_collector.workers.lock import DEFAULT_LOCK_KEY, DEFAULT_LOCK_TTL, DistributedLock
from specvital_collector.workers.queue import TASK_ANALYZE, AnalyzePayload, QueueClient
from specvital_collector.workers.scheduler import AutoRefreshScheduler

__all__ = [
    "DEFAULT_LOCK_KEY",
    "DEFAULT_LOCK_TTL",
    "TASK_ANALYZE",
    "AnalyzeHandler",
    "AnalyzePayload",
    "AutoRefreshScheduler",
    "DistributedLock",
    "QueueClient",
]
