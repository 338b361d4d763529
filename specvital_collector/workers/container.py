"""Dependency wiring for the worker and scheduler processes.

The worker container is built lazily on first task so importing the Celery
app (for example from ``celery inspect``) never touches the database.
"""

from __future__ import annotations

import threading
from datetime import timedelta

import redis
from sqlalchemy import Engine

from specvital_collector.config import SchedulerConfig, WorkerConfig, load_worker_config
from specvital_collector.db.repositories import OAuthTokenRepository, PostgresAnalysisStore
from specvital_collector.db.session import create_db_engine, create_session_factory
from specvital_collector.logging_config import get_logger
from specvital_collector.parsers import PythonTestParser
from specvital_collector.services.analyze import AnalyzeUseCase
from specvital_collector.services.autorefresh import AutoRefreshUseCase
from specvital_collector.utils.encryption import TokenEncryptor
from specvital_collector.vcs.git import GitVCS
from specvital_collector.workers.handlers import AnalyzeHandler
from specvital_collector.workers.lock import DistributedLock
from specvital_collector.workers.queue import QueueClient
from specvital_collector.workers.scheduler import AutoRefreshScheduler

logger = get_logger(__name__)


class WorkerContainer:
    """Objects shared by every task executed in a worker process."""

    def __init__(self, config: WorkerConfig, engine: Engine | None = None):
        self.config = config
        self.engine = engine or create_db_engine(config.database_url)
        self.session_factory = create_session_factory(self.engine)
        self.store = PostgresAnalysisStore(self.session_factory)
        self.token_lookup = OAuthTokenRepository(
            self.session_factory, TokenEncryptor(config.encryption_key)
        )
        self.vcs = GitVCS(clone_base_dir=config.clone_dir)
        self.parser = PythonTestParser()
        self.analyze_use_case = AnalyzeUseCase(
            self.store,
            self.vcs,
            self.parser,
            self.token_lookup,
            analysis_timeout=timedelta(seconds=config.analysis_timeout),
            max_concurrent_clones=config.max_concurrent_clones,
        )
        self.analyze_handler = AnalyzeHandler(self.analyze_use_case)

    def close(self) -> None:
        self.engine.dispose()
        logger.info("worker_container_closed")


_container: WorkerContainer | None = None
_container_lock = threading.Lock()


def get_container() -> WorkerContainer:
    """Process-wide worker container, built from the environment on first use."""
    global _container
    if _container is None:
        with _container_lock:
            if _container is None:
                config = load_worker_config()
                _container = WorkerContainer(config)
                logger.info("worker_container_created", **config.describe())
    return _container


def set_container(container: WorkerContainer | None) -> None:
    """Install a prebuilt container (used by the CLI and tests)."""
    global _container
    with _container_lock:
        _container = container


def close_container() -> None:
    global _container
    with _container_lock:
        if _container is not None:
            _container.close()
            _container = None


class SchedulerContainer:
    """Objects used by the auto-refresh scheduler process."""

    def __init__(self, config: SchedulerConfig):
        self.config = config
        self.engine = create_db_engine(config.database_url)
        self.store = PostgresAnalysisStore(create_session_factory(self.engine))
        self.queue = QueueClient.from_url(config.redis_url)
        self.lock = DistributedLock(
            redis.Redis.from_url(config.redis_url),
            ttl=timedelta(seconds=config.lock_ttl),
        )
        self.use_case = AutoRefreshUseCase(
            self.store,
            self.queue,
            GitVCS(),
            batch_size=config.batch_size,
            refresh_interval=timedelta(hours=config.refresh_interval_hours),
            skip_unchanged=config.skip_unchanged,
        )
        self.scheduler = AutoRefreshScheduler(
            self.use_case,
            self.lock,
            interval=timedelta(seconds=config.interval),
        )

    def close(self) -> None:
        for name, close in (
            ("lock", self.lock.close),
            ("queue", self.queue.close),
            ("engine", self.engine.dispose),
        ):
            try:
                close()
            except Exception as e:
                logger.error("scheduler_resource_close_failed", resource=name, error=str(e))
