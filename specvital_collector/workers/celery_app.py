"""Celery application for the collector worker.

Tasks are consumed from Redis with late acknowledgement: a task is acked only
after its handler returns, and requeued if the worker dies mid-task. The
worker runs on the thread pool so every task in a process shares one
analysis use case and its clone limit.

Usage:
    # Start worker (preferred: loads and validates configuration first)
    specvital-collector worker

    # Or directly through celery
    celery -A specvital_collector.workers.celery_app worker --pool=threads
"""

from __future__ import annotations

import os
import threading

import sentry_sdk
from celery import Celery
from celery.signals import (
    task_failure,
    task_postrun,
    task_prerun,
    task_retry,
    worker_ready,
    worker_shutdown,
    worker_shutting_down,
)
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.redis import RedisIntegration

from specvital_collector.deadline import Deadline
from specvital_collector.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
DEFAULT_CONCURRENCY = 5
DEFAULT_SHUTDOWN_TIMEOUT = 30.0


def _init_sentry() -> None:
    """Initialize Sentry SDK for Celery workers."""
    sentry_dsn = os.getenv("SENTRY_DSN")
    if not sentry_dsn:
        return

    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=os.getenv("RELEASE_VERSION"),
        integrations=[
            CeleryIntegration(propagate_traces=True),
            RedisIntegration(),
        ],
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        send_default_pii=False,
    )


def create_celery_app(
    redis_url: str | None = None,
    concurrency: int | None = None,
    shutdown_timeout: float | None = None,
) -> Celery:
    """Create and configure a Celery application.

    The same factory builds the worker app and the producer apps used by
    :class:`~specvital_collector.workers.queue.QueueClient`.
    """
    redis_url = redis_url or os.environ.get("REDIS_URL", DEFAULT_REDIS_URL)
    if concurrency is None:
        concurrency = int(os.environ.get("WORKER_CONCURRENCY", DEFAULT_CONCURRENCY))
    if shutdown_timeout is None:
        shutdown_timeout = float(os.environ.get("WORKER_SHUTDOWN_TIMEOUT", DEFAULT_SHUTDOWN_TIMEOUT))

    app = Celery(
        "specvital_collector",
        broker=redis_url,
        backend=redis_url,
        include=["specvital_collector.workers.tasks"],
    )
    app.conf.update(
        # Payloads are opaque JSON strings produced by other services
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        # At-least-once delivery
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        # Threads share the process-wide clone limit
        worker_pool="threads",
        worker_concurrency=concurrency,
        worker_prefetch_multiplier=1,
        worker_soft_shutdown_timeout=shutdown_timeout,
        worker_hijack_root_logger=False,
        result_expires=86400,
        broker_connection_retry_on_startup=True,
        worker_send_task_events=True,
        task_send_sent_event=True,
    )
    return app


# Initialize Sentry before creating Celery app
_init_sentry()

celery_app = create_celery_app()

# Cancelled when the worker has been shutting down for longer than
# worker_soft_shutdown_timeout; every task deadline derives from it.
_root_deadline = Deadline.background()
_shutdown_timer: threading.Timer | None = None


def root_deadline() -> Deadline:
    """Deadline all task executions in this process derive from."""
    return _root_deadline


def _cancel_root_deadline() -> None:
    logger.warning("worker_shutdown_timeout_cancelling_tasks")
    _root_deadline.cancel("worker shutting down")


# Signal handlers for monitoring and logging


@worker_ready.connect
def on_worker_ready(sender, **kwargs) -> None:
    """Log when worker is ready to accept tasks."""
    logger.info(
        "celery_worker_ready",
        hostname=getattr(sender, "hostname", "unknown"),
        concurrency=celery_app.conf.worker_concurrency,
    )


@worker_shutting_down.connect
def on_worker_shutting_down(sig=None, how=None, exitcode=None, **kwargs) -> None:
    """Give in-flight tasks the shutdown timeout, then cancel them."""
    global _shutdown_timer
    timeout = float(celery_app.conf.worker_soft_shutdown_timeout or DEFAULT_SHUTDOWN_TIMEOUT)
    logger.info("celery_worker_shutting_down", signal=sig, how=how, timeout=timeout)
    if _shutdown_timer is None:
        _shutdown_timer = threading.Timer(timeout, _cancel_root_deadline)
        _shutdown_timer.daemon = True
        _shutdown_timer.start()


@worker_shutdown.connect
def on_worker_shutdown(sender, **kwargs) -> None:
    """Release process resources once the worker has stopped."""
    from specvital_collector.workers.container import close_container

    close_container()
    logger.info(
        "celery_worker_shutdown",
        hostname=getattr(sender, "hostname", "unknown"),
    )


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **extra) -> None:
    """Log when a task starts running."""
    logger.info(
        "celery_task_started",
        task_id=task_id,
        task_name=task.name,
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **extra) -> None:
    """Log when a task completes."""
    logger.info(
        "celery_task_completed",
        task_id=task_id,
        task_name=task.name,
        state=state,
    )


@task_retry.connect
def on_task_retry(request=None, reason=None, einfo=None, **extra) -> None:
    """Log when a task is scheduled for retry."""
    logger.warning(
        "celery_task_retry",
        task_id=getattr(request, "id", None),
        retries=getattr(request, "retries", None),
        reason=str(reason),
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **extra) -> None:
    """Log when a task fails."""
    logger.error(
        "celery_task_failed",
        task_id=task_id,
        exception=str(exception),
        traceback=str(einfo) if einfo else None,
    )
