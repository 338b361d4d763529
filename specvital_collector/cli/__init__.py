"""Command-line interface for specvital-collector."""

from __future__ import annotations

import signal
import sys
import threading

import click
from rich.console import Console

from specvital_collector import __version__
from specvital_collector.config import (
    ConfigError,
    load_logging_settings,
    load_scheduler_config,
    load_worker_config,
)
from specvital_collector.logging_config import configure_logging, get_logger

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides LOG_LEVEL)",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "console"], case_sensitive=False),
    default=None,
    help="Log output format (overrides LOG_FORMAT)",
)
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, log_format: str | None) -> None:
    """specvital-collector - test inventory collection worker

    Configuration is read from environment variables; see the worker and
    scheduler commands for the variables each one requires.
    """
    settings = load_logging_settings()
    json_output = settings.json_output if log_format is None else log_format.lower() == "json"
    configure_logging(level=log_level or settings.level, json_output=json_output)

    ctx.ensure_object(dict)
    ctx.obj["log_level"] = (log_level or settings.level).upper()


def _fail(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}", highlight=False)
    sys.exit(1)


@cli.command()
@click.pass_context
def worker(ctx: click.Context) -> None:
    """Consume analyze tasks from the queue.

    Requires DATABASE_URL, REDIS_URL and ENCRYPTION_KEY.
    """
    try:
        config = load_worker_config()
    except ConfigError as e:
        _fail(str(e))

    from specvital_collector.db.session import check_connection
    from specvital_collector.workers.celery_app import celery_app
    from specvital_collector.workers.container import WorkerContainer, set_container

    logger.info("starting_service", name="worker", **config.describe())

    container = WorkerContainer(config)
    try:
        check_connection(container.engine)
    except Exception as e:
        container.close()
        _fail(f"database connection: {e}")
    set_container(container)

    celery_app.conf.update(
        broker_url=config.redis_url,
        result_backend=config.redis_url,
        worker_concurrency=config.concurrency,
        worker_soft_shutdown_timeout=config.shutdown_timeout,
    )
    celery_app.worker_main([
        "worker",
        "--pool=threads",
        f"--concurrency={config.concurrency}",
        f"--loglevel={ctx.obj['log_level']}",
    ])


@cli.command()
def scheduler() -> None:
    """Periodically enqueue re-analysis of stale codebases.

    Requires DATABASE_URL and REDIS_URL. Safe to run on several replicas;
    a distributed lock elects one leader per tick.
    """
    try:
        config = load_scheduler_config()
    except ConfigError as e:
        _fail(str(e))

    from specvital_collector.workers.container import SchedulerContainer

    logger.info("starting_service", name="scheduler", **config.describe())

    container = SchedulerContainer(config)
    stop = threading.Event()

    def _handle_signal(signum, frame) -> None:
        logger.info("shutdown_signal_received", signal=signal.Signals(signum).name)
        stop.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        container.scheduler.run(stop)
    finally:
        container.close()
        logger.info("service_shutdown_complete", name="scheduler")


from specvital_collector.cli.enqueue import enqueue  # noqa: E402

cli.add_command(enqueue)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
