"""``enqueue`` command: put one analyze task on the queue."""

from __future__ import annotations

import os
import sys

import click
from rich.console import Console

from specvital_collector.domain.models import is_valid_github_name, parse_uuid
from specvital_collector.logging_config import get_logger

console = Console()
err_console = Console(stderr=True)
logger = get_logger(__name__)

USAGE = """\
Usage: specvital-collector enqueue [OPTIONS] <github-url>

Arguments:
  <github-url>  GitHub repository URL (e.g., github.com/owner/repo)

Options:
  --redis TEXT    Redis URL (defaults to REDIS_URL)
  --user-id TEXT  User whose OAuth token is used for private repositories

Examples:
  specvital-collector enqueue github.com/octocat/Hello-World
  specvital-collector enqueue --redis redis://localhost:6379 github.com/owner/repo
  specvital-collector enqueue https://github.com/owner/repo.git
"""


def parse_github_url(url: str) -> tuple[str, str]:
    """Extract ``(owner, repo)`` from a GitHub repository reference.

    Accepts ``owner/repo``, ``github.com/owner/repo`` and
    ``http(s)://github.com/owner/repo`` with an optional ``.git`` suffix
    and trailing slash.

    Raises:
        ValueError: The reference is not a GitHub repository
    """
    value = url.strip()
    for prefix in ("https://", "http://"):
        if value.startswith(prefix):
            value = value[len(prefix):]
            if not value.startswith("github.com/"):
                raise ValueError(f"not a GitHub URL: {url!r}")
            break
    if value.startswith("github.com/"):
        value = value[len("github.com/"):]

    value = value.rstrip("/")
    if value.endswith(".git"):
        value = value[: -len(".git")]

    parts = value.split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"invalid GitHub repository URL: {url!r} (expected owner/repo)")

    owner, repo = parts
    if not is_valid_github_name(owner) or not is_valid_github_name(repo):
        raise ValueError(f"invalid characters in owner/repo: {url!r}")
    return owner, repo


def _fail(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}", highlight=False)
    sys.exit(1)


@click.command()
@click.argument("url", required=False)
@click.option("--redis", "redis_url", default=None, help="Redis URL (defaults to REDIS_URL)")
@click.option("--user-id", default=None, help="User whose OAuth token is used for private repositories")
def enqueue(url: str | None, redis_url: str | None, user_id: str | None) -> None:
    """Enqueue an analyze task for a GitHub repository."""
    if not url:
        err_console.print(USAGE, highlight=False, markup=False)
        sys.exit(1)

    redis_url = redis_url or os.environ.get("REDIS_URL", "")
    if not redis_url:
        _fail("Redis URL is required (use --redis or set REDIS_URL)")

    try:
        owner, repo = parse_github_url(url)
    except ValueError as e:
        _fail(str(e))

    if user_id is not None:
        try:
            parse_uuid(user_id)
        except ValueError:
            _fail(f"invalid user ID: {user_id!r}")

    from specvital_collector.workers.queue import QueueClient

    try:
        with QueueClient.from_url(redis_url) as client:
            task_id = client.enqueue_analyze(owner, repo, user_id)
    except Exception as e:
        _fail(f"failed to enqueue task: {e}")

    logger.info("task_enqueued", task_id=task_id, owner=owner, repo=repo)
    console.print(f"[green]Enqueued[/green] {owner}/{repo} (task {task_id})", highlight=False)
