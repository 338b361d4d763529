"""Task queue producer and payload codec.

The analyze task carries a single JSON string argument, so producers in
other languages can enqueue it without speaking Celery's argument model::

    {"owner": "octocat", "repo": "Hello-World", "user_id": "..."}

``user_id`` is optional and omitted when absent.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from celery import Celery

from specvital_collector.domain.errors import PayloadDecodeError
from specvital_collector.logging_config import get_logger

logger = get_logger(__name__)

TASK_ANALYZE = "analysis:analyze"


@dataclass(frozen=True)
class AnalyzePayload:
    """Wire format of the ``analysis:analyze`` task."""

    owner: str
    repo: str
    user_id: str | None = None

    def to_json(self) -> str:
        data = {"owner": self.owner, "repo": self.repo}
        if self.user_id is not None:
            data["user_id"] = self.user_id
        return json.dumps(data)

    @classmethod
    def from_json(cls, payload: bytes | str) -> AnalyzePayload:
        """Decode a task payload.

        Raises:
            PayloadDecodeError: Not JSON, not an object, or fields of the
                wrong type
        """
        try:
            if isinstance(payload, bytes):
                payload = payload.decode("utf-8")
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError, TypeError) as e:
            raise PayloadDecodeError(f"unmarshal payload: {e}") from e

        if not isinstance(data, dict):
            raise PayloadDecodeError("unmarshal payload: expected a JSON object")

        owner = data.get("owner", "")
        repo = data.get("repo", "")
        user_id = data.get("user_id")
        if not isinstance(owner, str) or not isinstance(repo, str):
            raise PayloadDecodeError("unmarshal payload: owner and repo must be strings")
        if user_id is not None and not isinstance(user_id, str):
            raise PayloadDecodeError("unmarshal payload: user_id must be a string")
        return cls(owner=owner, repo=repo, user_id=user_id)


class QueueClient:
    """Enqueues tasks by name on the collector's broker.

    Args:
        app: Celery application used as producer
        owns_app: Close the app's connections on :meth:`close`
    """

    def __init__(self, app: Celery, owns_app: bool = False):
        self._app = app
        self._owns_app = owns_app

    @classmethod
    def from_url(cls, redis_url: str) -> QueueClient:
        from specvital_collector.workers.celery_app import create_celery_app

        return cls(create_celery_app(redis_url), owns_app=True)

    def enqueue(self, task_type: str, payload: bytes | str) -> str:
        """Send ``payload`` as the single argument of task ``task_type``.

        Returns:
            The task id
        """
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        result = self._app.send_task(task_type, args=[payload])
        logger.info("task_enqueued", task_id=result.id, task_name=task_type)
        return result.id

    def enqueue_analyze(self, owner: str, repo: str, user_id: str | None = None) -> str:
        payload = AnalyzePayload(owner=owner, repo=repo, user_id=user_id)
        return self.enqueue(TASK_ANALYZE, payload.to_json())

    def close(self) -> None:
        if self._owns_app:
            self._app.close()

    def __enter__(self) -> QueueClient:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
