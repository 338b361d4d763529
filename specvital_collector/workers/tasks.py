"""Celery task definitions.

Retries use exponential backoff with jitter. Malformed payloads and invalid
requests can never succeed, so they fail once without retry and stay in the
result backend as FAILURE for inspection.
"""

from __future__ import annotations

from typing import Any

from specvital_collector.domain.errors import InvalidInputError, PayloadDecodeError
from specvital_collector.logging_config import LogContext, get_logger
from specvital_collector.workers.celery_app import celery_app, root_deadline
from specvital_collector.workers.container import get_container
from specvital_collector.workers.queue import TASK_ANALYZE

logger = get_logger(__name__)


@celery_app.task(
    bind=True,
    name=TASK_ANALYZE,
    max_retries=25,
    autoretry_for=(Exception,),
    dont_autoretry_for=(PayloadDecodeError, InvalidInputError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
)
def analyze_repository(self, payload: str) -> dict[str, Any]:
    """Analyze one repository.

    Args:
        payload: JSON ``{"owner", "repo", "user_id"?}``

    Returns:
        Identifiers of the completed analysis
    """
    with LogContext(task_id=self.request.id, attempt=self.request.retries + 1):
        handler = get_container().analyze_handler
        result = handler.process_task(payload, deadline=root_deadline())
        return {
            "analysis_id": str(result.analysis_id),
            "commit_sha": result.commit_sha,
            "branch": result.branch,
        }
