"""Queue handlers: decode task payloads and invoke use cases."""

from __future__ import annotations

from specvital_collector.deadline import Deadline
from specvital_collector.domain.models import AnalysisResult, AnalyzeRequest
from specvital_collector.logging_config import get_logger
from specvital_collector.services.analyze import AnalyzeUseCase
from specvital_collector.workers.queue import AnalyzePayload

logger = get_logger(__name__)


class AnalyzeHandler:
    """Handles ``analysis:analyze`` tasks.

    Raising from :meth:`process_task` makes the queue retry the task;
    returning acknowledges it.
    """

    def __init__(self, use_case: AnalyzeUseCase):
        self._use_case = use_case

    def process_task(
        self,
        payload: bytes | str,
        *,
        deadline: Deadline | None = None,
    ) -> AnalysisResult:
        """Decode ``payload`` and run the analysis.

        Raises:
            PayloadDecodeError: The payload is malformed
            AnalysisError: Re-raised unchanged from the use case
        """
        data = AnalyzePayload.from_json(payload)

        logger.info("processing_analyze_task", owner=data.owner, repo=data.repo)

        request = AnalyzeRequest(owner=data.owner, repo=data.repo, user_id=data.user_id)
        try:
            result = self._use_case.execute(request, deadline=deadline)
        except Exception as e:
            logger.error(
                "analyze_task_failed",
                owner=data.owner,
                repo=data.repo,
                error=str(e),
            )
            raise

        logger.info(
            "analyze_task_completed",
            owner=data.owner,
            repo=data.repo,
            analysis_id=str(result.analysis_id),
        )
        return result
