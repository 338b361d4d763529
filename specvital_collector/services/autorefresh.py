"""Auto-refresh: periodically re-enqueue analyses of known codebases."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from specvital_collector.deadline import Deadline, ensure_deadline
from specvital_collector.domain.models import DueCodebase
from specvital_collector.domain.ports import VCS, RefreshStore, TaskQueue
from specvital_collector.logging_config import get_logger
from specvital_collector.vcs.git import build_repo_url

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 100
DEFAULT_REFRESH_INTERVAL = timedelta(hours=24)


@dataclass
class RefreshResult:
    """Counters for one refresh run."""

    due: int = 0
    enqueued: int = 0
    skipped_unchanged: int = 0
    failed: int = 0
    aborted: bool = False


class AutoRefreshUseCase:
    """Enqueues analyze tasks for codebases whose last analysis is stale.

    When ``skip_unchanged`` is set and a VCS is given, the remote HEAD is
    compared with the last analyzed commit and unchanged codebases are
    skipped until the next interval. The probe is best-effort: if it fails
    the codebase is enqueued.

    Args:
        store: Source of due codebases
        queue: Task producer
        vcs: Used to probe remote HEAD commits
        batch_size: Maximum codebases per run
        refresh_interval: Age after which an analysis is stale
        skip_unchanged: Skip codebases whose remote HEAD was already analyzed
    """

    def __init__(
        self,
        store: RefreshStore,
        queue: TaskQueue,
        vcs: VCS | None = None,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
        skip_unchanged: bool = True,
    ):
        self._store = store
        self._queue = queue
        self._vcs = vcs
        self.batch_size = batch_size if batch_size > 0 else DEFAULT_BATCH_SIZE
        self.refresh_interval = (
            refresh_interval if refresh_interval > timedelta(0) else DEFAULT_REFRESH_INTERVAL
        )
        self.skip_unchanged = skip_unchanged

    def run(
        self,
        now: datetime | None = None,
        *,
        should_abort: Callable[[], bool] | None = None,
        deadline: Deadline | None = None,
    ) -> RefreshResult:
        """Enqueue one batch of due codebases.

        ``should_abort`` is checked before each codebase; a True result stops
        the run. Tasks already enqueued stay enqueued.
        """
        deadline = ensure_deadline(deadline)
        now = now or datetime.now(timezone.utc)
        result = RefreshResult()

        due = self._store.list_due_for_refresh(
            now,
            self.batch_size,
            refresh_interval=self.refresh_interval,
            deadline=deadline,
        )
        result.due = len(due)

        for codebase in due:
            if (should_abort is not None and should_abort()) or deadline.done:
                result.aborted = True
                logger.warning(
                    "auto_refresh_aborted",
                    enqueued=result.enqueued,
                    remaining=result.due - result.enqueued - result.skipped_unchanged - result.failed,
                )
                break

            if self._is_unchanged(codebase, deadline):
                result.skipped_unchanged += 1
                self._mark_checked(codebase, now, deadline)
                continue

            user_id = str(codebase.refresh_user_id) if codebase.refresh_user_id else None
            try:
                task_id = self._queue.enqueue_analyze(codebase.owner, codebase.name, user_id)
            except Exception as e:
                result.failed += 1
                logger.error(
                    "auto_refresh_enqueue_failed",
                    owner=codebase.owner,
                    repo=codebase.name,
                    error=str(e),
                )
                continue

            result.enqueued += 1
            logger.info(
                "auto_refresh_enqueued",
                owner=codebase.owner,
                repo=codebase.name,
                task_id=task_id,
            )

        logger.info(
            "auto_refresh_completed",
            due=result.due,
            enqueued=result.enqueued,
            skipped_unchanged=result.skipped_unchanged,
            failed=result.failed,
            aborted=result.aborted,
        )
        return result

    def _is_unchanged(self, codebase: DueCodebase, deadline: Deadline) -> bool:
        if not self.skip_unchanged or self._vcs is None or not codebase.last_commit_sha:
            return False
        url = build_repo_url(codebase.owner, codebase.name, codebase.host)
        try:
            head = self._vcs.get_head_commit(url, deadline=deadline)
        except Exception as e:
            logger.warning(
                "auto_refresh_head_probe_failed",
                owner=codebase.owner,
                repo=codebase.name,
                error=str(e),
            )
            return False
        if head == codebase.last_commit_sha:
            logger.debug(
                "auto_refresh_skipped_unchanged",
                owner=codebase.owner,
                repo=codebase.name,
                commit_sha=head,
            )
            return True
        return False

    def _mark_checked(self, codebase: DueCodebase, now: datetime, deadline: Deadline) -> None:
        try:
            self._store.mark_refresh_checked(codebase.codebase_id, now, deadline=deadline)
        except Exception as e:
            logger.warning(
                "auto_refresh_mark_checked_failed",
                owner=codebase.owner,
                repo=codebase.name,
                error=str(e),
            )
