"""Analyze use case: clone a repository, scan its tests, persist the result.

Workflow of :meth:`AnalyzeUseCase.execute`:

1. Validate the request (nothing is written for invalid input)
2. Resolve the user's OAuth token, falling back to public access
3. Clone under a process-wide limit on concurrent clones
4. Create a ``running`` analysis record
5. Scan the checkout for its test inventory
6. Save the inventory and mark the analysis ``completed``

Any failure after step 4 marks the analysis ``failed``. That write runs
under a fresh unbounded deadline so it still happens when the task's own
budget has run out or the worker is shutting down.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from uuid import UUID

from specvital_collector.deadline import Deadline, ensure_deadline
from specvital_collector.domain.errors import (
    CloneFailedError,
    SaveFailedError,
    ScanFailedError,
    TokenLookupFailedError,
    TokenNotFoundError,
)
from specvital_collector.domain.models import (
    AnalysisResult,
    AnalyzeRequest,
    CreateAnalysisRecordParams,
    Inventory,
    SaveAnalysisInventoryParams,
)
from specvital_collector.domain.ports import VCS, AnalysisStore, Parser, Source, TokenLookup
from specvital_collector.logging_config import get_logger
from specvital_collector.vcs.git import build_repo_url

logger = get_logger(__name__)

DEFAULT_MAX_CONCURRENT_CLONES = 2
DEFAULT_ANALYSIS_TIMEOUT = timedelta(minutes=15)
# Only GitHub is supported as a VCS provider (see build_repo_url)
DEFAULT_OAUTH_PROVIDER = "github"

# Seconds between deadline checks while waiting for a clone slot
_SLOT_POLL_INTERVAL = 0.5


def _as_timedelta(value: timedelta | float | None) -> timedelta | None:
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value
    return timedelta(seconds=value)


class AnalyzeUseCase:
    """Orchestrates one repository analysis.

    A single instance is shared by all worker threads; the clone limit is
    enforced across them.

    Args:
        store: Analysis persistence
        vcs: Repository cloning
        parser: Test inventory extraction
        token_lookup: OAuth token source; None means public access only
        analysis_timeout: Budget for one execution (zero or negative uses
            the default)
        max_concurrent_clones: Clone limit (zero or negative uses the default)
    """

    def __init__(
        self,
        store: AnalysisStore,
        vcs: VCS,
        parser: Parser,
        token_lookup: TokenLookup | None = None,
        *,
        analysis_timeout: timedelta | float | None = None,
        max_concurrent_clones: int | None = None,
    ):
        timeout = _as_timedelta(analysis_timeout)
        if timeout is None or timeout <= timedelta(0):
            timeout = DEFAULT_ANALYSIS_TIMEOUT
        if not max_concurrent_clones or max_concurrent_clones <= 0:
            max_concurrent_clones = DEFAULT_MAX_CONCURRENT_CLONES

        self._store = store
        self._vcs = vcs
        self._parser = parser
        self._token_lookup = token_lookup
        self.analysis_timeout = timeout
        self.max_concurrent_clones = max_concurrent_clones
        self._clone_slots = threading.BoundedSemaphore(max_concurrent_clones)

    def execute(
        self,
        request: AnalyzeRequest,
        *,
        deadline: Deadline | None = None,
    ) -> AnalysisResult:
        """Run the full analysis workflow for ``request``.

        Raises:
            InvalidInputError: The request failed validation
            TokenLookupFailedError: Token store failure (not a missing token)
            CloneFailedError: No clone slot within the budget, or clone failed
            ScanFailedError: The parser failed
            SaveFailedError: A store write failed
        """
        request.validate()

        deadline = ensure_deadline(deadline).child(self.analysis_timeout)
        repo_url = build_repo_url(request.owner, request.repo)

        try:
            token = self._lookup_token(request.user_id, deadline)
        except Exception as e:
            raise TokenLookupFailedError(
                f"failed to lookup OAuth token for user {request.user_id}: {e}"
            ) from e

        try:
            source = self._clone_with_slot(repo_url, token, deadline)
        except Exception as e:
            raise CloneFailedError(e) from e

        try:
            return self._analyze_source(request, source, deadline)
        finally:
            self._close_source(source, request)

    def _analyze_source(
        self,
        request: AnalyzeRequest,
        source: Source,
        deadline: Deadline,
    ) -> AnalysisResult:
        create_params = CreateAnalysisRecordParams(
            owner=request.owner,
            repo=request.repo,
            commit_sha=source.commit_sha,
            branch=source.branch,
            user_id=request.user_id,
        )
        try:
            create_params.validate()
            analysis_id = self._store.create_analysis_record(create_params, deadline=deadline)
        except Exception as e:
            raise SaveFailedError(e) from e

        try:
            try:
                inventory = self._parser.scan(source, deadline=deadline)
            except Exception as e:
                raise ScanFailedError(e) from e

            if inventory is None:
                logger.warning(
                    "scan_result_has_no_inventory",
                    owner=request.owner,
                    repo=request.repo,
                    commit_sha=source.commit_sha,
                )
                inventory = Inventory(files=())

            save_params = SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=inventory)
            try:
                save_params.validate()
                self._store.save_analysis_inventory(save_params, deadline=deadline)
            except Exception as e:
                raise SaveFailedError(e) from e
        except BaseException as err:
            self._record_failure(analysis_id, err)
            raise

        logger.info(
            "analysis_completed",
            analysis_id=str(analysis_id),
            owner=request.owner,
            repo=request.repo,
            commit_sha=source.commit_sha,
            branch=source.branch,
            total_tests=inventory.total_tests,
        )
        return AnalysisResult(
            analysis_id=analysis_id,
            commit_sha=source.commit_sha,
            branch=source.branch,
        )

    def _lookup_token(self, user_id: str | None, deadline: Deadline) -> str | None:
        """Resolve the OAuth token for ``user_id``.

        Returns None (public access) when there is no user, no token lookup,
        no stored token, or an empty token. Any other failure is raised.
        """
        if user_id is None or self._token_lookup is None:
            return None

        try:
            token = self._token_lookup.get_oauth_token(
                user_id, DEFAULT_OAUTH_PROVIDER, deadline=deadline
            )
        except TokenNotFoundError:
            logger.info("oauth_token_not_found_using_public_access", user_id=user_id)
            return None

        if not token:
            logger.warning("oauth_token_empty_using_public_access", user_id=user_id)
            return None
        return token

    def _clone_with_slot(self, url: str, token: str | None, deadline: Deadline) -> Source:
        self._acquire_clone_slot(deadline)
        try:
            return self._vcs.clone(url, token, deadline=deadline)
        finally:
            self._clone_slots.release()

    def _acquire_clone_slot(self, deadline: Deadline) -> None:
        """Block until a clone slot is free, honouring the deadline."""
        while True:
            deadline.check()
            remaining = deadline.remaining()
            wait = _SLOT_POLL_INTERVAL if remaining is None else min(_SLOT_POLL_INTERVAL, remaining)
            if self._clone_slots.acquire(timeout=wait):
                return

    def _record_failure(self, analysis_id: UUID, err: BaseException) -> None:
        message = str(err) or type(err).__name__
        try:
            self._store.record_failure(
                analysis_id, message, deadline=Deadline.background()
            )
        except Exception as record_err:
            logger.error(
                "record_analysis_failure_failed",
                analysis_id=str(analysis_id),
                error=str(record_err),
                original_error=message,
            )

    def _close_source(self, source: Source, request: AnalyzeRequest) -> None:
        try:
            source.close(deadline=Deadline.background())
        except Exception as e:
            logger.error(
                "source_close_failed",
                owner=request.owner,
                repo=request.repo,
                error=str(e),
            )
