"""Transactional store for codebases, analyses and test inventories.

Every public write runs in a single transaction. Any failure rolls the
transaction back and is re-raised as :class:`StoreError` with the name of
the failed operation; the original exception is kept as ``__cause__``.

The suite forest of an analysis is written depth-first in parser emission
order, which is the only ordering consumers can rely on.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import exists, func, insert, or_, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from specvital_collector.deadline import Deadline, ensure_deadline
from specvital_collector.domain.errors import (
    AnalysisNotRunningError,
    InvalidParamsError,
    StoreError,
)
from specvital_collector.domain.models import (
    DEFAULT_HOST,
    CreateAnalysisRecordParams,
    DueCodebase,
    SaveAnalysisInventoryParams,
    Test,
    TestFile,
    TestStatus,
    TestSuite,
)
from specvital_collector.db.models import (
    Analysis,
    AnalysisStatus,
    Codebase,
    TestCaseRecord,
    TestCaseStatus,
    TestSuiteRecord,
)
from specvital_collector.logging_config import get_logger

logger = get_logger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 1000
MAX_SUITE_NAME_LENGTH = 500
MAX_TEST_NAME_LENGTH = 2000

NAME_TRUNCATION_SUFFIX = "..."
ERROR_TRUNCATION_SUFFIX = "... (truncated)"

DEFAULT_REFRESH_INTERVAL = timedelta(hours=24)

_TODO_STATUSES = frozenset({
    TestStatus.PENDING.value,
    TestStatus.FIXME.value,
    TestStatus.TODO.value,
    TestStatus.XFAIL.value,
})


def truncate_name(value: str, max_length: int) -> str:
    """Truncate a suite or test name to ``max_length`` characters."""
    if len(value) <= max_length:
        return value
    return value[: max_length - len(NAME_TRUNCATION_SUFFIX)] + NAME_TRUNCATION_SUFFIX


def truncate_error_message(message: str) -> str:
    """Truncate a failure message to fit the ``error_message`` column."""
    if len(message) <= MAX_ERROR_MESSAGE_LENGTH:
        return message
    keep = MAX_ERROR_MESSAGE_LENGTH - len(ERROR_TRUNCATION_SUFFIX)
    return message[:keep] + ERROR_TRUNCATION_SUFFIX


def map_test_status(status: TestStatus | str) -> TestCaseStatus:
    """Map a parser test status onto the stored status enum."""
    value = status.value if isinstance(status, TestStatus) else str(status)
    if value == TestStatus.SKIPPED.value:
        return TestCaseStatus.SKIPPED
    if value in _TODO_STATUSES:
        return TestCaseStatus.TODO
    return TestCaseStatus.ACTIVE


def _normalize_tags(tags: Any) -> list[str]:
    seen: dict[str, None] = {}
    for tag in tags or ():
        seen.setdefault(str(tag), None)
    return list(seen)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Totals:
    suites: int = 0
    tests: int = 0


class PostgresAnalysisStore:
    """Analysis persistence over a SQLAlchemy session factory.

    PostgreSQL in production; the same code runs against SQLite in tests.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def _transaction(
        self,
        deadline: Deadline,
        operation: str,
        **log_context: Any,
    ) -> Iterator[Session]:
        session = self._session_factory()
        try:
            deadline.check()
            self._apply_statement_timeout(session, deadline)
            yield session
            deadline.check()
            session.commit()
        except Exception as e:
            try:
                session.rollback()
            except Exception as rollback_error:
                logger.error(
                    "transaction_rollback_failed",
                    operation=operation,
                    error=str(rollback_error),
                    **log_context,
                )
            if isinstance(e, StoreError):
                raise
            raise StoreError(f"{operation}: {e}") from e
        finally:
            session.close()

    @staticmethod
    def _apply_statement_timeout(session: Session, deadline: Deadline) -> None:
        remaining = deadline.remaining()
        if remaining is None:
            return
        if session.get_bind().dialect.name != "postgresql":
            return
        timeout_ms = max(1, int(remaining * 1000))
        session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))

    # =========================================================================
    # Codebases
    # =========================================================================

    def upsert_codebase(
        self,
        host: str,
        owner: str,
        name: str,
        default_branch: str | None = None,
        *,
        deadline: Deadline | None = None,
    ) -> Codebase:
        """Insert or update the codebase identified by ``(host, owner, name)``.

        ``default_branch`` is only overwritten when a non-empty value is given.
        """
        with self._transaction(
            ensure_deadline(deadline), "upsert codebase", owner=owner, repo=name
        ) as session:
            return self._upsert_codebase(session, host, owner, name, default_branch)

    def _upsert_codebase(
        self,
        session: Session,
        host: str,
        owner: str,
        name: str,
        default_branch: str | None,
        refresh_user_id: UUID | None = None,
    ) -> Codebase:
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(Codebase)
        elif dialect == "sqlite":
            stmt = sqlite.insert(Codebase)
        else:
            raise StoreError(f"upsert codebase: unsupported dialect {dialect!r}")

        stmt = stmt.values(
            id=uuid4(),
            host=host,
            owner=owner,
            name=name,
            default_branch=default_branch or None,
            refresh_user_id=refresh_user_id,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Codebase.host, Codebase.owner, Codebase.name],
            set_={
                "default_branch": func.coalesce(
                    stmt.excluded.default_branch, Codebase.default_branch
                ),
                "refresh_user_id": func.coalesce(
                    stmt.excluded.refresh_user_id, Codebase.refresh_user_id
                ),
                "updated_at": func.now(),
            },
        ).returning(Codebase.id)

        codebase_id = session.execute(stmt).scalar_one()
        return session.get(Codebase, codebase_id, populate_existing=True)

    # =========================================================================
    # Analysis lifecycle
    # =========================================================================

    def create_analysis_record(
        self,
        params: CreateAnalysisRecordParams,
        *,
        deadline: Deadline | None = None,
    ) -> UUID:
        """Upsert the codebase and insert a ``running`` analysis.

        Returns:
            The new analysis id

        Raises:
            InvalidParamsError: owner, repo or commit SHA missing
            StoreError: the transaction failed
        """
        params.validate()
        refresh_user_id = None
        if params.user_id:
            try:
                refresh_user_id = UUID(params.user_id)
            except ValueError:
                raise InvalidParamsError(
                    f"invalid params: user ID {params.user_id!r} is not a UUID"
                ) from None

        with self._transaction(
            ensure_deadline(deadline),
            "create analysis record",
            owner=params.owner,
            repo=params.repo,
        ) as session:
            codebase = self._upsert_codebase(
                session,
                params.host or DEFAULT_HOST,
                params.owner,
                params.repo,
                params.branch,
                refresh_user_id,
            )
            analysis_id = uuid4()
            session.execute(
                insert(Analysis).values(
                    id=analysis_id,
                    codebase_id=codebase.id,
                    commit_sha=params.commit_sha,
                    branch_name=params.branch or None,
                    status=AnalysisStatus.RUNNING,
                    started_at=_utcnow(),
                    total_suites=0,
                    total_tests=0,
                )
            )

        logger.info(
            "analysis_record_created",
            analysis_id=str(analysis_id),
            owner=params.owner,
            repo=params.repo,
            commit_sha=params.commit_sha,
        )
        return analysis_id

    def save_analysis_inventory(
        self,
        params: SaveAnalysisInventoryParams,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Persist the inventory and mark the analysis ``completed``.

        Suites and cases are inserted depth-first; the deadline is checked
        before every statement so an expired budget aborts the walk and
        rolls back everything written so far.
        """
        params.validate()
        deadline = ensure_deadline(deadline)
        analysis_id = params.analysis_id

        with self._transaction(
            deadline, "save analysis inventory", analysis_id=str(analysis_id)
        ) as session:
            totals = _Totals()
            for test_file in params.inventory.files:
                try:
                    self._save_test_file(session, deadline, analysis_id, test_file, totals)
                except StoreError:
                    raise
                except Exception as e:
                    raise StoreError(f"save test file {test_file.path}: {e}") from e

            result = session.execute(
                update(Analysis)
                .where(Analysis.id == analysis_id)
                .where(Analysis.status == AnalysisStatus.RUNNING)
                .values(
                    status=AnalysisStatus.COMPLETED,
                    total_suites=totals.suites,
                    total_tests=totals.tests,
                    completed_at=_utcnow(),
                )
            )
            if result.rowcount == 0:
                raise AnalysisNotRunningError(
                    f"update analysis: analysis {analysis_id} is not running"
                )

        logger.info(
            "analysis_inventory_saved",
            analysis_id=str(analysis_id),
            total_suites=totals.suites,
            total_tests=totals.tests,
        )

    def record_failure(
        self,
        analysis_id: UUID,
        error_message: str,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Mark a running analysis ``failed`` with a truncated message."""
        if analysis_id is None:
            raise InvalidParamsError("invalid params: analysis ID is required")

        with self._transaction(
            ensure_deadline(deadline), "record failure", analysis_id=str(analysis_id)
        ) as session:
            result = session.execute(
                update(Analysis)
                .where(Analysis.id == analysis_id)
                .where(Analysis.status == AnalysisStatus.RUNNING)
                .values(
                    status=AnalysisStatus.FAILED,
                    error_message=truncate_error_message(error_message),
                    completed_at=_utcnow(),
                )
            )
            if result.rowcount == 0:
                raise AnalysisNotRunningError(
                    f"update analysis failed: analysis {analysis_id} is not running"
                )

    # =========================================================================
    # Inventory walk
    # =========================================================================

    def _save_test_file(
        self,
        session: Session,
        deadline: Deadline,
        analysis_id: UUID,
        test_file: TestFile,
        totals: _Totals,
        depth: int = 0,
    ) -> None:
        for suite in test_file.suites:
            self._save_suite(session, deadline, analysis_id, None, test_file, suite, depth, totals)

        if test_file.tests:
            implicit_id = self._insert_suite(
                session,
                deadline,
                analysis_id=analysis_id,
                parent_id=None,
                name=truncate_name(test_file.path, MAX_SUITE_NAME_LENGTH),
                file_path=test_file.path,
                line_number=1,
                framework=test_file.framework,
                depth=depth,
            )
            totals.suites += 1
            for test in test_file.tests:
                self._insert_test(session, deadline, implicit_id, test)
                totals.tests += 1

    def _save_suite(
        self,
        session: Session,
        deadline: Deadline,
        analysis_id: UUID,
        parent_id: UUID | None,
        test_file: TestFile,
        suite: TestSuite,
        depth: int,
        totals: _Totals,
    ) -> None:
        try:
            suite_id = self._insert_suite(
                session,
                deadline,
                analysis_id=analysis_id,
                parent_id=parent_id,
                name=truncate_name(suite.name, MAX_SUITE_NAME_LENGTH),
                file_path=test_file.path,
                line_number=suite.location.start_line,
                framework=test_file.framework,
                depth=depth,
            )
        except Exception as e:
            raise StoreError(
                f"create suite (name={truncate_name(suite.name, 100)!r}, "
                f"file={test_file.path}, line={suite.location.start_line}): {e}"
            ) from e
        totals.suites += 1

        for test in suite.tests:
            self._insert_test(session, deadline, suite_id, test)
            totals.tests += 1

        for nested in suite.suites:
            self._save_suite(
                session, deadline, analysis_id, suite_id, test_file, nested, depth + 1, totals
            )

    def _insert_suite(
        self,
        session: Session,
        deadline: Deadline,
        *,
        analysis_id: UUID,
        parent_id: UUID | None,
        name: str,
        file_path: str,
        line_number: int,
        framework: str,
        depth: int,
    ) -> UUID:
        deadline.check()
        suite_id = uuid4()
        session.execute(
            insert(TestSuiteRecord).values(
                id=suite_id,
                analysis_id=analysis_id,
                parent_id=parent_id,
                name=name,
                file_path=file_path,
                line_number=max(1, line_number),
                framework=framework or None,
                depth=depth,
            )
        )
        return suite_id

    def _insert_test(
        self,
        session: Session,
        deadline: Deadline,
        suite_id: UUID,
        test: Test,
    ) -> None:
        deadline.check()
        try:
            session.execute(
                insert(TestCaseRecord).values(
                    id=uuid4(),
                    suite_id=suite_id,
                    name=truncate_name(test.name, MAX_TEST_NAME_LENGTH),
                    line_number=test.location.start_line,
                    status=map_test_status(test.status),
                    tags=_normalize_tags(test.tags),
                )
            )
        except Exception as e:
            raise StoreError(
                f"create test case (name={truncate_name(test.name, 100)!r}, "
                f"line={test.location.start_line}): {e}"
            ) from e

    # =========================================================================
    # Queries
    # =========================================================================

    def get_analysis(self, analysis_id: UUID) -> Analysis | None:
        """Load an analysis row (detached) or None if it does not exist."""
        with self._session_factory() as session:
            return session.get(Analysis, analysis_id)

    def list_due_for_refresh(
        self,
        now: datetime,
        batch_size: int,
        *,
        refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
        deadline: Deadline | None = None,
    ) -> list[DueCodebase]:
        """Codebases whose latest analysis finished at least ``refresh_interval`` ago.

        A codebase with an analysis started within the interval that is still
        running is not due. Neither is one whose remote HEAD was found unchanged
        within the interval (see :meth:`mark_refresh_checked`). Results are
        ordered oldest first, then by id, so the same ``now`` always yields
        the same batch.
        """
        if batch_size <= 0:
            return []
        cutoff = now - refresh_interval

        finished_at = func.coalesce(Analysis.completed_at, Analysis.started_at)
        latest = (
            select(
                Analysis.codebase_id.label("codebase_id"),
                func.max(finished_at).label("last_finished_at"),
            )
            .group_by(Analysis.codebase_id)
            .subquery()
        )
        in_flight = exists().where(
            Analysis.codebase_id == Codebase.id,
            Analysis.status == AnalysisStatus.RUNNING,
            Analysis.started_at > cutoff,
        )
        last_commit = (
            select(Analysis.commit_sha)
            .where(Analysis.codebase_id == Codebase.id)
            .where(Analysis.status == AnalysisStatus.COMPLETED)
            .order_by(Analysis.completed_at.desc())
            .limit(1)
            .correlate(Codebase)
            .scalar_subquery()
        )
        stmt = (
            select(Codebase, latest.c.last_finished_at, last_commit.label("last_commit_sha"))
            .join(latest, latest.c.codebase_id == Codebase.id)
            .where(latest.c.last_finished_at <= cutoff)
            .where(~in_flight)
            .where(
                or_(
                    Codebase.last_refresh_checked_at.is_(None),
                    Codebase.last_refresh_checked_at <= cutoff,
                )
            )
            .order_by(latest.c.last_finished_at, Codebase.id)
            .limit(batch_size)
        )

        with self._transaction(ensure_deadline(deadline), "list due for refresh") as session:
            rows = session.execute(stmt).all()
            return [
                DueCodebase(
                    codebase_id=codebase.id,
                    host=codebase.host,
                    owner=codebase.owner,
                    name=codebase.name,
                    refresh_user_id=codebase.refresh_user_id,
                    last_commit_sha=last_commit_sha,
                    last_analyzed_at=last_finished_at,
                )
                for codebase, last_finished_at, last_commit_sha in rows
            ]

    def mark_refresh_checked(
        self,
        codebase_id: UUID,
        checked_at: datetime,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Record that a due codebase was probed and found unchanged."""
        with self._transaction(
            ensure_deadline(deadline), "mark refresh checked", codebase_id=str(codebase_id)
        ) as session:
            session.execute(
                update(Codebase)
                .where(Codebase.id == codebase_id)
                .values(last_refresh_checked_at=checked_at)
            )
