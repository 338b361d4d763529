"""Unit tests for PostgresAnalysisStore.

These tests use an in-memory SQLite database (see tests/conftest.py) to
exercise the transactional behaviour without a PostgreSQL server.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update

from specvital_collector.deadline import Deadline, DeadlineExceeded
from specvital_collector.db.models import (
    Analysis,
    AnalysisStatus,
    Codebase,
    TestCaseRecord,
    TestCaseStatus,
    TestSuiteRecord,
)
from specvital_collector.db.repositories.analysis import (
    ERROR_TRUNCATION_SUFFIX,
    MAX_ERROR_MESSAGE_LENGTH,
    map_test_status,
    truncate_error_message,
    truncate_name,
)
from specvital_collector.domain.errors import (
    AnalysisNotRunningError,
    InvalidParamsError,
    StoreError,
)
from specvital_collector.domain.models import (
    CreateAnalysisRecordParams,
    Inventory,
    Location,
    SaveAnalysisInventoryParams,
    Test,
    TestFile,
    TestStatus,
    TestSuite,
)


# =============================================================================
# Helpers
# =============================================================================


def _params(owner="octocat", repo="Hello-World", sha="abc123", branch="main", user_id=None):
    return CreateAnalysisRecordParams(
        owner=owner, repo=repo, commit_sha=sha, branch=branch, user_id=user_id
    )


def _count(session_factory, model) -> int:
    with session_factory() as session:
        return session.execute(select(func.count()).select_from(model)).scalar_one()


def _sample_inventory() -> Inventory:
    return Inventory(
        files=(
            TestFile(
                path="tests/test_math.py",
                framework="pytest",
                suites=(
                    TestSuite(
                        name="TestAdd",
                        location=Location(3),
                        tests=(
                            Test(name="test_positive", location=Location(4)),
                            Test(name="test_skipped", location=Location(7), status=TestStatus.SKIPPED),
                        ),
                        suites=(
                            TestSuite(
                                name="TestNested",
                                location=Location(10),
                                tests=(Test(name="test_deep", location=Location(11), status="fixme"),),
                            ),
                        ),
                    ),
                ),
                tests=(
                    Test(name="test_top_level", location=Location(20), tags=("slow", "slow", "db")),
                ),
            ),
        )
    )


# =============================================================================
# Pure helpers
# =============================================================================


class TestTruncation:
    def test_short_error_message_unchanged(self):
        assert truncate_error_message("boom") == "boom"

    def test_error_message_at_limit_unchanged(self):
        message = "x" * MAX_ERROR_MESSAGE_LENGTH
        assert truncate_error_message(message) == message

    def test_long_error_message_truncated(self):
        truncated = truncate_error_message("x" * 5000)
        assert len(truncated) == MAX_ERROR_MESSAGE_LENGTH
        assert truncated.endswith(ERROR_TRUNCATION_SUFFIX)
        assert truncated.startswith("x" * 985)

    def test_name_truncation(self):
        assert truncate_name("a" * 600, 500) == "a" * 497 + "..."
        assert truncate_name("short", 500) == "short"


@pytest.mark.parametrize(
    "status,expected",
    [
        (TestStatus.SKIPPED, TestCaseStatus.SKIPPED),
        (TestStatus.PENDING, TestCaseStatus.TODO),
        (TestStatus.FIXME, TestCaseStatus.TODO),
        (TestStatus.TODO, TestCaseStatus.TODO),
        (TestStatus.XFAIL, TestCaseStatus.TODO),
        (TestStatus.ACTIVE, TestCaseStatus.ACTIVE),
        (TestStatus.FOCUSED, TestCaseStatus.ACTIVE),
        ("something-new", TestCaseStatus.ACTIVE),
    ],
)
def test_map_test_status(status, expected):
    assert map_test_status(status) == expected


# =============================================================================
# Codebases
# =============================================================================


class TestUpsertCodebase:
    def test_double_upsert_yields_one_row_with_latest_branch(self, store, session_factory):
        first = store.upsert_codebase("github.com", "octocat", "Hello-World", "main")
        second = store.upsert_codebase("github.com", "octocat", "Hello-World", "develop")

        assert first.id == second.id
        assert second.default_branch == "develop"
        assert _count(session_factory, Codebase) == 1

    def test_empty_branch_does_not_overwrite(self, store):
        store.upsert_codebase("github.com", "octocat", "Hello-World", "main")
        codebase = store.upsert_codebase("github.com", "octocat", "Hello-World", "")
        assert codebase.default_branch == "main"

    def test_hosts_are_distinct_identities(self, store, session_factory):
        store.upsert_codebase("github.com", "octocat", "Hello-World")
        store.upsert_codebase("gitlab.com", "octocat", "Hello-World")
        assert _count(session_factory, Codebase) == 2


# =============================================================================
# Analysis lifecycle
# =============================================================================


class TestCreateAnalysisRecord:
    def test_creates_running_analysis(self, store):
        analysis_id = store.create_analysis_record(_params())

        analysis = store.get_analysis(analysis_id)
        assert analysis.status == AnalysisStatus.RUNNING
        assert analysis.commit_sha == "abc123"
        assert analysis.branch_name == "main"
        assert analysis.started_at is not None
        assert analysis.completed_at is None

    def test_missing_commit_sha_rejected(self, store, session_factory):
        with pytest.raises(InvalidParamsError):
            store.create_analysis_record(_params(sha=""))
        assert _count(session_factory, Codebase) == 0
        assert _count(session_factory, Analysis) == 0

    def test_two_records_for_same_commit(self, store, session_factory):
        """Duplicate deliveries produce two analyses of one codebase."""
        store.create_analysis_record(_params())
        store.create_analysis_record(_params())
        assert _count(session_factory, Analysis) == 2
        assert _count(session_factory, Codebase) == 1

    def test_user_id_sets_refresh_user(self, store, session_factory):
        user_id = uuid4()
        store.create_analysis_record(_params(user_id=str(user_id)))
        store.create_analysis_record(_params())

        with session_factory() as session:
            codebase = session.execute(select(Codebase)).scalar_one()
        assert codebase.refresh_user_id == user_id

    def test_invalid_user_id_rejected(self, store):
        with pytest.raises(InvalidParamsError, match="not a UUID"):
            store.create_analysis_record(_params(user_id="nope"))

    def test_expired_deadline_writes_nothing(self, store, session_factory):
        deadline = Deadline(0)
        with pytest.raises(StoreError) as exc_info:
            store.create_analysis_record(_params(), deadline=deadline)
        assert isinstance(exc_info.value.__cause__, DeadlineExceeded)
        assert _count(session_factory, Analysis) == 0


class TestSaveAnalysisInventory:
    def test_totals_match_persisted_rows(self, store, session_factory):
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=_sample_inventory())
        )

        analysis = store.get_analysis(analysis_id)
        assert analysis.status == AnalysisStatus.COMPLETED
        assert analysis.completed_at is not None
        # TestAdd, TestNested and the implicit file suite
        assert analysis.total_suites == 3 == _count(session_factory, TestSuiteRecord)
        assert analysis.total_tests == 4 == _count(session_factory, TestCaseRecord)

    def test_depth_and_parent_invariant(self, store, session_factory):
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=_sample_inventory())
        )

        with session_factory() as session:
            suites = {s.id: s for s in session.execute(select(TestSuiteRecord)).scalars()}
        for suite in suites.values():
            if suite.parent_id is None:
                assert suite.depth == 0
            else:
                assert suite.depth == suites[suite.parent_id].depth + 1

        by_name = {s.name: s for s in suites.values()}
        assert by_name["TestNested"].parent_id == by_name["TestAdd"].id

    def test_implicit_suite_for_file_level_tests(self, store, session_factory):
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=_sample_inventory())
        )

        with session_factory() as session:
            implicit = session.execute(
                select(TestSuiteRecord).where(TestSuiteRecord.name == "tests/test_math.py")
            ).scalar_one()
            case = session.execute(
                select(TestCaseRecord).where(TestCaseRecord.suite_id == implicit.id)
            ).scalar_one()

        assert implicit.file_path == "tests/test_math.py"
        assert implicit.line_number == 1
        assert implicit.depth == 0
        assert implicit.parent_id is None
        assert implicit.framework == "pytest"
        assert case.name == "test_top_level"
        assert case.tags == ["slow", "db"]

    def test_statuses_are_mapped(self, store, session_factory):
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=_sample_inventory())
        )
        with session_factory() as session:
            statuses = dict(session.execute(select(TestCaseRecord.name, TestCaseRecord.status)).all())
        assert statuses["test_positive"] == TestCaseStatus.ACTIVE
        assert statuses["test_skipped"] == TestCaseStatus.SKIPPED
        assert statuses["test_deep"] == TestCaseStatus.TODO

    def test_long_names_truncated(self, store, session_factory):
        inventory = Inventory(
            files=(
                TestFile(
                    path="t_test.py",
                    suites=(TestSuite(name="S" * 700, tests=(Test(name="t" * 2500),)),),
                ),
            )
        )
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=inventory)
        )
        with session_factory() as session:
            suite = session.execute(select(TestSuiteRecord)).scalar_one()
            case = session.execute(select(TestCaseRecord)).scalar_one()
        assert len(suite.name) == 500 and suite.name.endswith("...")
        assert len(case.name) == 2000 and case.name.endswith("...")

    def test_long_file_path_truncated_in_implicit_suite_name(self, store, session_factory):
        path = "a/" * 300 + "test_x.py"
        inventory = Inventory(files=(TestFile(path=path, tests=(Test(name="test_one"),)),))
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=inventory)
        )
        with session_factory() as session:
            suite = session.execute(select(TestSuiteRecord)).scalar_one()
        assert len(suite.name) == 500 and suite.name.endswith("...")
        assert suite.file_path == path

    def test_empty_inventory_completes_with_zero_totals(self, store):
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=Inventory())
        )
        analysis = store.get_analysis(analysis_id)
        assert analysis.status == AnalysisStatus.COMPLETED
        assert analysis.total_suites == 0
        assert analysis.total_tests == 0

    def test_expired_deadline_rolls_back_everything(self, store, session_factory):
        analysis_id = store.create_analysis_record(_params())
        with pytest.raises(StoreError):
            store.save_analysis_inventory(
                SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=_sample_inventory()),
                deadline=Deadline(0),
            )
        assert _count(session_factory, TestSuiteRecord) == 0
        assert store.get_analysis(analysis_id).status == AnalysisStatus.RUNNING

    def test_cancelled_deadline_mid_walk_rolls_back(self, store, session_factory):
        """Cancellation between files discards the rows already written."""
        analysis_id = store.create_analysis_record(_params())
        deadline = Deadline.background()

        def files():
            yield from _sample_inventory().files
            deadline.cancel("shutdown")
            yield TestFile(path="late_test.py", tests=(Test(name="test_late"),))

        with pytest.raises(StoreError, match="shutdown"):
            store.save_analysis_inventory(
                SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=Inventory(files=files())),
                deadline=deadline,
            )
        assert _count(session_factory, TestSuiteRecord) == 0
        assert _count(session_factory, TestCaseRecord) == 0
        assert store.get_analysis(analysis_id).status == AnalysisStatus.RUNNING

    def test_cannot_complete_twice(self, store):
        analysis_id = store.create_analysis_record(_params())
        params = SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=Inventory())
        store.save_analysis_inventory(params)

        with pytest.raises(AnalysisNotRunningError):
            store.save_analysis_inventory(params)

    def test_unknown_analysis_rejected(self, store):
        with pytest.raises(AnalysisNotRunningError):
            store.save_analysis_inventory(
                SaveAnalysisInventoryParams(analysis_id=uuid4(), inventory=Inventory())
            )


class TestRecordFailure:
    def test_marks_failed_with_message(self, store):
        analysis_id = store.create_analysis_record(_params())
        store.record_failure(analysis_id, "scan failed: boom")

        analysis = store.get_analysis(analysis_id)
        assert analysis.status == AnalysisStatus.FAILED
        assert analysis.error_message == "scan failed: boom"
        assert analysis.completed_at is not None

    def test_long_message_truncated(self, store):
        analysis_id = store.create_analysis_record(_params())
        store.record_failure(analysis_id, "e" * 4000)

        message = store.get_analysis(analysis_id).error_message
        assert len(message) <= MAX_ERROR_MESSAGE_LENGTH
        assert message.endswith("... (truncated)")

    def test_terminal_state_is_immutable(self, store):
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=Inventory())
        )

        with pytest.raises(AnalysisNotRunningError):
            store.record_failure(analysis_id, "late failure")
        assert store.get_analysis(analysis_id).status == AnalysisStatus.COMPLETED

    def test_cascade_delete_removes_inventory(self, store, session_factory):
        analysis_id = store.create_analysis_record(_params())
        store.save_analysis_inventory(
            SaveAnalysisInventoryParams(analysis_id=analysis_id, inventory=_sample_inventory())
        )
        with session_factory() as session:
            session.delete(session.get(Analysis, analysis_id))
            session.commit()
        assert _count(session_factory, TestSuiteRecord) == 0
        assert _count(session_factory, TestCaseRecord) == 0


# =============================================================================
# Refresh queries
# =============================================================================


def _finish(session_factory, analysis_id, finished_at, status=AnalysisStatus.COMPLETED):
    with session_factory() as session:
        session.execute(
            update(Analysis)
            .where(Analysis.id == analysis_id)
            .values(status=status, started_at=finished_at, completed_at=finished_at)
        )
        session.commit()


class TestListDueForRefresh:
    NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

    def test_returns_stale_codebases_oldest_first(self, store, session_factory):
        old = store.create_analysis_record(_params(repo="old", sha="sha-old"))
        older = store.create_analysis_record(_params(repo="older", sha="sha-older"))
        fresh = store.create_analysis_record(_params(repo="fresh"))
        _finish(session_factory, old, self.NOW - timedelta(days=2))
        _finish(session_factory, older, self.NOW - timedelta(days=5))
        _finish(session_factory, fresh, self.NOW - timedelta(hours=1))

        due = store.list_due_for_refresh(self.NOW, 10)

        assert [c.name for c in due] == ["older", "old"]
        assert due[0].last_commit_sha == "sha-older"
        assert due[0].owner == "octocat"

    def test_batch_size_limits_results(self, store, session_factory):
        for i in range(3):
            analysis_id = store.create_analysis_record(_params(repo=f"repo{i}"))
            _finish(session_factory, analysis_id, self.NOW - timedelta(days=3 + i))

        assert len(store.list_due_for_refresh(self.NOW, 2)) == 2
        assert store.list_due_for_refresh(self.NOW, 0) == []

    def test_codebase_with_running_analysis_not_due(self, store, session_factory):
        done = store.create_analysis_record(_params())
        _finish(session_factory, done, self.NOW - timedelta(days=2))
        running = store.create_analysis_record(_params())
        with session_factory() as session:
            session.execute(
                update(Analysis)
                .where(Analysis.id == running)
                .values(started_at=self.NOW - timedelta(minutes=5))
            )
            session.commit()

        assert store.list_due_for_refresh(self.NOW, 10) == []

    def test_latest_analysis_decides(self, store, session_factory):
        first = store.create_analysis_record(_params(sha="one"))
        second = store.create_analysis_record(_params(sha="two"))
        _finish(session_factory, first, self.NOW - timedelta(days=10))
        _finish(session_factory, second, self.NOW - timedelta(hours=2))

        assert store.list_due_for_refresh(self.NOW, 10) == []

    def test_failed_analysis_keeps_last_completed_commit(self, store, session_factory):
        completed = store.create_analysis_record(_params(sha="good"))
        failed = store.create_analysis_record(_params(sha="bad"))
        _finish(session_factory, completed, self.NOW - timedelta(days=4))
        _finish(session_factory, failed, self.NOW - timedelta(days=3), status=AnalysisStatus.FAILED)

        due = store.list_due_for_refresh(self.NOW, 10)
        assert len(due) == 1
        assert due[0].last_commit_sha == "good"

    def test_custom_refresh_interval(self, store, session_factory):
        analysis_id = store.create_analysis_record(_params())
        _finish(session_factory, analysis_id, self.NOW - timedelta(hours=3))

        assert store.list_due_for_refresh(self.NOW, 10) == []
        due = store.list_due_for_refresh(self.NOW, 10, refresh_interval=timedelta(hours=2))
        assert len(due) == 1

    def test_recently_checked_codebase_not_due(self, store, session_factory):
        analysis_id = store.create_analysis_record(_params())
        _finish(session_factory, analysis_id, self.NOW - timedelta(days=3))
        (due,) = store.list_due_for_refresh(self.NOW, 10)

        store.mark_refresh_checked(due.codebase_id, self.NOW - timedelta(hours=1))
        assert store.list_due_for_refresh(self.NOW, 10) == []

        later = self.NOW + timedelta(days=1)
        assert [c.codebase_id for c in store.list_due_for_refresh(later, 10)] == [due.codebase_id]
