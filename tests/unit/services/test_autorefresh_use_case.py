"""Unit tests for AutoRefreshUseCase."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from specvital_collector.deadline import Deadline
from specvital_collector.domain.models import DueCodebase
from specvital_collector.services.autorefresh import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_REFRESH_INTERVAL,
    AutoRefreshUseCase,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeStore:
    def __init__(self, due=()):
        self.due = list(due)
        self.list_calls = []
        self.checked = []

    def list_due_for_refresh(self, now, batch_size, *, refresh_interval, deadline=None):
        self.list_calls.append((now, batch_size, refresh_interval))
        return self.due[:batch_size]

    def mark_refresh_checked(self, codebase_id, checked_at, *, deadline=None):
        self.checked.append((codebase_id, checked_at))


class FakeQueue:
    def __init__(self, fail_for=()):
        self.fail_for = set(fail_for)
        self.enqueued = []

    def enqueue_analyze(self, owner, repo, user_id=None):
        if repo in self.fail_for:
            raise ConnectionError("broker unavailable")
        self.enqueued.append((owner, repo, user_id))
        return f"task-{len(self.enqueued)}"


class FakeVCS:
    def __init__(self, heads=None, error=None):
        self.heads = heads or {}
        self.error = error
        self.probed = []

    def get_head_commit(self, url, token=None, *, deadline=None):
        self.probed.append(url)
        if self.error is not None:
            raise self.error
        return self.heads[url]


def _due(name, sha="sha-old", user_id=None):
    return DueCodebase(
        codebase_id=uuid4(),
        host="github.com",
        owner="octocat",
        name=name,
        refresh_user_id=user_id,
        last_commit_sha=sha,
    )


class TestRun:
    def test_enqueues_every_due_codebase(self):
        user_id = uuid4()
        queue = FakeQueue()
        use_case = AutoRefreshUseCase(FakeStore([_due("a", user_id=user_id), _due("b")]), queue)

        result = use_case.run(NOW)

        assert result.due == 2
        assert result.enqueued == 2
        assert result.aborted is False
        assert queue.enqueued == [("octocat", "a", str(user_id)), ("octocat", "b", None)]

    def test_passes_batch_and_interval_to_store(self):
        store = FakeStore()
        AutoRefreshUseCase(
            store, FakeQueue(), batch_size=5, refresh_interval=timedelta(hours=6)
        ).run(NOW)
        assert store.list_calls == [(NOW, 5, timedelta(hours=6))]

    def test_nothing_due(self):
        result = AutoRefreshUseCase(FakeStore(), FakeQueue()).run(NOW)
        assert (result.due, result.enqueued) == (0, 0)

    def test_enqueue_failure_does_not_stop_batch(self):
        queue = FakeQueue(fail_for={"a"})
        result = AutoRefreshUseCase(FakeStore([_due("a"), _due("b")]), queue).run(NOW)
        assert result.failed == 1
        assert result.enqueued == 1
        assert queue.enqueued == [("octocat", "b", None)]

    def test_abort_stops_before_next_codebase(self):
        queue = FakeQueue()
        calls = iter([False, True])
        result = AutoRefreshUseCase(FakeStore([_due("a"), _due("b"), _due("c")]), queue).run(
            NOW, should_abort=lambda: next(calls)
        )
        assert result.aborted is True
        assert result.enqueued == 1
        assert [repo for _, repo, _ in queue.enqueued] == ["a"]

    def test_cancelled_deadline_aborts(self):
        deadline = Deadline.background()
        deadline.cancel("shutdown")
        queue = FakeQueue()
        result = AutoRefreshUseCase(FakeStore([_due("a")]), queue).run(NOW, deadline=deadline)
        assert result.aborted is True
        assert queue.enqueued == []


class TestSkipUnchanged:
    def test_unchanged_head_is_skipped_and_marked(self):
        unchanged, changed = _due("same", sha="abc"), _due("moved", sha="abc")
        store = FakeStore([unchanged, changed])
        vcs = FakeVCS({
            "https://github.com/octocat/same": "abc",
            "https://github.com/octocat/moved": "def",
        })
        queue = FakeQueue()

        result = AutoRefreshUseCase(store, queue, vcs).run(NOW)

        assert result.skipped_unchanged == 1
        assert result.enqueued == 1
        assert queue.enqueued == [("octocat", "moved", None)]
        assert store.checked == [(unchanged.codebase_id, NOW)]

    def test_probe_failure_enqueues(self):
        queue = FakeQueue()
        result = AutoRefreshUseCase(
            FakeStore([_due("a")]), queue, FakeVCS(error=RuntimeError("rate limited"))
        ).run(NOW)
        assert result.enqueued == 1

    def test_without_last_commit_no_probe(self):
        vcs = FakeVCS()
        AutoRefreshUseCase(FakeStore([_due("a", sha=None)]), FakeQueue(), vcs).run(NOW)
        assert vcs.probed == []

    def test_disabled(self):
        vcs = FakeVCS({"https://github.com/octocat/a": "sha-old"})
        result = AutoRefreshUseCase(
            FakeStore([_due("a")]), FakeQueue(), vcs, skip_unchanged=False
        ).run(NOW)
        assert vcs.probed == []
        assert result.enqueued == 1


@pytest.mark.parametrize("batch_size,interval", [(0, timedelta(0)), (-1, timedelta(hours=-1))])
def test_invalid_options_use_defaults(batch_size, interval):
    use_case = AutoRefreshUseCase(
        FakeStore(), FakeQueue(), batch_size=batch_size, refresh_interval=interval
    )
    assert use_case.batch_size == DEFAULT_BATCH_SIZE
    assert use_case.refresh_interval == DEFAULT_REFRESH_INTERVAL
