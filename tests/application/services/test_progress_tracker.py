"""Unit tests for ProgressTracker"""

from datetime import datetime, timedelta, timezone

import pytest

from mailsync.application.services.progress_tracker import ProgressTracker
from mailsync.domain.enums import SyncKind, SyncOutcome, SyncRunStatus
from mailsync.domain.exceptions import SyncRunNotFoundError


class SteppingClock:
    """UTC clock advanced by hand"""

    def __init__(self):
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    return SteppingClock()


@pytest.fixture
def tracker(session_factory, clock):
    return ProgressTracker(session_factory, max_errors=3, clock=clock)


@pytest.fixture
async def account(create_account):
    return await create_account()


async def _new_run(tracker, account, total=120, batch_size=50):
    return await tracker.create_run(account.id, account.user_id, SyncKind.INITIAL, total, batch_size)


class TestRunLifecycle:
    """Tests for create/start/complete/cancel"""

    async def test_create_run_is_pending_with_batch_count(self, tracker, account):
        """
        GIVEN 120 items and a batch size of 50
        WHEN creating a run
        THEN it is pending with 3 batches and zero counters
        """
        run_id = await _new_run(tracker, account)

        info = await tracker.get_run(run_id)
        assert info.status == SyncRunStatus.PENDING
        assert info.kind == SyncKind.INITIAL
        assert info.total_items == 120
        assert info.total_batches == 3
        assert info.processed_items == 0
        assert info.outcome == SyncOutcome.IN_PROGRESS

    async def test_start_moves_pending_to_running_once(self, tracker, account, clock):
        run_id = await _new_run(tracker, account)

        assert await tracker.start(run_id) is True
        assert await tracker.start(run_id) is False

        info = await tracker.get_run(run_id)
        assert info.status == SyncRunStatus.RUNNING
        assert info.started_at == clock.now

    async def test_complete_success(self, tracker, account):
        run_id = await _new_run(tracker, account)
        await tracker.start(run_id)

        assert await tracker.complete(run_id, success=True) is True

        info = await tracker.get_run(run_id)
        assert info.status == SyncRunStatus.SUCCESS
        assert info.outcome == SyncOutcome.SUCCESS
        assert info.completed_at is not None
        assert info.estimated_seconds_remaining is None

    async def test_terminal_run_is_frozen(self, tracker, account):
        """
        GIVEN a failed run
        WHEN further updates, errors or completions arrive
        THEN they are ignored
        """
        run_id = await _new_run(tracker, account)
        await tracker.start(run_id)
        await tracker.complete(run_id, success=False)

        assert await tracker.update_progress(run_id, processed=10) is False
        assert await tracker.add_error(run_id, "msg-1", "late") is False
        assert await tracker.complete(run_id, success=True) is False
        assert await tracker.cancel(run_id) is False

        info = await tracker.get_run(run_id)
        assert info.status == SyncRunStatus.FAILED
        assert info.processed_items == 0
        assert info.failed_items == 0

    async def test_cancel_reports_failed_outcome(self, tracker, account):
        run_id = await _new_run(tracker, account)
        await tracker.start(run_id)

        assert await tracker.cancel(run_id) is True

        info = await tracker.get_run(run_id)
        assert info.status == SyncRunStatus.CANCELLED
        assert info.outcome == SyncOutcome.FAILED

    async def test_unknown_run(self, tracker):
        with pytest.raises(SyncRunNotFoundError):
            await tracker.get_run("missing")
        with pytest.raises(SyncRunNotFoundError):
            await tracker.start("missing")
        with pytest.raises(SyncRunNotFoundError):
            await tracker.update_progress("missing", processed=1)


class TestProgress:
    """Tests for counters, errors and estimates"""

    async def test_update_progress_sets_counters_and_estimate(self, tracker, account, clock):
        """
        GIVEN a run of 100 items started 10 seconds ago
        WHEN 10 items have been processed
        THEN the estimate is 90 seconds for the remaining 90 items
        """
        run_id = await _new_run(tracker, account, total=100)
        await tracker.start(run_id)
        clock.advance(10)

        await tracker.update_progress(run_id, processed=10, stored=8, updated=1, current_batch=1)

        info = await tracker.get_run(run_id)
        assert info.processed_items == 10
        assert info.stored_items == 8
        assert info.updated_items == 1
        assert info.current_batch == 1
        assert info.estimated_seconds_remaining == 90.0
        assert info.progress_percentage == 10.0

    async def test_partial_update_keeps_other_counters(self, tracker, account):
        run_id = await _new_run(tracker, account)
        await tracker.start(run_id)
        await tracker.update_progress(run_id, processed=5, stored=5)

        await tracker.update_progress(run_id, current_batch=2)

        info = await tracker.get_run(run_id)
        assert info.processed_items == 5
        assert info.stored_items == 5
        assert info.current_batch == 2

    async def test_add_error_keeps_most_recent_entries(self, tracker, account):
        """
        GIVEN a tracker keeping 3 errors
        WHEN 5 item failures are recorded
        THEN failed_items is 5 and only the last 3 entries are kept
        """
        run_id = await _new_run(tracker, account)
        await tracker.start(run_id)

        for i in range(5):
            await tracker.add_error(run_id, f"msg-{i}", f"error {i}")

        info = await tracker.get_run(run_id)
        assert info.failed_items == 5
        assert [e.message_id for e in info.errors] == ["msg-2", "msg-3", "msg-4"]
        assert info.errors[-1].error == "error 4"


class TestQueries:
    """Tests for active and recent run listings"""

    async def test_active_and_recent_runs(self, tracker, account):
        finished = await _new_run(tracker, account)
        await tracker.start(finished)
        await tracker.complete(finished, success=True)
        active = await _new_run(tracker, account)
        await tracker.start(active)

        active_runs = await tracker.get_active_runs(account.user_id)
        recent_runs = await tracker.get_recent_runs(account.user_id)

        assert [r.id for r in active_runs] == [active]
        assert {r.id for r in recent_runs} == {finished, active}

    async def test_recent_runs_limit(self, tracker, account):
        for _ in range(3):
            await _new_run(tracker, account)

        assert len(await tracker.get_recent_runs(account.user_id, limit=2)) == 2
        assert await tracker.get_recent_runs("other-user") == []

    async def test_success_rate(self, tracker, account):
        run_id = await _new_run(tracker, account, total=10)
        await tracker.start(run_id)
        assert (await tracker.get_run(run_id)).success_rate == 0.0

        await tracker.update_progress(run_id, processed=4)
        await tracker.add_error(run_id, "msg-1", "boom")

        assert (await tracker.get_run(run_id)).success_rate == 75.0
