"""
Tests for the bounded-concurrency TransferScheduler.

Tests cover:
- Concurrency bound and input-order outcomes
- DRAIN policy (siblings finish)
- CANCEL policy (siblings cancelled, queued tasks never start)
- first_error preference
"""

import asyncio

import pytest

from propagation.exceptions import TransferCancelledError, TransferError
from propagation.transfer.scheduler import (
    FailurePolicy, TaskOutcome, TransferScheduler, first_error,
)


class Tracker:
    def __init__(self):
        self.active = 0
        self.peak = 0
        self.started = []
        self.finished = []

    async def work(self, task, delay=0.02, fail=()):
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.started.append(task)
        try:
            await asyncio.sleep(delay)
            if task in fail:
                raise TransferError(f"task {task} failed")
            self.finished.append(task)
            return task * 10
        finally:
            self.active -= 1


class TestSchedulerBounds:
    """Test concurrency limit and outcome ordering."""

    @pytest.mark.asyncio
    async def test_never_exceeds_limit(self):
        tracker = Tracker()
        scheduler = TransferScheduler(3)

        outcomes = await scheduler.run(list(range(10)), tracker.work)

        assert tracker.peak == 3
        assert [o.result for o in outcomes] == [i * 10 for i in range(10)]
        assert all(o.ok for o in outcomes)

    @pytest.mark.asyncio
    async def test_limit_one_is_sequential(self):
        tracker = Tracker()
        outcomes = await TransferScheduler(1).run([1, 2, 3], tracker.work)

        assert tracker.peak == 1
        assert tracker.started == [1, 2, 3]
        assert len(outcomes) == 3

    @pytest.mark.asyncio
    async def test_empty_task_list(self):
        outcomes = await TransferScheduler(2).run([], Tracker().work)
        assert outcomes == []

    def test_rejects_zero_limit(self):
        with pytest.raises(ValueError):
            TransferScheduler(0)


class TestFailurePolicies:
    """Test DRAIN and CANCEL behaviour after a failure."""

    @pytest.mark.asyncio
    async def test_drain_lets_siblings_finish(self):
        tracker = Tracker()
        scheduler = TransferScheduler(2, policy=FailurePolicy.DRAIN)

        outcomes = await scheduler.run(
            [1, 2, 3, 4], lambda t: tracker.work(t, fail={1})
        )

        assert isinstance(outcomes[0].error, TransferError)
        assert [o.ok for o in outcomes[1:]] == [True, True, True]
        assert sorted(tracker.finished) == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_cancel_stops_siblings_and_queue(self):
        tracker = Tracker()
        scheduler = TransferScheduler(2, policy=FailurePolicy.CANCEL)

        async def worker(task):
            if task == 1:
                await asyncio.sleep(0.01)
                raise TransferError("boom")
            return await tracker.work(task, delay=1.0)

        outcomes = await scheduler.run([1, 2, 3, 4], worker)

        assert isinstance(outcomes[0].error, TransferError)
        assert not isinstance(outcomes[0].error, TransferCancelledError)
        for outcome in outcomes[1:]:
            assert isinstance(outcome.error, TransferCancelledError)
        # Task 2 was in flight; 3 and 4 never started
        assert tracker.started == [2]
        assert tracker.finished == []

    @pytest.mark.asyncio
    async def test_every_task_reaches_an_outcome(self):
        scheduler = TransferScheduler(3, policy=FailurePolicy.CANCEL)

        async def worker(task):
            if task % 2:
                raise TransferError(str(task))
            await asyncio.sleep(0.01)
            return task

        outcomes = await scheduler.run(list(range(7)), worker)

        assert len(outcomes) == 7
        assert all(o.ok or o.error is not None for o in outcomes)
        assert [o.task for o in outcomes] == list(range(7))


class TestFirstError:
    """Test selection of the error a session raises."""

    def test_prefers_real_failure_over_cancellation(self):
        real = TransferError("real")
        outcomes = [
            TaskOutcome(task=1, error=TransferCancelledError("cancelled")),
            TaskOutcome(task=2, error=real),
        ]
        assert first_error(outcomes) is real

    def test_none_when_all_ok(self):
        assert first_error([TaskOutcome(task=1, result=True)]) is None
