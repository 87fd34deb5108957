"""
Transfer Scheduler

Design Decision: Fan-out Strategy
=================================

Options Considered:
1. asyncio.gather over every transfer
   - Simple, but unbounded parallel I/O against one peer
2. Fixed pool of N worker coroutines pulling from a queue
   - Bounded, but more moving parts
3. One coroutine per transfer gated by an asyncio.Semaphore
   - Bounded, keeps input order (semaphore waiters wake FIFO)

Decision: Semaphore-gated gather
- At most ``concurrency_limit`` workers hold the semaphore at once
- Tasks acquire in input order, completion order is unspecified
- The scheduler never retries; what to do with a failure is the caller's call

Failure policy is explicit:
- DRAIN: siblings keep running after a failure, every task reaches its own
  outcome
- CANCEL: the first failure cancels in-flight siblings and prevents queued
  tasks from starting
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from ..exceptions import TransferCancelledError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class FailurePolicy(Enum):
    """What happens to sibling transfers when one fails."""
    DRAIN = "drain"
    CANCEL = "cancel"


@dataclass
class TaskOutcome(Generic[T]):
    """Terminal outcome of one scheduled task."""
    task: T
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class TransferScheduler:
    """
    Bounded-concurrency parallel map.

    Used identically by uploads and downloads. Holds no state between runs,
    so one instance may serve several sessions.
    """

    def __init__(self, concurrency_limit: int,
                 policy: FailurePolicy = FailurePolicy.DRAIN):
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {concurrency_limit}")
        self.concurrency_limit = concurrency_limit
        self.policy = policy

    async def run(self, tasks: Sequence[T],
                  worker: Callable[[T], Awaitable[Any]]) -> List[TaskOutcome[T]]:
        """
        Run ``worker`` over every task.

        Returns:
            One TaskOutcome per task, in input order. Returns only after
            every task has succeeded, failed or been cancelled.
        """
        semaphore = asyncio.Semaphore(self.concurrency_limit)
        outcomes = [TaskOutcome(task=task) for task in tasks]
        failed = asyncio.Event()
        running: List[asyncio.Task] = []

        async def run_one(outcome: TaskOutcome[T]) -> None:
            async with semaphore:
                if failed.is_set() and self.policy is FailurePolicy.CANCEL:
                    outcome.error = TransferCancelledError("Not started: a sibling transfer failed")
                    return
                try:
                    outcome.result = await worker(outcome.task)
                except asyncio.CancelledError:
                    outcome.error = TransferCancelledError("Cancelled: a sibling transfer failed")
                except Exception as e:
                    outcome.error = e
                    if not failed.is_set():
                        failed.set()
                        if self.policy is FailurePolicy.CANCEL:
                            self._cancel_siblings(running)

        running.extend(asyncio.ensure_future(run_one(o)) for o in outcomes)
        if not running:
            return outcomes

        results = await asyncio.gather(*running, return_exceptions=True)

        # A task cancelled before entering run_one never recorded an outcome
        for outcome, result in zip(outcomes, results):
            if isinstance(result, asyncio.CancelledError) and outcome.error is None:
                outcome.error = TransferCancelledError("Cancelled: a sibling transfer failed")

        failures = sum(1 for o in outcomes if not o.ok)
        logger.debug(f"Scheduler finished {len(outcomes)} tasks, {failures} failed")
        return outcomes

    def _cancel_siblings(self, running: List[asyncio.Task]):
        current = asyncio.current_task()
        for task in running:
            if task is not current and not task.done():
                task.cancel()


def first_error(outcomes: Sequence[TaskOutcome]) -> Optional[BaseException]:
    """
    The error a session should raise for a finished run.

    Prefers a real failure over the cancellations it caused.
    """
    errors = [o.error for o in outcomes if o.error is not None]
    for error in errors:
        if not isinstance(error, TransferCancelledError):
            return error
    return errors[0] if errors else None
