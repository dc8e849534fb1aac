"""
Fan-out Scheduler

Runs a phase's tasks with a fixed pool of asyncio workers pulling from one
shared queue, so at most ``concurrency`` tasks are in flight regardless of
how many collections a run covers or which kind they are.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from tqdm import tqdm

from ..exceptions import ConfigValidationError, PhaseFailedError
from ..models.entities import FailurePolicy, PhaseReport

logger = logging.getLogger(__name__)

# (label, zero-argument callable returning the awaitable to run)
Task = Tuple[str, Callable[[], Awaitable[Any]]]


class FanOutScheduler:
    """
    Bounded-concurrency task runner.

    Failure policies:
        FAIL_FAST: The first failure stops dispatch of queued tasks. Tasks
            already running are left to settle, then the first failure is
            raised unchanged.
        CONTINUE: Every task runs. Failures are raised together as
            PhaseFailedError once all tasks have settled.

    Example:
        ```python
        scheduler = FanOutScheduler(concurrency=10)
        report = await scheduler.run("backup", [
            (item.qualified_name, functools.partial(pipeline.backup, item, i))
            for i, item in enumerate(items)
        ])
        ```
    """

    def __init__(
        self,
        concurrency: int = 10,
        failure_policy: FailurePolicy = FailurePolicy.FAIL_FAST,
        show_progress: bool = False
    ):
        if not isinstance(concurrency, int) or concurrency <= 0:
            raise ConfigValidationError(f"concurrency must be a positive integer, got {concurrency!r}")
        self.concurrency = concurrency
        self.failure_policy = FailurePolicy(failure_policy)
        self.show_progress = show_progress

    async def run(self, phase: str, tasks: List[Task]) -> PhaseReport:
        """
        Run every task of a phase.

        Args:
            phase: Phase name used in logs and errors
            tasks: ``(label, factory)`` pairs; each factory is called once

        Returns:
            PhaseReport with results in completion order

        Raises:
            Exception: The first task failure under FAIL_FAST
            PhaseFailedError: All task failures under CONTINUE
        """
        start_time = time.time()
        queue: asyncio.Queue = asyncio.Queue()
        for task in tasks:
            queue.put_nowait(task)

        results: List[Any] = []
        failures: List[Tuple[str, BaseException]] = []
        stop_dispatch = asyncio.Event()
        bar = tqdm(total=len(tasks), desc=phase, unit="collection", disable=not self.show_progress)

        async def worker() -> None:
            while not stop_dispatch.is_set():
                try:
                    label, factory = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    results.append(await factory())
                except Exception as e:
                    logger.error(f"{phase} task {label} failed: {e}")
                    failures.append((label, e))
                    if self.failure_policy == FailurePolicy.FAIL_FAST:
                        stop_dispatch.set()
                finally:
                    bar.update(1)

        logger.info(f"Starting {phase} phase: {len(tasks)} tasks, concurrency {self.concurrency}")
        try:
            workers = [asyncio.ensure_future(worker()) for _ in range(min(self.concurrency, len(tasks)))]
            if workers:
                await asyncio.gather(*workers)
        finally:
            bar.close()

        elapsed_ms = (time.time() - start_time) * 1000
        if failures:
            skipped = queue.qsize()
            if skipped:
                logger.warning(f"{phase} phase stopped with {skipped} tasks not started")
            if self.failure_policy == FailurePolicy.FAIL_FAST:
                raise failures[0][1]
            raise PhaseFailedError(phase, failures)

        logger.info(f"Finished {phase} phase: {len(results)} tasks in {elapsed_ms:.0f}ms")
        return PhaseReport(
            phase=phase,
            total_tasks=len(tasks),
            results=results,
            execution_time_ms=elapsed_ms
        )
