"""Work queue collaborator.

The orchestrator only needs ``push(job)``. Real deployments plug in their
own worker queue and call ``SyncOrchestrator.execute`` from the worker;
``InlineWorkQueue`` runs each job as soon as it is pushed, with retries.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from searchsync.sync.jobs import Job

logger = logging.getLogger(__name__)

JobExecutor = Callable[[Job], Awaitable[None]]


@runtime_checkable
class WorkQueue(Protocol):
    """Accepts units of work and executes them at least once."""

    async def push(self, job: Job) -> None: ...


@dataclass
class JobFailure:
    job: Job
    error: BaseException
    attempts: int


class InlineWorkQueue:
    """Runs jobs immediately in the caller's task.

    A failing job is retried up to ``max_attempts`` times. A job that still
    fails is logged and recorded in ``failures``; ``push`` does not raise.
    """

    def __init__(self, max_attempts: int = 3, executor: JobExecutor | None = None) -> None:
        self.max_attempts = max(1, max_attempts)
        self.failures: list[JobFailure] = []
        self.completed = 0
        self._executor = executor

    def attach(self, executor: JobExecutor) -> None:
        self._executor = executor

    async def push(self, job: Job) -> None:
        if self._executor is None:
            raise RuntimeError("InlineWorkQueue has no executor attached")

        for attempt in range(1, self.max_attempts + 1):
            try:
                await self._executor(job)
            except Exception as e:
                if attempt < self.max_attempts:
                    logger.warning("%s failed (attempt %d/%d): %s", job.describe(), attempt, self.max_attempts, e)
                    continue
                logger.error("%s failed after %d attempts: %s", job.describe(), attempt, e)
                self.failures.append(JobFailure(job=job, error=e, attempts=attempt))
                return
            self.completed += 1
            return
