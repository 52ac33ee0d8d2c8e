"""Tests for the inline work queue."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock

import pytest

from searchsync.sync.jobs import CleanupOrphansJob
from searchsync.sync.queue import InlineWorkQueue, WorkQueue


@pytest.fixture
def job() -> CleanupOrphansJob:
    return CleanupOrphansJob(index_handle="articles")


class TestInlineWorkQueue:
    def test_is_a_work_queue(self) -> None:
        assert isinstance(InlineWorkQueue(), WorkQueue)

    async def test_runs_job_immediately(self, job: CleanupOrphansJob) -> None:
        executor = AsyncMock()
        queue = InlineWorkQueue(executor=executor)

        await queue.push(job)

        executor.assert_awaited_once_with(job)
        assert queue.completed == 1
        assert queue.failures == []

    async def test_retries_until_success(self, job: CleanupOrphansJob) -> None:
        executor = AsyncMock(side_effect=[RuntimeError("flaky"), None])
        queue = InlineWorkQueue(max_attempts=3)
        queue.attach(executor)

        await queue.push(job)

        assert executor.await_count == 2
        assert queue.completed == 1
        assert queue.failures == []

    async def test_records_failure_after_last_attempt(
        self, job: CleanupOrphansJob, caplog: pytest.LogCaptureFixture
    ) -> None:
        error = RuntimeError("down")
        queue = InlineWorkQueue(max_attempts=2, executor=AsyncMock(side_effect=error))

        with caplog.at_level(logging.WARNING, logger="searchsync.sync.queue"):
            await queue.push(job)

        assert queue.completed == 0
        assert len(queue.failures) == 1
        failure = queue.failures[0]
        assert failure.job is job
        assert failure.error is error
        assert failure.attempts == 2
        assert "failed after 2 attempts" in caplog.text

    async def test_at_least_one_attempt(self, job: CleanupOrphansJob) -> None:
        executor = AsyncMock(side_effect=RuntimeError("down"))
        queue = InlineWorkQueue(max_attempts=0, executor=executor)

        await queue.push(job)

        assert executor.await_count == 1

    async def test_requires_executor(self, job: CleanupOrphansJob) -> None:
        with pytest.raises(RuntimeError, match="no executor"):
            await InlineWorkQueue().push(job)
