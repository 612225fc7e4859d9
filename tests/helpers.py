# tests/helpers.py

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import Callable

from batchscrape.jobs.job_store import JobStore


def assert_statistics_consistent(store: JobStore, job_id: str) -> None:
    job = store.require_job(job_id)
    tasks = store.list_tasks(job_id)
    by_status = Counter(t.status.value for t in tasks)
    stats = job.statistics

    assert stats.total == len(tasks) == len(job.urls)
    assert stats.pending == by_status["pending"]
    assert stats.running == by_status["running"]
    assert stats.completed == by_status["completed"]
    assert stats.failed == by_status["failed"]
    assert stats.cancelled == by_status["cancelled"]
    assert stats.total_rows == sum(t.result.row_count for t in tasks if t.result is not None)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)
