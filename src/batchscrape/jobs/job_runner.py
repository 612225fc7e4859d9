# src/batchscrape/jobs/job_runner.py

from __future__ import annotations

"""
Job runner.

One coordinating loop per job that:
- admits pending tasks FIFO, up to max_concurrency in flight,
- throttles admissions by delay_between_requests,
- hands each task to the page extractor,
- writes the outcome (completed / requeued with backoff / failed) through the store.

Pause and cancel are cooperative: they stop new admissions immediately, while
already dispatched tasks are allowed to finish and persist their outcome.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from ..core.ports import JobRepo, PageExtractor
from ..errors import ExtractionError, JobNotFoundError
from .job_models import Job, JobStatus, ScrapeResult, Task, TaskStatus
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


class RunnerState(StrEnum):
    IDLE = "idle"
    DRAINING = "draining"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    DRAINED = "drained"


class JobRunner:
    """
    Drains one job's pending tasks through the extractor.

    A runner is single-use: run() may be awaited once. The registry creates a
    fresh runner for every start/resume that finds no active one.
    """

    def __init__(
        self,
        job_id: str,
        store: JobRepo,
        extractor: PageExtractor,
        *,
        retry_policy: RetryPolicy | None = None,
        on_exit: Callable[[JobRunner], None] | None = None,
    ) -> None:
        self.job_id = job_id
        self._store = store
        self._extractor = extractor
        self._retry_policy = retry_policy or RetryPolicy()
        self._on_exit = on_exit

        self._pause = asyncio.Event()
        self._cancel = asyncio.Event()
        # Set by any control call so the loop re-evaluates instead of waiting on in-flight work.
        self._wakeup = asyncio.Event()

        self._in_flight: set[asyncio.Task[None]] = set()
        self._state = RunnerState.IDLE

    # ---- control ----

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def is_paused(self) -> bool:
        return self._pause.is_set()

    @property
    def is_cancelled(self) -> bool:
        return self._cancel.is_set()

    def pause(self) -> None:
        self._pause.set()
        self._wakeup.set()

    def resume(self) -> None:
        """Clear a pause that has not yet torn the loop down."""
        self._pause.clear()
        self._wakeup.set()

    def cancel(self) -> None:
        self._cancel.set()
        self._wakeup.set()

    def _signalled(self) -> bool:
        return self._pause.is_set() or self._cancel.is_set()

    # ---- main loop ----

    async def run(self) -> RunnerState:
        if self._state is not RunnerState.IDLE:
            raise RuntimeError(f"runner for job {self.job_id} was already started")

        job = self._store.get_job(self.job_id)
        if job is None:
            raise JobNotFoundError(self.job_id)

        self._state = RunnerState.DRAINING
        logger.info(
            "Runner started job=%s concurrency=%s delay_ms=%s max_retries=%s",
            self.job_id,
            job.settings.max_concurrency,
            job.settings.delay_between_requests,
            job.settings.max_retries,
        )

        try:
            self._state = await self._drain(job)
        except asyncio.CancelledError:
            # Hard stop (process shutdown): abandon dispatches; their tasks stay
            # 'running' and are requeued by the next start.
            for t in list(self._in_flight):
                t.cancel()
            await asyncio.gather(*self._in_flight, return_exceptions=True)
            self._state = RunnerState.PAUSED
            raise
        except Exception:
            # Let other dispatches finish and persist before reporting the failure.
            await asyncio.gather(*self._in_flight, return_exceptions=True)
            self._state = RunnerState.PAUSED
            raise
        finally:
            if self._on_exit is not None:
                self._on_exit(self)

        if self._state is RunnerState.DRAINED:
            self._finish_drained()

        logger.info("Runner stopped job=%s state=%s", self.job_id, self._state)
        return self._state

    async def _drain(self, job: Job) -> RunnerState:
        max_concurrency = max(1, int(job.settings.max_concurrency))
        delay_s = max(0, int(job.settings.delay_between_requests)) / 1000.0

        while True:
            self._wakeup.clear()

            if self._cancel.is_set():
                if not self._in_flight:
                    return RunnerState.CANCELLED
                await self._wait_next()
                continue

            if self._pause.is_set():
                if not self._in_flight:
                    return RunnerState.PAUSED
                await self._wait_next()
                continue

            pending = self._store.list_pending_tasks(self.job_id)
            if not pending and not self._in_flight:
                return RunnerState.DRAINED

            while pending and len(self._in_flight) < max_concurrency and not self._signalled():
                task = pending.pop(0)
                if not self._admit(task, job):
                    continue
                if delay_s > 0 and pending:
                    await self._sleep_unless_signalled(delay_s)

            if self._in_flight:
                await self._wait_next()

    def _admit(self, task: Task, job: Job) -> bool:
        # The pending list may be stale after a throttle wait.
        current = self._store.get_task(task.id)
        if current is None or current.status != TaskStatus.PENDING:
            return False

        running = self._store.update_task(task.id, status=TaskStatus.RUNNING, started_at=time.time())
        dispatch = asyncio.create_task(self._dispatch(running, job), name=f"dispatch:{task.id}")
        self._in_flight.add(dispatch)
        dispatch.add_done_callback(self._in_flight.discard)
        logger.debug("Admitted task=%s url=%s in_flight=%d", task.id, task.url, len(self._in_flight))
        return True

    async def _wait_next(self) -> None:
        """Block until any dispatch finishes or a control signal arrives."""
        waiter = asyncio.create_task(self._wakeup.wait())
        try:
            await asyncio.wait({*self._in_flight, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

    async def _sleep_unless_signalled(self, seconds: float) -> None:
        """Throttle sleep; only pause or cancel cut it short."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while not self._signalled():
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            self._wakeup.clear()
            waiter = asyncio.create_task(self._wakeup.wait())
            try:
                await asyncio.wait({waiter}, timeout=remaining)
            finally:
                waiter.cancel()

    # ---- dispatch ----

    async def _dispatch(self, task: Task, job: Job) -> None:
        try:
            result = await self._extractor.extract(task.url, job.config, job.settings.rendering_mode)
            if not isinstance(result, ScrapeResult):
                raise ExtractionError(f"extractor returned {type(result).__name__}, not a result")
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self._handle_failure(task, job, exc)
            return

        if self._write(task, status=TaskStatus.COMPLETED, result=result, completed_at=time.time()):
            logger.debug("Task completed task=%s url=%s rows=%d", task.id, task.url, result.row_count)

    async def _handle_failure(self, task: Task, job: Job, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        max_retries = int(job.settings.max_retries)

        if task.retry_count >= max_retries:
            logger.warning(
                "Task failed task=%s url=%s after %d retries: %s",
                task.id,
                task.url,
                task.retry_count,
                message,
            )
            self._write(task, status=TaskStatus.FAILED, error=message, completed_at=time.time())
            return

        delay = self._retry_policy.delay_seconds(task.retry_count)
        logger.info(
            "Retrying url=%s in %.2fs (attempt %d/%d): %s",
            task.url,
            delay,
            task.retry_count + 1,
            max_retries,
            message,
        )
        await asyncio.sleep(delay)

        if self._cancel.is_set():
            self._write(
                task,
                status=TaskStatus.CANCELLED,
                retry_count=task.retry_count + 1,
                completed_at=time.time(),
            )
            return

        # Back to the pending pool; the loop re-admits it within max_concurrency.
        self._write(task, status=TaskStatus.PENDING, retry_count=task.retry_count + 1)

    def _write(self, task: Task, **fields: Any) -> bool:
        try:
            self._store.update_task(task.id, **fields)
            return True
        except Exception:
            logger.exception("Failed to persist outcome task=%s status=%s", task.id, fields.get("status"))
            return False

    # ---- drained ----

    def _finish_drained(self) -> None:
        """
        Mark the job completed, but only if the persisted status is still
        running: a pause or cancel that landed meanwhile wins.

        Tasks left running with nothing in flight lost their outcome write; the
        job is paused so that a resume requeues them.
        """
        job = self._store.get_job(self.job_id)
        if job is None:
            return
        if job.status != JobStatus.RUNNING:
            logger.info("Job drained but left as %s job=%s", job.status, self.job_id)
            return
        if not job.statistics.is_drained:
            logger.warning(
                "Job drained with work outstanding, pausing job=%s pending=%d running=%d",
                self.job_id,
                job.statistics.pending,
                job.statistics.running,
            )
            self._store.update_job(self.job_id, status=JobStatus.PAUSED)
            return
        self._store.update_job(self.job_id, status=JobStatus.COMPLETED)
        logger.info(
            "Job completed job=%s completed=%d failed=%d rows=%d",
            self.job_id,
            job.statistics.completed,
            job.statistics.failed,
            job.statistics.total_rows,
        )
