# src/batchscrape/jobs/runner_registry.py

from __future__ import annotations

import asyncio
import functools
import logging

from ..core.ports import JobRepo, PageExtractor
from ..errors import BatchScrapeError, JobStateError, TaskNotFoundError
from .job_models import JobStatus, TaskStatus
from .job_runner import JobRunner, RunnerState
from .retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


class RunnerRegistry:
    """
    Table of active runners, keyed by job id, plus the job command surface
    (start / pause / resume / cancel / retry).

    At most one runner exists per job id. An entry is removed as soon as its
    loop exits (paused, cancelled or drained).

    Commands are fire-and-forget and must be called from inside the running
    event loop; callers observe progress through the store (reads + subscribe).
    """

    def __init__(
        self,
        store: JobRepo,
        extractor: PageExtractor,
        *,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._retry_policy = retry_policy or RetryPolicy()
        self._runners: dict[str, JobRunner] = {}
        self._tasks: dict[str, asyncio.Task[RunnerState]] = {}

    # ---- bookkeeping ----

    def is_active(self, job_id: str) -> bool:
        return job_id in self._runners

    def active_job_ids(self) -> list[str]:
        return list(self._runners)

    def get_runner(self, job_id: str) -> JobRunner | None:
        return self._runners.get(job_id)

    def _deregister(self, runner: JobRunner) -> None:
        if self._runners.get(runner.job_id) is runner:
            del self._runners[runner.job_id]
            logger.debug("Runner deregistered job=%s", runner.job_id)

    def _on_runner_done(self, job_id: str, runner: JobRunner, task: asyncio.Task[RunnerState]) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        # Covers a runner task cancelled before run() got to execute.
        self._deregister(runner)

        if task.cancelled():
            logger.info("Runner task cancelled job=%s", job_id)
            return

        exc = task.exception()
        if exc is None:
            return

        logger.error("Runner crashed job=%s", job_id, exc_info=exc)
        try:
            job = self._store.get_job(job_id)
            # A pause, cancel or delete that landed before the crash stays as persisted.
            if job is not None and job.status == JobStatus.RUNNING:
                self._store.update_job(job_id, status=JobStatus.PAUSED)
        except Exception:
            logger.exception("Failed to mark crashed job as paused job=%s", job_id)

    async def wait(self, job_id: str) -> RunnerState | None:
        """Wait for the job's current runner (if any) to exit."""
        task = self._tasks.get(job_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    async def shutdown(self) -> None:
        """
        Pause every active runner and wait for in-flight work to settle.
        Persisted job statuses are left alone so a later start can pick up.
        """
        for runner in list(self._runners.values()):
            runner.pause()
        tasks = list(self._tasks.values())
        if tasks:
            logger.info("Waiting for %d runner(s) to settle...", len(tasks))
            await asyncio.gather(*tasks, return_exceptions=True)

    # ---- commands ----

    def start_job(self, job_id: str) -> bool:
        """
        Start draining a job. Returns False (no-op) when a runner is already active.
        Raises JobNotFoundError without touching anything if the job is unknown.
        """
        self._store.require_job(job_id)

        if job_id in self._runners:
            logger.warning("Job %s is already running", job_id)
            return False

        runner = JobRunner(
            job_id,
            self._store,
            self._extractor,
            retry_policy=self._retry_policy,
            on_exit=self._deregister,
        )
        self._runners[job_id] = runner
        try:
            # No runner owned this job until now, so 'running' rows are leftovers.
            self._store.requeue_running_tasks(job_id)
            self._store.update_job(job_id, status=JobStatus.RUNNING)
        except Exception:
            self._runners.pop(job_id, None)
            raise

        task = asyncio.create_task(runner.run(), name=f"job-runner:{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(functools.partial(self._on_runner_done, job_id, runner))
        logger.info("Started job %s", job_id)
        return True

    def pause_job(self, job_id: str) -> None:
        job = self._store.require_job(job_id)
        if job.status in (JobStatus.COMPLETED, JobStatus.CANCELLED):
            raise JobStateError(f"Cannot pause a {job.status} job")

        runner = self._runners.get(job_id)
        if runner is not None:
            runner.pause()
        else:
            logger.debug("Pausing job %s with no active runner", job_id)
        self._store.update_job(job_id, status=JobStatus.PAUSED)
        logger.info("Paused job %s", job_id)

    def resume_job(self, job_id: str) -> bool:
        job = self._store.require_job(job_id)
        if job.status != JobStatus.PAUSED:
            raise JobStateError("Batch is not paused")
        logger.info("Resuming job %s", job_id)
        return self._resume_or_start(job_id)

    def _resume_or_start(self, job_id: str) -> bool:
        runner = self._runners.get(job_id)
        if runner is None:
            return self.start_job(job_id)

        if runner.is_cancelled:
            logger.warning("Job %s is still stopping after cancel; start it again later", job_id)
            return False

        # The previous loop is still waiting for in-flight work: keep it.
        runner.resume()
        self._store.update_job(job_id, status=JobStatus.RUNNING)
        return True

    def cancel_job(self, job_id: str) -> int:
        """Stop admissions, mark the job cancelled and cancel its pending tasks."""
        job = self._store.require_job(job_id)
        if job.status == JobStatus.COMPLETED:
            raise JobStateError("Cannot cancel a completed job")

        runner = self._runners.get(job_id)
        if runner is not None:
            runner.cancel()
        self._store.update_job(job_id, status=JobStatus.CANCELLED)
        n = self._store.cancel_pending_tasks(job_id)
        logger.info("Cancelled job %s (%d pending task(s) cancelled)", job_id, n)
        return n

    def _reject_if_stopping(self, job_id: str) -> None:
        runner = self._runners.get(job_id)
        if runner is not None and runner.is_cancelled:
            raise JobStateError("Batch is still stopping after cancel; try again shortly")

    def retry_failed_urls(self, job_id: str) -> int:
        """Reset every failed task of the job and get the job draining again."""
        self._store.require_job(job_id)
        self._reject_if_stopping(job_id)
        failed = self._store.list_failed_tasks(job_id)
        if not failed:
            logger.debug("No failed URLs to retry job=%s", job_id)
            return 0

        n = self._store.reset_tasks(job_id, [t.id for t in failed])
        if not n:
            return 0
        logger.info("Reset %d failed URL(s) to pending job=%s", n, job_id)
        self._resume_or_start(job_id)
        return n

    def retry_url(self, job_id: str, task_id: str) -> None:
        self._store.require_job(job_id)
        task = self._store.get_task(task_id)
        if task is None or task.job_id != job_id:
            raise TaskNotFoundError(task_id, job_id)
        if task.status == TaskStatus.RUNNING:
            raise JobStateError("URL is currently being scraped")
        self._reject_if_stopping(job_id)

        if task.status != TaskStatus.PENDING:
            self._store.reset_tasks(job_id, [task_id])
            logger.info("Reset URL %s to pending job=%s", task.url, job_id)

        if job_id not in self._runners:
            self.start_job(job_id)

    def delete_job(self, job_id: str) -> bool:
        runner = self._runners.get(job_id)
        if runner is not None:
            runner.cancel()
        return self._store.delete_job(job_id)

    def recover_interrupted_jobs(self) -> list[str]:
        """
        Restart jobs persisted as running without a runner in this process
        (e.g. the previous process exited mid-drain).
        """
        started: list[str] = []
        for job in self._store.list_jobs_by_status(JobStatus.RUNNING):
            try:
                if self.start_job(job.id):
                    started.append(job.id)
            except BatchScrapeError:
                logger.exception("Failed to recover job %s", job.id)
        if started:
            logger.info("Recovered %d interrupted job(s)", len(started))
        return started
