# src/batchscrape/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The runner depends on Protocols instead of concrete implementations.
This keeps the rendering engine and storage swappable and makes testing easier.
"""

from collections.abc import Iterable
from typing import Any, Awaitable, Protocol

from ..jobs.job_models import (
    Job,
    JobStatus,
    RenderingMode,
    ScrapeConfig,
    ScrapeResult,
    Statistics,
    Task,
    TaskStatus,
)


class PageExtractor(Protocol):
    """
    Rendering-side port: open a URL in an isolated surface, wait for it to settle,
    apply config.main_selector to enumerate candidates and each column selector to
    each candidate.

    Returns one row per candidate (all-empty rows included). Any exception counts
    as a failed attempt; the runner never inspects the cause.
    """

    def extract(
            self,
            url: str,
            config: ScrapeConfig,
            rendering_mode: RenderingMode,
    ) -> Awaitable[ScrapeResult]: ...


class JobRepo(Protocol):
    # Runner API
    def get_job(self, job_id: str) -> Job | None: ...
    def list_pending_tasks(self, job_id: str) -> list[Task]: ...
    def list_failed_tasks(self, job_id: str) -> list[Task]: ...
    def update_task(
            self,
            task_id: str,
            *,
            status: TaskStatus | None = None,
            result: ScrapeResult | None = ...,
            error: str | None = ...,
            retry_count: int | None = None,
            started_at: float | None = ...,
            completed_at: float | None = ...,
    ) -> Task: ...
    def update_job(
            self,
            job_id: str,
            *,
            name: str | None = None,
            status: JobStatus | None = None,
            settings: Any | None = None,
            config: ScrapeConfig | None = None,
    ) -> None: ...

    # Registry API
    def require_job(self, job_id: str) -> Job: ...
    def list_jobs_by_status(self, status: JobStatus) -> list[Job]: ...
    def get_task(self, task_id: str) -> Task | None: ...
    def reset_tasks(self, job_id: str, task_ids: Iterable[str]) -> int: ...
    def cancel_pending_tasks(self, job_id: str) -> int: ...
    def requeue_running_tasks(self, job_id: str) -> int: ...
    def delete_job(self, job_id: str) -> bool: ...
    def recompute_statistics(self, job_id: str) -> Statistics: ...
