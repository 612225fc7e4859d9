# src/batchscrape/errors.py

from __future__ import annotations


class BatchScrapeError(Exception):
    """Base class for errors raised by the batch scraping core."""


class JobNotFoundError(BatchScrapeError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Batch job not found: {job_id}")
        self.job_id = job_id


class TaskNotFoundError(BatchScrapeError):
    def __init__(self, task_id: str, job_id: str | None = None) -> None:
        where = f" in job {job_id}" if job_id else ""
        super().__init__(f"URL task not found: {task_id}{where}")
        self.task_id = task_id
        self.job_id = job_id


class JobStateError(BatchScrapeError):
    """A command was issued for a job in a status that does not allow it."""


class ExtractionError(BatchScrapeError):
    """
    Raised by page extractors when a page could not be scraped.

    The runner treats every extractor exception the same way (retry, then fail);
    this class only gives extractors a descriptive error to raise.
    """
