# tests/test_job_store.py

from __future__ import annotations

import itertools
import random
from pathlib import Path

import pytest

from batchscrape.errors import JobNotFoundError, TaskNotFoundError
from batchscrape.jobs import job_store as job_store_module
from batchscrape.jobs.job_models import (
    BatchSettings,
    JobStatus,
    ScrapeConfig,
    ScrapedRow,
    ScrapeResult,
    Statistics,
    TaskStatus,
)
from batchscrape.jobs.job_store import JobStore, StoreEventKind

from .helpers import assert_statistics_consistent

URLS = ["https://shop.example.com/p/1", "https://shop.example.com/p/2", "https://shop.example.com/p/3"]


def _result(n: int) -> ScrapeResult:
    return ScrapeResult(
        rows=[ScrapedRow(data={"title": f"t{i}"}, original_index=i) for i in range(n)],
        column_order=["title"],
    )


def test_create_job_creates_pending_tasks_and_statistics(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS, name="Shop run")

    assert job.status == JobStatus.PENDING
    assert job.name == "Shop run"
    assert job.urls == tuple(URLS)
    assert job.statistics == Statistics(total=3, pending=3)
    assert job.settings == store.default_settings

    loaded = store.require_job(job.id)
    assert loaded.config == scrape_config
    assert loaded.statistics == job.statistics

    tasks = store.list_tasks(job.id)
    assert [t.url for t in tasks] == URLS
    assert [t.position for t in tasks] == [0, 1, 2]
    assert all(t.status == TaskStatus.PENDING and t.retry_count == 0 for t in tasks)
    assert_statistics_consistent(store, job.id)


def test_create_job_defaults_and_validation(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS, settings={"max_concurrency": 5})
    assert job.name.startswith("shop.example.com - ")
    assert job.settings.max_concurrency == 5
    assert job.settings.max_retries == store.default_settings.max_retries

    with pytest.raises(ValueError):
        store.create_job(scrape_config, [])
    with pytest.raises(ValueError):
        store.create_job(scrape_config, URLS, settings=BatchSettings(max_concurrency=0))
    with pytest.raises(ValueError):
        store.create_job(scrape_config, URLS, settings={"max_retries": -1})
    with pytest.raises(ValueError):
        store.create_job({"columns": []}, URLS)


def test_update_task_recomputes_statistics_and_bumps_updated_at(
    store: JobStore, scrape_config: ScrapeConfig, monkeypatch: pytest.MonkeyPatch
) -> None:
    clock = itertools.count(1000.0)
    monkeypatch.setattr(job_store_module.time, "time", lambda: next(clock))

    job = store.create_job(scrape_config, URLS)
    first = store.list_tasks(job.id)[0]

    store.update_task(first.id, status=TaskStatus.RUNNING, started_at=5.0)
    after_running = store.require_job(job.id)
    assert after_running.statistics.running == 1
    assert after_running.statistics.pending == 2
    assert after_running.updated_at > job.updated_at

    done = store.update_task(first.id, status=TaskStatus.COMPLETED, result=_result(4), completed_at=6.0)
    assert done.result is not None and done.result.row_count == 4
    assert done.started_at == 5.0

    after_done = store.require_job(job.id)
    assert after_done.statistics.completed == 1
    assert after_done.statistics.running == 0
    assert after_done.statistics.total_rows == 4
    assert after_done.updated_at > after_running.updated_at
    assert_statistics_consistent(store, job.id)


def test_update_job_bumps_updated_at_and_keeps_urls(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS)
    store.update_job(job.id, status=JobStatus.RUNNING, name="renamed")

    loaded = store.require_job(job.id)
    assert loaded.status == JobStatus.RUNNING
    assert loaded.name == "renamed"
    assert loaded.urls == job.urls
    assert loaded.updated_at >= job.updated_at

    with pytest.raises(JobNotFoundError):
        store.update_job("missing", status=JobStatus.PAUSED)


def test_result_iff_completed_error_iff_failed(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS[:1])
    task = store.list_tasks(job.id)[0]

    with pytest.raises(ValueError):
        store.update_task(task.id, status=TaskStatus.COMPLETED)
    with pytest.raises(ValueError):
        store.update_task(task.id, status=TaskStatus.FAILED)
    with pytest.raises(ValueError):
        store.update_task(task.id, status=TaskStatus.PENDING, error="nope")

    failed = store.update_task(task.id, status=TaskStatus.FAILED, error="HTTP 500")
    assert failed.error == "HTTP 500" and failed.result is None

    # Leaving 'failed' drops the error.
    pending = store.update_task(task.id, status=TaskStatus.PENDING, retry_count=0)
    assert pending.error is None

    done = store.update_task(task.id, status=TaskStatus.COMPLETED, result=_result(1))
    assert done.error is None and done.result is not None

    reloaded = store.get_task(task.id)
    assert reloaded is not None
    assert reloaded.result is not None and reloaded.result.rows[0].data == {"title": "t0"}
    assert_statistics_consistent(store, job.id)


def test_statistics_consistent_for_any_mutation_sequence(store: JobStore, scrape_config: ScrapeConfig) -> None:
    rng = random.Random(7)
    urls = [f"https://example.org/item/{i}" for i in range(12)]
    job = store.create_job(scrape_config, urls)
    other = store.create_job(scrape_config, URLS)
    tasks = store.list_tasks(job.id)

    for _ in range(80):
        task = rng.choice(tasks)
        status = rng.choice(list(TaskStatus))
        kwargs: dict = {"status": status}
        if status == TaskStatus.COMPLETED:
            kwargs["result"] = _result(rng.randint(0, 5))
        elif status == TaskStatus.FAILED:
            kwargs["error"] = "boom"
        store.update_task(task.id, **kwargs)
        assert_statistics_consistent(store, job.id)

    # The other job's aggregate is untouched.
    assert store.require_job(other.id).statistics == Statistics(total=3, pending=3)


def test_pending_and_failed_scans_are_in_url_order(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS)
    t0, t1, t2 = store.list_tasks(job.id)

    store.update_task(t2.id, status=TaskStatus.FAILED, error="x")
    store.update_task(t0.id, status=TaskStatus.FAILED, error="y")

    assert [t.id for t in store.list_pending_tasks(job.id)] == [t1.id]
    assert [t.id for t in store.list_failed_tasks(job.id)] == [t0.id, t2.id]


def test_bulk_reset_cancel_and_requeue(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS)
    t0, t1, t2 = store.list_tasks(job.id)
    store.update_task(t0.id, status=TaskStatus.FAILED, error="x", retry_count=3)
    store.update_task(t1.id, status=TaskStatus.RUNNING)

    assert store.reset_tasks(job.id, [t0.id]) == 1
    reset = store.get_task(t0.id)
    assert reset is not None
    assert reset.status == TaskStatus.PENDING and reset.retry_count == 0 and reset.error is None

    assert store.requeue_running_tasks(job.id) == 1
    assert store.get_task(t1.id).status == TaskStatus.PENDING  # type: ignore[union-attr]

    assert store.cancel_pending_tasks(job.id) == 3
    stats = store.require_job(job.id).statistics
    assert stats.cancelled == 3 and stats.pending == 0
    assert_statistics_consistent(store, job.id)

    # Ids of another job are ignored.
    other = store.create_job(scrape_config, URLS[:1])
    assert store.reset_tasks(other.id, [t2.id]) == 0


def test_delete_job_removes_job_and_tasks_together(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS)
    keep = store.create_job(scrape_config, URLS[:1])
    task_ids = [t.id for t in store.list_tasks(job.id)]

    assert store.delete_job(job.id) is True
    assert store.get_job(job.id) is None
    assert store.list_tasks(job.id) == []
    assert all(store.get_task(tid) is None for tid in task_ids)
    assert store.delete_job(job.id) is False

    assert len(store.list_tasks(keep.id)) == 1


def test_unknown_ids_raise(store: JobStore) -> None:
    with pytest.raises(TaskNotFoundError):
        store.update_task("missing", status=TaskStatus.RUNNING)
    with pytest.raises(JobNotFoundError):
        store.require_job("missing")
    with pytest.raises(JobNotFoundError):
        store.recompute_statistics("missing")


def test_combined_rows_prefix_url_and_follow_url_order(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS)
    t0, t1, t2 = store.list_tasks(job.id)
    store.update_task(t2.id, status=TaskStatus.COMPLETED, result=_result(1))
    store.update_task(t0.id, status=TaskStatus.COMPLETED, result=_result(2))
    store.update_task(t1.id, status=TaskStatus.COMPLETED, result=_result(0))

    rows = store.get_combined_rows(job.id)
    assert rows == [
        {"url": URLS[0], "title": "t0"},
        {"url": URLS[0], "title": "t1"},
        {"url": URLS[2], "title": "t0"},
    ]
    assert store.require_job(job.id).statistics.total_rows == 3


def test_list_search_and_filter_jobs(store: JobStore, scrape_config: ScrapeConfig) -> None:
    a = store.create_job(scrape_config, URLS, name="Shoes")
    b = store.create_job(scrape_config, ["https://news.example.net/a"], name="News")
    store.update_job(b.id, status=JobStatus.COMPLETED)

    assert {j.id for j in store.list_jobs()} == {a.id, b.id}
    assert [j.id for j in store.search_jobs("shoes")] == [a.id]
    assert [j.id for j in store.search_jobs("NEWS.example")] == [b.id]
    assert [j.id for j in store.list_jobs_by_status(JobStatus.COMPLETED)] == [b.id]
    assert store.storage_usage() > 0


def test_subscribers_are_notified_after_writes(store: JobStore, scrape_config: ScrapeConfig) -> None:
    events = []

    def broken_listener(event) -> None:
        raise RuntimeError("listener bug")

    store.subscribe(broken_listener)
    unsubscribe = store.subscribe(events.append)

    job = store.create_job(scrape_config, URLS[:1])
    task = store.list_tasks(job.id)[0]
    store.update_task(task.id, status=TaskStatus.RUNNING)
    store.update_job(job.id, status=JobStatus.RUNNING)

    assert [e.kind for e in events] == [
        StoreEventKind.JOB_CREATED,
        StoreEventKind.TASKS_UPDATED,
        StoreEventKind.JOB_UPDATED,
    ]
    assert events[1].task_id == task.id

    unsubscribe()
    store.delete_job(job.id)
    assert len(events) == 3


def test_state_survives_reopen(tmp_path: Path, scrape_config: ScrapeConfig) -> None:
    db = tmp_path / "reopen.sqlite3"
    first = JobStore(db)
    job = first.create_job(scrape_config, URLS)
    task = first.list_tasks(job.id)[0]
    first.update_task(task.id, status=TaskStatus.COMPLETED, result=_result(2))

    second = JobStore(db)
    loaded = second.require_job(job.id)
    assert loaded.statistics == Statistics(total=3, pending=2, completed=1, total_rows=2)
    assert second.recompute_statistics(job.id) == loaded.statistics


def test_reset_tasks_matches_only_given_ids_of_the_job(store: JobStore, scrape_config: ScrapeConfig) -> None:
    job = store.create_job(scrape_config, URLS)
    other = store.create_job(scrape_config, URLS[:1])
    t0, t1, t2 = store.list_tasks(job.id)
    foreign = store.list_tasks(other.id)[0]
    for t in (t0, t1, t2, foreign):
        store.update_task(t.id, status=TaskStatus.FAILED, error="HTTP 503", retry_count=2)

    assert store.reset_tasks(job.id, [t0.id, t2.id, foreign.id]) == 2

    statuses = {t.id: (t.status, t.retry_count) for t in store.list_tasks(job.id)}
    assert statuses == {
        t0.id: (TaskStatus.PENDING, 0),
        t1.id: (TaskStatus.FAILED, 2),
        t2.id: (TaskStatus.PENDING, 0),
    }
    assert store.require_job(job.id).statistics == Statistics(total=3, pending=2, failed=1)
    assert store.get_task(foreign.id).status == TaskStatus.FAILED  # type: ignore[union-attr]
