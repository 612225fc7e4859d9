# src/batchscrape/jobs/job_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import Path
from typing import Any

from ..errors import JobNotFoundError, TaskNotFoundError
from .job_models import (
    BatchSettings,
    Job,
    JobStatus,
    ScrapeConfig,
    ScrapeResult,
    Statistics,
    Task,
    TaskStatus,
)
from .url_utils import generate_job_name

logger = logging.getLogger(__name__)

# Marks "not passed" for fields where None is a meaningful value (clearing a column).
_UNSET: Any = object()


class StoreEventKind(StrEnum):
    JOB_CREATED = "job_created"
    JOB_UPDATED = "job_updated"
    JOB_DELETED = "job_deleted"
    TASKS_UPDATED = "tasks_updated"


@dataclass(slots=True, frozen=True)
class StoreEvent:
    kind: StoreEventKind
    job_id: str
    task_id: str | None = None


StoreListener = Callable[[StoreEvent], None]


def _check_task_invariant(status: TaskStatus, result: ScrapeResult | None, error: str | None) -> None:
    if (result is not None) != (status == TaskStatus.COMPLETED):
        raise ValueError(f"result must be set iff status is completed (status={status.value})")
    if (error is not None) != (status == TaskStatus.FAILED):
        raise ValueError(f"error must be set iff status is failed (status={status.value})")


class JobStore:
    """
    SQLite store for batch jobs and their per-URL tasks.

    Two tables:
    - jobs: one row per batch, statistics kept as a JSON column
    - tasks: one row per URL, indexed by job_id and (job_id, status)

    Every task write recomputes the owning job's statistics from scratch in the
    same transaction, so the aggregate can never drift from the task rows, even
    across restarts.

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(
        self,
        db_path: str | Path = "batchscrape.sqlite3",
        *,
        default_settings: BatchSettings | None = None,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._default_settings = default_settings or BatchSettings()
        self._listeners: list[StoreListener] = []
        self._ensure_schema()
        logger.info("JobStore ready db=%s jobs=%s", self._db_path, self.count_jobs())

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def default_settings(self) -> BatchSettings:
        return self._default_settings

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(sqlite3.DatabaseError):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()

            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    config TEXT NOT NULL DEFAULT '{}',
                    urls TEXT NOT NULL DEFAULT '[]',
                    status TEXT NOT NULL DEFAULT 'pending',
                    settings TEXT NOT NULL DEFAULT '{}',
                    statistics TEXT NOT NULL DEFAULT '{}',
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS tasks (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL,
                    position INTEGER NOT NULL DEFAULT 0,
                    url TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    result TEXT,
                    error TEXT,
                    row_count INTEGER NOT NULL DEFAULT 0,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    started_at REAL,
                    completed_at REAL
                )
                """
            )

            # Migrations (safe): add missing columns.
            def add_cols(table: str, wanted: dict[str, str]) -> None:
                cur.execute(f"PRAGMA table_info({table})")
                cols = {row["name"] for row in cur.fetchall()}
                for name, decl in wanted.items():
                    if name in cols:
                        continue
                    cur.execute(f"ALTER TABLE {table} ADD COLUMN {name} {decl}")
                    logger.info("JobStore migration: added column %s.%s", table, name)

            add_cols(
                "jobs",
                {
                    "settings": "TEXT NOT NULL DEFAULT '{}'",
                    "statistics": "TEXT NOT NULL DEFAULT '{}'",
                },
            )
            add_cols(
                "tasks",
                {
                    "position": "INTEGER NOT NULL DEFAULT 0",
                    "row_count": "INTEGER NOT NULL DEFAULT 0",
                    "retry_count": "INTEGER NOT NULL DEFAULT 0",
                    "started_at": "REAL",
                    "completed_at": "REAL",
                },
            )

            cur.execute("CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_tasks_job ON tasks(job_id, position)")
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_tasks_job_status ON tasks(job_id, status, position)"
            )

            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _json(value: Any) -> str:
        return json.dumps(value, ensure_ascii=False)

    @staticmethod
    def _from_json(s: str | None, default: Any) -> Any:
        if not s:
            return default
        try:
            return json.loads(s)
        except json.JSONDecodeError:
            logger.warning("Corrupt JSON column ignored: %.80s", s)
            return default

    def _row_to_job(self, row: sqlite3.Row) -> Job:
        config_raw = self._from_json(row["config"], {})
        return Job(
            id=str(row["id"]),
            name=str(row["name"] or ""),
            config=ScrapeConfig.from_dict(config_raw),
            urls=tuple(self._from_json(row["urls"], [])),
            status=JobStatus.from_db(row["status"]),
            settings=BatchSettings.from_dict(
                self._from_json(row["settings"], {}), defaults=self._default_settings
            ),
            statistics=Statistics.from_dict(self._from_json(row["statistics"], {})),
            created_at=float(row["created_at"] or 0.0),
            updated_at=float(row["updated_at"] or 0.0),
        )

    def _row_to_task(self, row: sqlite3.Row) -> Task:
        result_raw = self._from_json(row["result"], None)
        return Task(
            id=str(row["id"]),
            job_id=str(row["job_id"]),
            position=int(row["position"] or 0),
            url=str(row["url"]),
            status=TaskStatus.from_db(row["status"]),
            retry_count=int(row["retry_count"] or 0),
            result=ScrapeResult.from_dict(result_raw) if result_raw is not None else None,
            error=row["error"],
            started_at=float(row["started_at"]) if row["started_at"] is not None else None,
            completed_at=float(row["completed_at"]) if row["completed_at"] is not None else None,
        )

    @staticmethod
    def _recompute(cur: sqlite3.Cursor, job_id: str, now: float) -> Statistics:
        """Full rescan of one job's tasks; writes the aggregate and bumps updated_at."""
        cur.execute(
            """
            SELECT status,
                   COUNT(*) AS n,
                   COALESCE(SUM(CASE WHEN status = 'completed' THEN row_count ELSE 0 END), 0) AS rows
            FROM tasks
            WHERE job_id = ?
            GROUP BY status
            """,
            (job_id,),
        )
        counts = {s.value: 0 for s in TaskStatus}
        total = 0
        total_rows = 0
        for row in cur.fetchall():
            status = TaskStatus.from_db(row["status"])
            counts[status.value] += int(row["n"])
            total += int(row["n"])
            total_rows += int(row["rows"])

        stats = Statistics(
            total=total,
            pending=counts[TaskStatus.PENDING.value],
            running=counts[TaskStatus.RUNNING.value],
            completed=counts[TaskStatus.COMPLETED.value],
            failed=counts[TaskStatus.FAILED.value],
            cancelled=counts[TaskStatus.CANCELLED.value],
            total_rows=total_rows,
        )
        cur.execute(
            "UPDATE jobs SET statistics = ?, updated_at = ? WHERE id = ?",
            (json.dumps(stats.to_dict()), now, job_id),
        )
        return stats

    # ---- subscriptions ----

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """
        Register a change listener. Called after every committed write.
        Returns a function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, kind: StoreEventKind, job_id: str, task_id: str | None = None) -> None:
        event = StoreEvent(kind=kind, job_id=job_id, task_id=task_id)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Store listener failed event=%s", event)

    # ---- jobs ----

    def count_jobs(self) -> int:
        conn = self._get_conn()
        try:
            (n,) = conn.execute("SELECT COUNT(*) FROM jobs").fetchone()
            return int(n)
        finally:
            conn.close()

    def create_job(
        self,
        config: ScrapeConfig | dict[str, Any],
        urls: Iterable[str],
        name: str | None = None,
        settings: BatchSettings | dict[str, Any] | None = None,
    ) -> Job:
        """Create a job plus one pending task per URL, in one transaction."""
        url_list = [u.strip() for u in urls if u and u.strip()]
        if not url_list:
            raise ValueError("at least one URL is required")

        if isinstance(config, dict):
            config = ScrapeConfig.from_dict(config)

        if settings is None:
            batch_settings = self._default_settings
        elif isinstance(settings, BatchSettings):
            batch_settings = settings
        else:
            batch_settings = BatchSettings.from_dict(settings, defaults=self._default_settings)
        batch_settings.validate()

        now = time.time()
        job_id = str(uuid.uuid4())
        job_name = (name or "").strip() or generate_job_name(url_list)
        stats = Statistics(total=len(url_list), pending=len(url_list))

        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO jobs(id, name, config, urls, status, settings, statistics, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    job_name,
                    self._json(config.to_dict()),
                    self._json(url_list),
                    JobStatus.PENDING.value,
                    self._json(batch_settings.to_dict()),
                    self._json(stats.to_dict()),
                    now,
                    now,
                ),
            )
            cur.executemany(
                """
                INSERT INTO tasks(id, job_id, position, url, status, retry_count)
                VALUES (?, ?, ?, ?, 'pending', 0)
                """,
                [(str(uuid.uuid4()), job_id, i, url) for i, url in enumerate(url_list)],
            )
            conn.commit()
        finally:
            conn.close()

        logger.info("Created job id=%s name=%r urls=%d", job_id, job_name, len(url_list))
        self._emit(StoreEventKind.JOB_CREATED, job_id)

        return Job(
            id=job_id,
            name=job_name,
            config=config,
            urls=tuple(url_list),
            status=JobStatus.PENDING,
            settings=batch_settings,
            statistics=stats,
            created_at=now,
            updated_at=now,
        )

    def get_job(self, job_id: str) -> Job | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
            return self._row_to_job(row) if row else None
        finally:
            conn.close()

    def require_job(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self) -> list[Job]:
        """All jobs, newest first."""
        conn = self._get_conn()
        try:
            rows = conn.execute("SELECT * FROM jobs ORDER BY created_at DESC").fetchall()
            return [self._row_to_job(r) for r in rows]
        finally:
            conn.close()

    def list_jobs_by_status(self, status: JobStatus) -> list[Job]:
        conn = self._get_conn()
        try:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE status = ? ORDER BY created_at DESC",
                (JobStatus(status).value,),
            ).fetchall()
            return [self._row_to_job(r) for r in rows]
        finally:
            conn.close()

    def search_jobs(self, query: str) -> list[Job]:
        """Case-insensitive match on job name or any of its URLs."""
        q = (query or "").strip().lower()
        jobs = self.list_jobs()
        if not q:
            return jobs
        return [j for j in jobs if q in j.name.lower() or any(q in u.lower() for u in j.urls)]

    def update_job(
        self,
        job_id: str,
        *,
        name: str | None = None,
        status: JobStatus | None = None,
        settings: BatchSettings | None = None,
        config: ScrapeConfig | None = None,
    ) -> None:
        fields: list[str] = []
        params: list[Any] = []

        if name is not None:
            fields.append("name = ?")
            params.append(name.strip())

        if status is not None:
            fields.append("status = ?")
            params.append(JobStatus(status).value)

        if settings is not None:
            settings.validate()
            fields.append("settings = ?")
            params.append(self._json(settings.to_dict()))

        if config is not None:
            fields.append("config = ?")
            params.append(self._json(config.to_dict()))

        fields.append("updated_at = ?")
        params.append(time.time())
        params.append(job_id)

        conn = self._get_conn()
        try:
            cur = conn.execute(f"UPDATE jobs SET {', '.join(fields)} WHERE id = ?", params)
            if cur.rowcount != 1:
                raise JobNotFoundError(job_id)
            conn.commit()
        finally:
            conn.close()

        logger.debug("Updated job id=%s status=%s", job_id, status)
        self._emit(StoreEventKind.JOB_UPDATED, job_id)

    def delete_job(self, job_id: str) -> bool:
        """Delete a job and all its tasks atomically. Returns False if it did not exist."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("DELETE FROM tasks WHERE job_id = ?", (job_id,))
            cur.execute("DELETE FROM jobs WHERE id = ?", (job_id,))
            deleted = cur.rowcount == 1
            conn.commit()
        finally:
            conn.close()

        if deleted:
            logger.info("Deleted job id=%s", job_id)
            self._emit(StoreEventKind.JOB_DELETED, job_id)
        return deleted

    def recompute_statistics(self, job_id: str) -> Statistics:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            stats = self._recompute(cur, job_id, time.time())
            if cur.rowcount != 1:
                raise JobNotFoundError(job_id)
            conn.commit()
        finally:
            conn.close()
        self._emit(StoreEventKind.JOB_UPDATED, job_id)
        return stats

    def storage_usage(self) -> int:
        """Bytes used on disk by the database (including the WAL file)."""
        total = 0
        for suffix in ("", "-wal", "-shm"):
            path = Path(f"{self._db_path}{suffix}")
            if path.exists():
                total += path.stat().st_size
        return total

    # ---- tasks ----

    def get_task(self, task_id: str) -> Task | None:
        conn = self._get_conn()
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            return self._row_to_task(row) if row else None
        finally:
            conn.close()

    def _list_tasks_where(self, job_id: str, status: TaskStatus | None) -> list[Task]:
        conn = self._get_conn()
        try:
            if status is None:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE job_id = ? ORDER BY position ASC",
                    (job_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM tasks WHERE job_id = ? AND status = ? ORDER BY position ASC",
                    (job_id, status.value),
                ).fetchall()
            return [self._row_to_task(r) for r in rows]
        finally:
            conn.close()

    def list_tasks(self, job_id: str) -> list[Task]:
        return self._list_tasks_where(job_id, None)

    def list_pending_tasks(self, job_id: str) -> list[Task]:
        return self._list_tasks_where(job_id, TaskStatus.PENDING)

    def list_failed_tasks(self, job_id: str) -> list[Task]:
        return self._list_tasks_where(job_id, TaskStatus.FAILED)

    def update_task(
        self,
        task_id: str,
        *,
        status: TaskStatus | None = None,
        result: ScrapeResult | None = _UNSET,
        error: str | None = _UNSET,
        retry_count: int | None = None,
        started_at: float | None = _UNSET,
        completed_at: float | None = _UNSET,
    ) -> Task:
        """
        Partial task update followed by a statistics recompute of its job,
        both in one transaction.

        Changing status clears whichever of result/error does not belong to the
        new status, so "result iff completed, error iff failed" always holds.
        """
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            row = cur.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
            if row is None:
                raise TaskNotFoundError(task_id)
            current = self._row_to_task(row)

            new_status = TaskStatus(status) if status is not None else current.status
            if status is not None:
                if result is _UNSET and new_status != TaskStatus.COMPLETED:
                    result = None
                if error is _UNSET and new_status != TaskStatus.FAILED:
                    error = None

            updated = replace(
                current,
                status=new_status,
                result=current.result if result is _UNSET else result,
                error=current.error if error is _UNSET else error,
                retry_count=current.retry_count if retry_count is None else int(retry_count),
                started_at=current.started_at if started_at is _UNSET else started_at,
                completed_at=current.completed_at if completed_at is _UNSET else completed_at,
            )
            _check_task_invariant(updated.status, updated.result, updated.error)
            if updated.retry_count < 0:
                raise ValueError("retry_count must be >= 0")

            cur.execute(
                """
                UPDATE tasks
                SET status = ?,
                    result = ?,
                    error = ?,
                    row_count = ?,
                    retry_count = ?,
                    started_at = ?,
                    completed_at = ?
                WHERE id = ?
                """,
                (
                    updated.status.value,
                    self._json(updated.result.to_dict()) if updated.result is not None else None,
                    updated.error,
                    updated.result.row_count if updated.result is not None else 0,
                    updated.retry_count,
                    updated.started_at,
                    updated.completed_at,
                    task_id,
                ),
            )
            self._recompute(cur, updated.job_id, time.time())
            conn.commit()
        finally:
            conn.close()

        logger.debug(
            "Task updated id=%s job=%s status=%s retry=%s",
            task_id,
            updated.job_id,
            updated.status.value,
            updated.retry_count,
        )
        self._emit(StoreEventKind.TASKS_UPDATED, updated.job_id, task_id)
        return updated

    def _bulk_task_update(
        self,
        job_id: str,
        set_sql: str,
        set_params: list[Any],
        where_sql: str,
        where_params: list[Any],
    ) -> int:
        now = time.time()
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                f"UPDATE tasks SET {set_sql} WHERE job_id = ? AND {where_sql}",
                [*set_params, job_id, *where_params],
            )
            n = cur.rowcount
            if n:
                self._recompute(cur, job_id, now)
            conn.commit()
        finally:
            conn.close()

        if n:
            self._emit(StoreEventKind.TASKS_UPDATED, job_id)
        return n

    def reset_tasks(self, job_id: str, task_ids: Iterable[str]) -> int:
        """Put the given tasks back to pending with a fresh retry budget."""
        ids = list(task_ids)
        if not ids:
            return 0
        placeholders = ",".join("?" for _ in ids)
        n = self._bulk_task_update(
            job_id,
            "status = 'pending', retry_count = 0, error = NULL, result = NULL, "
            "row_count = 0, started_at = NULL, completed_at = NULL",
            [],
            f"id IN ({placeholders})",
            ids,
        )
        logger.debug("Reset %d task(s) to pending job=%s", n, job_id)
        return n

    def cancel_pending_tasks(self, job_id: str) -> int:
        n = self._bulk_task_update(
            job_id,
            "status = 'cancelled', completed_at = ?",
            [time.time()],
            "status = 'pending'",
            [],
        )
        logger.debug("Cancelled %d pending task(s) job=%s", n, job_id)
        return n

    def requeue_running_tasks(self, job_id: str) -> int:
        """
        Move tasks stuck in 'running' back to pending.

        Only valid when no runner owns the job (e.g. after a process restart).
        """
        n = self._bulk_task_update(job_id, "status = 'pending'", [], "status = 'running'", [])
        if n:
            logger.info("Requeued %d orphaned running task(s) job=%s", n, job_id)
        return n

    def get_combined_rows(self, job_id: str) -> list[dict[str, str]]:
        """Rows of all completed tasks, in URL order, each prefixed with its source url."""
        conn = self._get_conn()
        try:
            rows = conn.execute(
                """
                SELECT url, result
                FROM tasks
                WHERE job_id = ? AND status = 'completed' AND row_count > 0
                ORDER BY position ASC
                """,
                (job_id,),
            ).fetchall()
        finally:
            conn.close()

        combined: list[dict[str, str]] = []
        for row in rows:
            result = ScrapeResult.from_dict(self._from_json(row["result"], {}))
            for scraped in result.rows:
                combined.append({"url": str(row["url"]), **scraped.data})
        return combined
