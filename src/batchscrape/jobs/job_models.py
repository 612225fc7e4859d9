# src/batchscrape/jobs/job_models.py

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @classmethod
    def from_db(cls, raw: str | None) -> JobStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class TaskStatus(StrEnum):
    """
    Per-URL task lifecycle.

    pending -> running -> completed | failed | cancelled
    A failed attempt with retries left goes back to pending instead of failed.
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def from_db(cls, raw: str | None) -> TaskStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING


class RenderingMode(StrEnum):
    FULL = "full"  # JavaScript enabled
    STATIC = "static"  # JavaScript disabled


@dataclass(slots=True)
class ColumnDefinition:
    name: str
    selector: str
    key: str | None = None


@dataclass(slots=True)
class ScrapeConfig:
    """Extraction rule: one root selector plus one sub-selector per column."""

    main_selector: str
    columns: list[ColumnDefinition] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "mainSelector": self.main_selector,
            "columns": [
                {k: v for k, v in asdict(c).items() if v is not None} for c in self.columns
            ],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ScrapeConfig:
        main = raw.get("mainSelector", raw.get("main_selector"))
        if not isinstance(main, str) or not main.strip():
            raise ValueError("mainSelector is required")
        columns: list[ColumnDefinition] = []
        for col in raw.get("columns") or []:
            if not isinstance(col, dict):
                raise ValueError("each column must be an object")
            name = col.get("name")
            selector = col.get("selector")
            if not isinstance(name, str) or not isinstance(selector, str):
                raise ValueError("column name and selector must be strings")
            columns.append(ColumnDefinition(name=name, selector=selector, key=col.get("key")))
        return cls(main_selector=main, columns=columns)


@dataclass(slots=True)
class ScrapedRow:
    data: dict[str, str]
    original_index: int = 0
    is_empty: bool = False


@dataclass(slots=True)
class ScrapeResult:
    """What a page extractor returns: one row per candidate element."""

    rows: list[ScrapedRow] = field(default_factory=list)
    column_order: list[str] = field(default_factory=list)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [
                {
                    "data": dict(r.data),
                    "metadata": {"originalIndex": r.original_index, "isEmpty": r.is_empty},
                }
                for r in self.rows
            ],
            "columnOrder": list(self.column_order),
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ScrapeResult:
        rows: list[ScrapedRow] = []
        for item in raw.get("data") or []:
            meta = item.get("metadata") or {}
            rows.append(
                ScrapedRow(
                    data={str(k): str(v) for k, v in (item.get("data") or {}).items()},
                    original_index=int(meta.get("originalIndex", len(rows))),
                    is_empty=bool(meta.get("isEmpty", False)),
                )
            )
        return cls(rows=rows, column_order=[str(c) for c in raw.get("columnOrder") or []])


@dataclass(slots=True, frozen=True)
class BatchSettings:
    max_concurrency: int = 3
    delay_between_requests: int = 1000  # ms
    max_retries: int = 3
    disable_js_rendering: bool = False

    def validate(self) -> None:
        if int(self.max_concurrency) < 1:
            raise ValueError("max_concurrency must be >= 1")
        if int(self.delay_between_requests) < 0:
            raise ValueError("delay_between_requests must be >= 0")
        if int(self.max_retries) < 0:
            raise ValueError("max_retries must be >= 0")

    @property
    def rendering_mode(self) -> RenderingMode:
        return RenderingMode.STATIC if self.disable_js_rendering else RenderingMode.FULL

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any], *, defaults: BatchSettings | None = None) -> BatchSettings:
        base = defaults or cls()
        return cls(
            max_concurrency=int(raw.get("max_concurrency", base.max_concurrency)),
            delay_between_requests=int(raw.get("delay_between_requests", base.delay_between_requests)),
            max_retries=int(raw.get("max_retries", base.max_retries)),
            disable_js_rendering=bool(raw.get("disable_js_rendering", base.disable_js_rendering)),
        )


@dataclass(slots=True, frozen=True)
class Statistics:
    total: int = 0
    pending: int = 0
    running: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total_rows: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> Statistics:
        raw = raw or {}
        return cls(**{k: int(raw.get(k, 0) or 0) for k in cls.__dataclass_fields__})

    @property
    def is_drained(self) -> bool:
        return self.pending == 0 and self.running == 0


@dataclass(slots=True)
class Job:
    id: str
    name: str
    config: ScrapeConfig
    urls: tuple[str, ...]
    status: JobStatus
    settings: BatchSettings
    statistics: Statistics
    created_at: float
    updated_at: float


@dataclass(slots=True)
class Task:
    id: str
    job_id: str
    position: int
    url: str
    status: TaskStatus
    retry_count: int = 0
    result: ScrapeResult | None = None
    error: str | None = None
    started_at: float | None = None
    completed_at: float | None = None
