# src/batchscrape/jobs/job_api.py

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..core.state import AppState
from .job_models import BatchSettings, Job, ScrapeConfig, Statistics
from .url_utils import ValidatedUrls, validate_and_deduplicate_urls

logger = logging.getLogger(__name__)


def load_scrape_config(path: str | Path) -> ScrapeConfig:
    """Read an extraction rule from JSON ({"mainSelector": ..., "columns": [...]})."""
    raw = json.loads(Path(path).read_text("utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("config file must contain a JSON object")
    return ScrapeConfig.from_dict(raw)


def create_job_from_text(
    state: AppState,
    *,
    config: ScrapeConfig,
    urls_text: str,
    name: str | None = None,
    settings: BatchSettings | dict[str, Any] | None = None,
) -> tuple[Job, ValidatedUrls]:
    """
    Convenience helper: validate/deduplicate pasted URLs and create a job from the valid ones.
    Raises ValueError when nothing valid is left.
    """
    checked = validate_and_deduplicate_urls(urls_text)
    if not checked.valid:
        raise ValueError(f"No valid URLs ({len(checked.invalid)} invalid)")

    job = state.store.create_job(config, checked.valid, name=name, settings=settings)
    if checked.invalid or checked.duplicates_removed:
        logger.info(
            "Job %s created skipping %d invalid and %d duplicate URL(s)",
            job.id,
            len(checked.invalid),
            checked.duplicates_removed,
        )
    return job, checked


def format_statistics(stats: Statistics) -> str:
    done = stats.completed + stats.failed + stats.cancelled
    pct = (100.0 * done / stats.total) if stats.total else 0.0
    return (
        f"{done}/{stats.total} ({pct:.0f}%) - "
        f"completed {stats.completed}, failed {stats.failed}, cancelled {stats.cancelled}, "
        f"running {stats.running}, pending {stats.pending}, rows {stats.total_rows}"
    )


def resolve_job_id(state: AppState, prefix: str) -> str | None:
    """Accept a full job id or a unique prefix of one (ids are long uuids)."""
    prefix = (prefix or "").strip()
    if not prefix:
        return None
    if state.store.get_job(prefix) is not None:
        return prefix
    matches = [j.id for j in state.store.list_jobs() if j.id.startswith(prefix)]
    return matches[0] if len(matches) == 1 else None
