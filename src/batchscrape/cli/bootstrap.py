# src/batchscrape/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (store, extractor, runner registry).
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..core.ports import PageExtractor
from ..core.state import AppState
from ..extractors.offline import OfflineExtractor
from ..jobs.job_store import JobStore
from ..jobs.retry_policy import RetryPolicy
from ..jobs.runner_registry import RunnerRegistry

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, extractor: PageExtractor | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings and the extractor injectable makes the app easier to test and
    avoids hidden global config reads. If settings is None, falls back to get_settings().
    Without an extractor the offline one is used.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if extractor is None:
        extractor = OfflineExtractor()

    store = JobStore(settings.db_path, default_settings=settings.default_batch_settings)
    registry = RunnerRegistry(
        store,
        extractor,
        retry_policy=RetryPolicy(base_ms=settings.retry_base_ms, jitter_ms=settings.retry_jitter_ms),
    )
    logger.debug("State ready db=%s extractor=%s", settings.db_path, type(extractor).__name__)
    return AppState(settings=settings, store=store, registry=registry, extractor=extractor)
