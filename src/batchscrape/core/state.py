# src/batchscrape/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..jobs.job_store import JobStore
from ..jobs.runner_registry import RunnerRegistry
from .ports import PageExtractor


@dataclass
class AppState:
    # Settings object (config.Settings in the app, a SimpleNamespace in tests).
    settings: Any

    store: JobStore
    registry: RunnerRegistry
    extractor: PageExtractor
