# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from batchscrape.cli.bootstrap import create_initial_state
from batchscrape.core.state import AppState
from batchscrape.jobs.job_models import BatchSettings, ColumnDefinition, ScrapeConfig
from batchscrape.jobs.job_store import JobStore
from batchscrape.jobs.runner_registry import RunnerRegistry

from .fakes import FakeExtractor


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic (no backoff waits).
    """
    return SimpleNamespace(
        app_name="batchscrape-test",
        log_level="DEBUG",
        console_enabled=False,
        data_dir=tmp_path,
        db_path=tmp_path / "jobs.sqlite3",
        default_batch_settings=BatchSettings(
            max_concurrency=2,
            delay_between_requests=0,
            max_retries=1,
        ),
        retry_base_ms=0.0,
        retry_jitter_ms=0.0,
    )


@pytest.fixture()
def extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture()
def state(settings: SimpleNamespace, extractor: FakeExtractor) -> AppState:
    """
    AppState wired with a fake extractor.

    NOTE: We keep a real SQLite JobStore here because its correctness
    (statistics recompute in particular) is part of what we want to test.
    """
    return create_initial_state(settings=settings, extractor=extractor)


@pytest.fixture()
def store(state: AppState) -> JobStore:
    return state.store


@pytest.fixture()
def registry(state: AppState) -> RunnerRegistry:
    return state.registry


@pytest.fixture()
def scrape_config() -> ScrapeConfig:
    return ScrapeConfig(
        main_selector="ul.results > li",
        columns=[
            ColumnDefinition(name="title", selector="h2"),
            ColumnDefinition(name="price", selector=".price"),
        ],
    )
