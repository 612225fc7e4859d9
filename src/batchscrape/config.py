# src/batchscrape/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time.
- Job defaults (concurrency, delay, retries) live here, not in the store.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .jobs.job_models import BatchSettings

ENV_PREFIX = "BATCHSCRAPE"

load_dotenv(override=False)


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str
    console_enabled: bool

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    db_path: Path

    # ---- Job defaults ----
    max_concurrency: int
    delay_between_requests_ms: int
    max_retries: int
    disable_js_rendering: bool

    # ---- Retry backoff ----
    retry_base_ms: float
    retry_jitter_ms: float

    @property
    def default_batch_settings(self) -> BatchSettings:
        return BatchSettings(
            max_concurrency=max(1, self.max_concurrency),
            delay_between_requests=max(0, self.delay_between_requests_ms),
            max_retries=max(0, self.max_retries),
            disable_js_rendering=self.disable_js_rendering,
        )

    @staticmethod
    def from_env() -> "Settings":
        data_dir = _env_path(_k("DATA_DIR"), Path(".local/batchscrape"))

        return Settings(
            app_name=_env(_k("APP_NAME"), "batchscrape"),
            log_level=_env(_k("LOG_LEVEL"), "INFO"),
            console_enabled=_env_bool(_k("CONSOLE_ENABLED"), True),
            data_dir=data_dir,
            db_path=_env_path(_k("DB_PATH"), data_dir / "batchscrape.sqlite3"),
            max_concurrency=_env_int(_k("MAX_CONCURRENCY"), 3),
            delay_between_requests_ms=_env_int(_k("DELAY_BETWEEN_REQUESTS_MS"), 1000),
            max_retries=_env_int(_k("MAX_RETRIES"), 3),
            disable_js_rendering=_env_bool(_k("DISABLE_JS_RENDERING"), False),
            retry_base_ms=_env_float(_k("RETRY_BASE_MS"), 1000.0),
            retry_jitter_ms=_env_float(_k("RETRY_JITTER_MS"), 1000.0),
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
