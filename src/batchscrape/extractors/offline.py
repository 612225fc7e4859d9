# src/batchscrape/extractors/offline.py

from __future__ import annotations

import asyncio
import logging

from ..jobs.job_models import RenderingMode, ScrapeConfig, ScrapeResult

logger = logging.getLogger(__name__)


class OfflineExtractor:
    """
    Offline deterministic extractor used when no rendering engine is wired in.

    Behavior:
    - never opens the URL
    - returns a result with the configured column order and no rows
    """

    def __init__(self, latency_seconds: float = 0.0) -> None:
        self._latency = max(0.0, float(latency_seconds))
        self._warned = False

    async def extract(
        self,
        url: str,
        config: ScrapeConfig,
        rendering_mode: RenderingMode,
    ) -> ScrapeResult:
        if not self._warned:
            logger.warning("Offline mode: no rendering engine configured, pages are not opened.")
            self._warned = True
        if self._latency:
            await asyncio.sleep(self._latency)
        logger.debug("Offline extract url=%s mode=%s", url, rendering_mode)
        return ScrapeResult(rows=[], column_order=[c.name for c in config.columns])
