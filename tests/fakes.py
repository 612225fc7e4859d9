# tests/fakes.py

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

from batchscrape.errors import ExtractionError
from batchscrape.jobs.job_models import RenderingMode, ScrapeConfig, ScrapedRow, ScrapeResult


@dataclass(slots=True)
class ExtractCall:
    url: str
    rendering_mode: RenderingMode
    started_at: float


class FakeExtractor:
    """
    Scriptable PageExtractor for runner tests.

    - failures[url] = n: the first n attempts for url raise
    - always_fail: urls that never succeed
    - gate(url): extraction of url blocks until the returned event is set
    - on_extract: hook called with the url while the extraction is in flight
    - tracks how many extractions run at once
    """

    def __init__(
        self,
        *,
        rows_per_url: int = 2,
        failures: dict[str, int] | None = None,
        always_fail: set[str] | None = None,
        latency: float = 0.0,
    ) -> None:
        self.rows_per_url = rows_per_url
        self.failures = dict(failures or {})
        self.always_fail = set(always_fail or ())
        self.latency = latency
        self.on_extract: Callable[[str], None] | None = None

        self.calls: list[ExtractCall] = []
        self.active = 0
        self.max_active = 0
        self._gates: dict[str, asyncio.Event] = {}
        self._started: defaultdict[str, asyncio.Event] = defaultdict(asyncio.Event)

    def gate(self, url: str) -> asyncio.Event:
        ev = asyncio.Event()
        self._gates[url] = ev
        return ev

    async def wait_started(self, url: str, timeout: float = 2.0) -> None:
        await asyncio.wait_for(self._started[url].wait(), timeout=timeout)

    def call_count(self, url: str) -> int:
        return sum(1 for c in self.calls if c.url == url)

    async def extract(
        self,
        url: str,
        config: ScrapeConfig,
        rendering_mode: RenderingMode,
    ) -> ScrapeResult:
        self.calls.append(
            ExtractCall(url=url, rendering_mode=rendering_mode, started_at=asyncio.get_running_loop().time())
        )
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        self._started[url].set()
        try:
            gate = self._gates.get(url)
            if gate is not None:
                await gate.wait()
            else:
                await asyncio.sleep(self.latency)

            if self.on_extract is not None:
                self.on_extract(url)

            if url in self.always_fail:
                raise ExtractionError(f"navigation failed: {url}")
            if self.failures.get(url, 0) > 0:
                self.failures[url] -= 1
                raise ExtractionError(f"timeout waiting for selector on {url}")

            rows = [
                ScrapedRow(data={c.name: f"{url}#{i}" for c in config.columns}, original_index=i)
                for i in range(self.rows_per_url)
            ]
            return ScrapeResult(rows=rows, column_order=[c.name for c in config.columns])
        finally:
            self.active -= 1
