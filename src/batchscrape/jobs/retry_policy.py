# src/batchscrape/jobs/retry_policy.py

from __future__ import annotations

import random
from collections.abc import Callable
from dataclasses import dataclass, field

DEFAULT_BASE_MS = 1000.0
DEFAULT_JITTER_MS = 1000.0


def retry_delay_ms(
    attempt: int,
    base_ms: float = DEFAULT_BASE_MS,
    *,
    jitter_ms: float = DEFAULT_JITTER_MS,
    uniform: Callable[[float, float], float] = random.uniform,
) -> float:
    """
    Exponential backoff with additive jitter:

        base_ms * 2**attempt + uniform(0, jitter_ms)

    The lower bound base_ms * 2**attempt grows strictly with attempt (for base_ms > 0).
    """
    if attempt < 0:
        raise ValueError("attempt must be >= 0")
    if base_ms < 0 or jitter_ms < 0:
        raise ValueError("base_ms and jitter_ms must be >= 0")

    exp = float(base_ms) * (2 ** int(attempt))
    jitter = uniform(0.0, float(jitter_ms)) if jitter_ms > 0 else 0.0
    # random.uniform may return the upper endpoint; keep the bound half-open.
    if jitter_ms > 0 and jitter >= jitter_ms:
        jitter = jitter_ms - 1e-9
    return exp + jitter


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Backoff used by the job runner between failed attempts of one URL."""

    base_ms: float = DEFAULT_BASE_MS
    jitter_ms: float = DEFAULT_JITTER_MS
    uniform: Callable[[float, float], float] = field(default=random.uniform, compare=False)

    def delay_ms(self, attempt: int) -> float:
        return retry_delay_ms(attempt, self.base_ms, jitter_ms=self.jitter_ms, uniform=self.uniform)

    def delay_seconds(self, attempt: int) -> float:
        return self.delay_ms(attempt) / 1000.0
