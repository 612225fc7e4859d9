# tests/test_retry_policy.py

from __future__ import annotations

import pytest

from batchscrape.jobs.retry_policy import RetryPolicy, retry_delay_ms


def _low(a: float, b: float) -> float:
    return a


def _high(a: float, b: float) -> float:
    return b


@pytest.mark.parametrize("attempt", [0, 1, 2, 5])
def test_delay_is_within_exponential_window(attempt: int) -> None:
    lower = 1000.0 * 2**attempt
    upper = lower + 1000.0

    assert retry_delay_ms(attempt, uniform=_low) == lower
    high = retry_delay_ms(attempt, uniform=_high)
    assert lower <= high < upper


def test_lower_bound_grows_with_attempt() -> None:
    lows = [retry_delay_ms(a, 250.0, jitter_ms=100.0, uniform=_low) for a in range(6)]
    assert lows == sorted(lows)
    assert len(set(lows)) == len(lows)


def test_real_jitter_stays_in_bounds() -> None:
    for attempt in range(4):
        for _ in range(50):
            d = retry_delay_ms(attempt)
            assert 1000.0 * 2**attempt <= d < 1000.0 * 2**attempt + 1000.0


def test_zero_jitter_is_deterministic() -> None:
    assert retry_delay_ms(3, 10.0, jitter_ms=0.0) == 80.0
    assert retry_delay_ms(0, 0.0, jitter_ms=0.0) == 0.0


def test_negative_inputs_raise() -> None:
    with pytest.raises(ValueError):
        retry_delay_ms(-1)
    with pytest.raises(ValueError):
        retry_delay_ms(0, -5.0)
    with pytest.raises(ValueError):
        retry_delay_ms(0, jitter_ms=-1.0)


def test_policy_converts_to_seconds() -> None:
    policy = RetryPolicy(base_ms=500.0, jitter_ms=200.0, uniform=_low)
    assert policy.delay_ms(1) == 1000.0
    assert policy.delay_seconds(2) == pytest.approx(2.0)
