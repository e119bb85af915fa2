import asyncio

import pytest

from adaptive_research.config.settings import RateLimitingConfig
from adaptive_research.utils.rate_limiter import (
    RateLimiter,
    calculate_backoff,
    extract_retry_delay,
)


@pytest.mark.parametrize(
    "message, expected",
    [
        ("429 RESOURCE_EXHAUSTED {'retryDelay': '38s'}", 38.0),
        ("{'retryDelay': '927.5ms'}", 0.9275),
        ("Quota exceeded. Please retry in 12.5s.", 12.5),
        ("HTTP 503\nRetry-After: 7", 7.0),
        ("connection reset by peer", None),
    ],
)
def test_extract_retry_delay(message, expected):
    assert extract_retry_delay(message) == (pytest.approx(expected) if expected else None)


def test_backoff_doubles_and_caps():
    assert calculate_backoff(0, base_delay=1.0, jitter=False) == 1.0
    assert calculate_backoff(3, base_delay=1.0, jitter=False) == 8.0
    assert calculate_backoff(10, base_delay=1.0, max_delay=5.0, jitter=False) == 5.0


def test_backoff_jitter_stays_within_half():
    for attempt in range(5):
        delay = calculate_backoff(attempt, base_delay=1.0, max_delay=60.0)
        assert 2**attempt <= delay <= 1.5 * 2**attempt


def test_limiter_does_not_wait_under_the_limit():
    limiter = RateLimiter(requests_per_minute=5)

    async def scenario():
        return [await limiter.acquire() for _ in range(5)]

    waits = asyncio.run(scenario())

    assert waits == [0.0] * 5
    stats = limiter.get_stats()
    assert stats["total_requests"] == 5
    assert stats["current_minute_requests"] == 5
    assert stats["total_waits"] == 0


def test_limiter_computes_a_wait_once_the_window_is_full():
    limiter = RateLimiter(requests_per_minute=2)
    limiter._record(0.0)
    limiter._record(0.0)

    assert 0.0 < limiter._calculate_wait_time() <= 60.0


def test_reset_clears_the_window():
    limiter = RateLimiter(requests_per_minute=1)
    limiter._record(0.0)
    limiter.reset()

    assert limiter.total_requests == 0
    assert limiter._calculate_wait_time() == 0.0


def test_from_config():
    limiter = RateLimiter.from_config(RateLimitingConfig(enabled=True, requests_per_minute=30))

    assert limiter.requests_per_minute == 30
    assert limiter.get_stats()["requests_per_minute_limit"] == 30


def test_invalid_rate_is_rejected():
    with pytest.raises(ValueError):
        RateLimiter(requests_per_minute=0)
