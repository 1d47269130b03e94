"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
Environment defaults are set here, before anything imports app settings.
"""

import os

# CRITICAL: Set these before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("APP_API_KEY_REQUIRED", "true")
os.environ.setdefault("APP_API_KEYS", "test-api-key-123,test-api-key-456")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_TRUST_FORWARDED_FOR", "false")

from typing import Callable, Iterator

import pytest

from app.adapters.rate_limit.config import RateLimiterConfig
from app.adapters.rate_limit.in_memory import InMemoryRateLimiter
from app.core import rate_limit as rate_limit_module


class FakeClock:
    """Deterministic clock used to drive window and block expiry."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_limiter(clock: FakeClock) -> Iterator[Callable[..., InMemoryRateLimiter]]:
    """Build limiters on the fake clock and stop them after the test."""

    created: list[InMemoryRateLimiter] = []

    def _make(
        max_attempts: int = 3,
        window_seconds: float = 15 * 60,
        block_seconds: float = 30 * 60,
        cleanup_interval_seconds: float = 5 * 60,
    ) -> InMemoryRateLimiter:
        limiter = InMemoryRateLimiter(
            RateLimiterConfig(
                max_attempts=max_attempts,
                window_seconds=window_seconds,
                block_seconds=block_seconds,
                cleanup_interval_seconds=cleanup_interval_seconds,
            ),
            clock=clock,
        )
        created.append(limiter)
        return limiter

    yield _make

    for limiter in created:
        limiter.stop()


@pytest.fixture
def install_limiter() -> Callable[..., InMemoryRateLimiter]:
    """Register a limiter with custom thresholds under a preset name.

    Uses the real clock so HTTP-level retry hints stay meaningful. The
    registry is cleared by ``_reset_rate_limiters`` after each test.
    """

    def _install(
        preset: str,
        *,
        max_attempts: int,
        window_seconds: float = 15 * 60,
        block_seconds: float = 30 * 60,
    ) -> InMemoryRateLimiter:
        limiter = InMemoryRateLimiter(
            RateLimiterConfig(
                max_attempts=max_attempts,
                window_seconds=window_seconds,
                block_seconds=block_seconds,
                cleanup_interval_seconds=5 * 60,
            ),
            name=preset,
        )
        with rate_limit_module._limiters_lock:
            previous = rate_limit_module._limiters.get(preset)
            rate_limit_module._limiters[preset] = limiter
        if previous is not None:
            previous.stop()
        return limiter

    return _install


@pytest.fixture(autouse=True)
def _reset_rate_limiters() -> Iterator[None]:
    """Give every test a fresh limiter registry."""

    rate_limit_module.shutdown_rate_limiters()
    yield
    rate_limit_module.shutdown_rate_limiters()
