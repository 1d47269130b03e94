"""Rate limiter configuration and named presets.

Presets are plain constructor functions so every endpoint class can own an
independently configured limiter instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Mapping


@dataclass(frozen=True)
class RateLimiterConfig:
    """Immutable limiter parameters.

    Attributes:
        max_attempts: Admissions allowed per window before the key is blocked.
        window_seconds: Period during which attempts accumulate.
        block_seconds: How long a key stays blocked after exceeding the limit.
        cleanup_interval_seconds: Cadence of the background sweep.
    """

    max_attempts: int
    window_seconds: float
    block_seconds: float
    cleanup_interval_seconds: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if self.block_seconds <= 0:
            raise ValueError("block_seconds must be > 0")
        if self.cleanup_interval_seconds <= 0:
            raise ValueError("cleanup_interval_seconds must be > 0")

    @property
    def retention_seconds(self) -> float:
        """Idle time after which the sweep evicts a record."""
        return self.window_seconds + self.block_seconds


def default_config() -> RateLimiterConfig:
    """Generic fallback: 5 attempts per 15 minutes, 30 minute block."""
    return RateLimiterConfig(
        max_attempts=5,
        window_seconds=15 * 60,
        block_seconds=30 * 60,
        cleanup_interval_seconds=5 * 60,
    )


def auth_config() -> RateLimiterConfig:
    """Login/registration endpoints.

    Loose enough to absorb onboarding bursts from a shared address.
    """
    return RateLimiterConfig(
        max_attempts=20,
        window_seconds=5 * 60,
        block_seconds=5 * 60,
        cleanup_interval_seconds=60,
    )


def sensitive_operation_config() -> RateLimiterConfig:
    """Password, wallet and payout-setting changes."""
    return RateLimiterConfig(
        max_attempts=10,
        window_seconds=10 * 60,
        block_seconds=15 * 60,
        cleanup_interval_seconds=2 * 60,
    )


def api_config() -> RateLimiterConfig:
    """High-volume public endpoints."""
    return RateLimiterConfig(
        max_attempts=100,
        window_seconds=60,
        block_seconds=60,
        cleanup_interval_seconds=30,
    )


PRESETS: Mapping[str, Callable[[], RateLimiterConfig]] = {
    "default": default_config,
    "auth": auth_config,
    "sensitive": sensitive_operation_config,
    "api": api_config,
}


def get_preset(name: str) -> RateLimiterConfig:
    """Build the configuration registered under ``name``.

    Raises:
        ValueError: If no preset with that name exists.
    """
    try:
        factory = PRESETS[name]
    except KeyError:
        raise ValueError(
            f"unknown rate limit preset {name!r}; expected one of {sorted(PRESETS)}"
        ) from None
    return factory()
