"""Rate limiting adapters.

This package keeps the limiter behind a small abstraction so the service can
start with a per-process in-memory table and later move to a shared store
without changing the API layer.
"""

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimiterStats
from app.adapters.rate_limit.config import PRESETS, RateLimiterConfig, get_preset
from app.adapters.rate_limit.in_memory import InMemoryRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "InMemoryRateLimiter",
    "PRESETS",
    "RateLimiterConfig",
    "RateLimiterStats",
    "get_preset",
]
