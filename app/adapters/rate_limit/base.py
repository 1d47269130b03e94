"""Rate limiter interfaces.

The HTTP layer depends on this abstraction (not the concrete implementation)
so the in-memory table can later be swapped for a shared store (e.g., Redis)
without touching routes or dependencies.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.adapters.rate_limit.config import RateLimiterConfig


@dataclass(frozen=True)
class RateLimiterStats:
    """Point-in-time view of a limiter's table.

    Attributes:
        entries: Number of tracked keys.
        blocked: Keys currently inside an active block.
        max_attempts: Configured admissions per window.
        window_seconds: Configured window size.
        block_seconds: Configured block duration.
        stopped: Whether the background sweep has been stopped.
    """

    entries: int
    blocked: int
    max_attempts: int
    window_seconds: float
    block_seconds: float
    stopped: bool


class AbstractRateLimiter(ABC):
    """Interface for blocking rate limiters.

    Calling convention: ``allow`` gates request admission, while
    ``record_failure`` penalises a key after an out-of-band failure (e.g., a
    wrong credential) on a request that was already admitted.
    """

    @property
    @abstractmethod
    def config(self) -> RateLimiterConfig:
        """Configuration the limiter was built with."""
        raise NotImplementedError

    @abstractmethod
    def now(self) -> float:
        """Current UNIX time as seen by the limiter (its injected clock)."""
        raise NotImplementedError

    @abstractmethod
    def allow(self, key: str) -> bool:
        """Admit or deny one request for ``key``.

        Args:
            key: Caller identifier (e.g., client IP address).

        Returns:
            True when the request may proceed.
        """
        raise NotImplementedError

    @abstractmethod
    def record_failure(self, key: str) -> None:
        """Count a failed attempt for ``key`` without making an admission decision."""
        raise NotImplementedError

    @abstractmethod
    def reset(self, key: str) -> None:
        """Forget all accumulated state for ``key``."""
        raise NotImplementedError

    @abstractmethod
    def get_remaining_attempts(self, key: str) -> int:
        """Return admissions left in the current window (0 while blocked)."""
        raise NotImplementedError

    @abstractmethod
    def get_blocked_until(self, key: str) -> float:
        """Return the UNIX time the block ends, or 0.0 when not blocked."""
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> RateLimiterStats:
        """Return lightweight table metrics without exposing keys."""
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        """Release background resources. Safe to call more than once."""
        raise NotImplementedError
