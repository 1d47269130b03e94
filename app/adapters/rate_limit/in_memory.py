"""In-memory blocking rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: one lock guards the whole table; every operation holds it for
  its entire per-key computation.
- Self-cleaning: a daemon thread evicts records idle longer than
  ``window_seconds + block_seconds``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from app.adapters.rate_limit.base import AbstractRateLimiter, RateLimiterStats
from app.adapters.rate_limit.config import RateLimiterConfig
from app.core.logging import hash_identifier

logger = logging.getLogger(__name__)


@dataclass
class _KeyRecord:
    attempts: int
    window_start: float
    blocked: bool = False
    blocked_at: float = 0.0


class InMemoryRateLimiter(AbstractRateLimiter):
    """Per-key attempt counter with automatic blocking and recovery.

    Each key accumulates attempts inside a window that starts at its first
    attempt. Exceeding ``max_attempts`` blocks the key for ``block_seconds``;
    the first request after the block expires starts a fresh window.

    Important:
        This limiter is per-process only. If the API runs with multiple workers
        (e.g., multiple Uvicorn/Gunicorn workers), each worker will enforce its
        own independent limits.
    """

    def __init__(
        self,
        config: RateLimiterConfig,
        *,
        clock: Callable[[], float] = time.time,
        name: str = "default",
    ) -> None:
        """Initialize the limiter and start its cleanup thread.

        Args:
            config: Validated limiter parameters.
            clock: Time source function returning UNIX time in seconds.
            name: Label used in logs and thread names.
        """
        self._config = config
        self._clock = clock
        self._name = name
        self._lock = threading.RLock()
        self._records: dict[str, _KeyRecord] = {}

        self._stop_lock = threading.Lock()
        self._stopped = False
        self._stop_event = threading.Event()
        self._cleanup_thread = threading.Thread(
            target=self._cleanup_loop,
            name=f"rate-limit-cleanup-{name}",
            daemon=True,
        )
        self._cleanup_thread.start()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemoryRateLimiter(name={self._name!r}, "
            f"max_attempts={self._config.max_attempts}, "
            f"window_seconds={self._config.window_seconds}, "
            f"block_seconds={self._config.block_seconds}, "
            f"entries={len(self._records)})"
        )

    def __enter__(self) -> InMemoryRateLimiter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    @property
    def config(self) -> RateLimiterConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._name

    def now(self) -> float:
        """Current time on the limiter's clock."""
        return self._clock()

    def allow(self, key: str) -> bool:
        """Admit or deny one request for ``key``.

        The four cases (new key, blocked key, rolled-over window, counting)
        are evaluated in one critical section so concurrent callers for the
        same key are strictly serialized.

        Args:
            key: Caller identifier (e.g., client IP address).

        Returns:
            True when the request may proceed.
        """
        event: str | None = None

        with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is None:
                self._records[key] = _KeyRecord(attempts=1, window_start=now)
                return True

            if record.blocked:
                if not self._block_expired(record, now):
                    return False
                self._restart(record, now)
                allowed = True
                event = "unblocked"
            elif self._window_expired(record, now):
                self._restart(record, now)
                allowed = True
            else:
                allowed = not self._count_attempt(record, now)
                if not allowed:
                    event = "blocked"

            attempts = record.attempts

        self._log_transition(event, key, attempts)
        return allowed

    def record_failure(self, key: str) -> None:
        """Count a failed attempt for ``key``.

        Uses the same threshold as ``allow`` but never admits or denies by
        itself. A key inside an active block is left as is so repeated
        failures do not extend the block.

        Args:
            key: Caller identifier to penalise.
        """
        event: str | None = None

        with self._lock:
            now = self._clock()
            record = self._records.get(key)

            if record is None:
                self._records[key] = _KeyRecord(attempts=1, window_start=now)
                return

            if record.blocked and not self._block_expired(record, now):
                return

            if self._is_stale(record, now):
                if record.blocked:
                    event = "unblocked"
                self._restart(record, now)
            elif self._count_attempt(record, now):
                event = "blocked"

            attempts = record.attempts

        self._log_transition(event, key, attempts)

    def reset(self, key: str) -> None:
        """Delete the record for ``key`` regardless of window or block state."""
        with self._lock:
            self._records.pop(key, None)

    def get_remaining_attempts(self, key: str) -> int:
        """Return admissions left for ``key`` in ``[0, max_attempts]``.

        Records whose window rolled over or whose block expired read as
        fresh; the table itself is not modified.
        """
        with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is None or self._is_stale(record, now):
                return self._config.max_attempts
            if record.blocked:
                return 0
            return max(0, self._config.max_attempts - record.attempts)

    def get_blocked_until(self, key: str) -> float:
        """Return the UNIX time the block on ``key`` ends, or 0.0 if not blocked."""
        with self._lock:
            now = self._clock()
            record = self._records.get(key)
            if record is None or not record.blocked or self._block_expired(record, now):
                return 0.0
            return record.blocked_at + self._config.block_seconds

    def purge_expired(self) -> int:
        """Evict records idle longer than ``window_seconds + block_seconds``.

        Returns:
            Number of evicted records.
        """
        with self._lock:
            now = self._clock()
            retention = self._config.retention_seconds
            expired_keys = [
                key
                for key, record in self._records.items()
                if now - record.window_start > retention
            ]
            for key in expired_keys:
                del self._records[key]
            remaining = len(self._records)

        if expired_keys:
            logger.debug(
                "rate_limit.cleanup",
                extra={
                    "limiter": self._name,
                    "evicted": len(expired_keys),
                    "entries": remaining,
                },
            )
        return len(expired_keys)

    def stats(self) -> RateLimiterStats:
        with self._lock:
            now = self._clock()
            blocked = sum(
                1
                for record in self._records.values()
                if record.blocked and not self._block_expired(record, now)
            )
            entries = len(self._records)

        return RateLimiterStats(
            entries=entries,
            blocked=blocked,
            max_attempts=self._config.max_attempts,
            window_seconds=self._config.window_seconds,
            block_seconds=self._config.block_seconds,
            stopped=self._stop_event.is_set(),
        )

    def stop(self) -> None:
        """Stop the cleanup thread. Further calls are ignored."""
        with self._stop_lock:
            if self._stopped:
                logger.debug("rate_limit.stop_ignored", extra={"limiter": self._name})
                return
            self._stopped = True

        self._stop_event.set()
        if self._cleanup_thread is not threading.current_thread():
            self._cleanup_thread.join()

        logger.info("rate_limit.stopped", extra={"limiter": self._name})

    def _cleanup_loop(self) -> None:
        while not self._stop_event.wait(self._config.cleanup_interval_seconds):
            try:
                self.purge_expired()
            except Exception:
                logger.exception("rate_limit.cleanup_failed", extra={"limiter": self._name})

    # The helpers below must be called with self._lock held.

    def _block_expired(self, record: _KeyRecord, now: float) -> bool:
        return now - record.blocked_at > self._config.block_seconds

    def _window_expired(self, record: _KeyRecord, now: float) -> bool:
        return now - record.window_start > self._config.window_seconds

    def _is_stale(self, record: _KeyRecord, now: float) -> bool:
        if record.blocked:
            return self._block_expired(record, now)
        return self._window_expired(record, now)

    @staticmethod
    def _restart(record: _KeyRecord, now: float) -> None:
        record.attempts = 1
        record.window_start = now
        record.blocked = False
        record.blocked_at = 0.0

    def _count_attempt(self, record: _KeyRecord, now: float) -> bool:
        """Increment attempts; return True if this attempt triggered a block."""
        record.attempts += 1
        if record.attempts > self._config.max_attempts:
            record.blocked = True
            record.blocked_at = now
            return True
        return False

    def _log_transition(self, event: str | None, key: str, attempts: int) -> None:
        if event == "blocked":
            logger.warning(
                "rate_limit.blocked",
                extra={
                    "limiter": self._name,
                    "key_hash": hash_identifier(key),
                    "attempts": attempts,
                    "max_attempts": self._config.max_attempts,
                    "block_s": self._config.block_seconds,
                },
            )
        elif event == "unblocked":
            logger.info(
                "rate_limit.unblocked",
                extra={"limiter": self._name, "key_hash": hash_identifier(key)},
            )
