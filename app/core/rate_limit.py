"""Rate limiting dependency for FastAPI routes.

This module wires the rate limiting adapter into the HTTP layer.

Design goals:
- Minimal coupling: routes depend on ``require_rate_limit(preset)`` only.
- One limiter per preset: endpoint classes (auth, sensitive, api) never
  share counters.
- Swap-friendly: storage backend can be replaced behind an abstract interface.

Key strategy:
- Client network address of the peer.
- First ``X-Forwarded-For`` hop when running behind a trusted proxy.
"""

from __future__ import annotations

import logging
import math
import threading
from datetime import datetime, timezone
from typing import Awaitable, Callable

from fastapi import Request

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.adapters.rate_limit.config import get_preset
from app.adapters.rate_limit.in_memory import InMemoryRateLimiter
from app.core.config import settings
from app.core.errors import ErrorDetails, RateLimitAppError
from app.core.logging import hash_identifier

logger = logging.getLogger(__name__)

FORWARDED_FOR_HEADER = "X-Forwarded-For"
UNKNOWN_CLIENT = "unknown"

_limiters: dict[str, AbstractRateLimiter] = {}
_limiters_lock = threading.Lock()


def get_rate_limiter(preset: str) -> AbstractRateLimiter:
    """Return the process-wide limiter for ``preset``, creating it on first use.

    Args:
        preset: Preset name (``default``, ``auth``, ``sensitive``, ``api``).

    Returns:
        AbstractRateLimiter: Limiter instance dedicated to that preset.

    Raises:
        ValueError: If the preset is unknown.
    """

    with _limiters_lock:
        limiter = _limiters.get(preset)
        if limiter is None:
            limiter = InMemoryRateLimiter(get_preset(preset), name=preset)
            _limiters[preset] = limiter
            logger.info(
                "rate_limit.limiter_created",
                extra={
                    "limiter": preset,
                    "max_attempts": limiter.config.max_attempts,
                    "window_s": limiter.config.window_seconds,
                    "block_s": limiter.config.block_seconds,
                },
            )
        return limiter


def active_rate_limiters() -> dict[str, AbstractRateLimiter]:
    """Snapshot of limiters created so far, keyed by preset."""

    with _limiters_lock:
        return dict(_limiters)


def shutdown_rate_limiters() -> None:
    """Stop every registered limiter and forget them."""

    with _limiters_lock:
        limiters = list(_limiters.values())
        _limiters.clear()

    for limiter in limiters:
        limiter.stop()


def client_key(request: Request) -> str:
    """Build the limiter key for the current request.

    Args:
        request: FastAPI request.

    Returns:
        str: Client address, or ``"unknown"`` when none can be determined.
    """

    forwarded_for = request.headers.get(FORWARDED_FOR_HEADER, "")
    first_hop = forwarded_for.split(",")[0].strip()

    if settings.rate_limit.trust_forwarded_for and first_hop:
        return first_hop

    if request.client and request.client.host:
        return request.client.host

    return first_hop or UNKNOWN_CLIENT


def build_rate_limit_error(
    limiter: AbstractRateLimiter, key: str, *, preset: str
) -> RateLimitAppError:
    """Describe a denial for ``key``, including when the caller may retry.

    Without an active block (reset or expired since the denial) only
    ``retry_after=0`` is reported.
    """

    details: ErrorDetails = {
        "preset": preset,
        "limit": limiter.config.max_attempts,
        "retry_after": 0,
    }

    blocked_until = limiter.get_blocked_until(key)
    if blocked_until:
        details["retry_after"] = max(0, math.ceil(blocked_until - limiter.now()))
        details["blocked_until"] = datetime.fromtimestamp(blocked_until, tz=timezone.utc).isoformat()
        details["reset_at"] = int(math.ceil(blocked_until))

    return RateLimitAppError(
        code="rate_limit_exceeded",
        message="Too many requests. Please try again later.",
        details=details,
    )


def require_rate_limit(preset: str) -> Callable[[Request], Awaitable[None]]:
    """Create a FastAPI dependency enforcing the ``preset`` limiter.

    Usage:
        @router.post("/login", dependencies=[Depends(require_rate_limit("auth"))])

    Args:
        preset: Preset name; validated eagerly so typos fail at import time.

    Returns:
        Async dependency that raises RateLimitAppError (HTTP 429) on denial.
    """

    get_preset(preset)

    async def enforce_rate_limit(request: Request) -> None:
        if not settings.rate_limit.enabled:
            return

        limiter = get_rate_limiter(preset)
        key = client_key(request)

        if limiter.allow(key):
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "limiter": preset,
                    "key_hash": hash_identifier(key),
                    "remaining": limiter.get_remaining_attempts(key),
                },
            )
            return

        error = build_rate_limit_error(limiter, key, preset=preset)
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "limiter": preset,
                "key_hash": hash_identifier(key),
                "limit": limiter.config.max_attempts,
                "retry_after_s": (error.details or {}).get("retry_after"),
                "path": request.url.path,
            },
        )
        raise error

    return enforce_rate_limit
