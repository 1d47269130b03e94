from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response, status

from app.adapters.rate_limit.base import AbstractRateLimiter
from app.adapters.rate_limit.config import PRESETS, get_preset
from app.core.auth import verify_api_key
from app.core.errors import NotFoundAppError
from app.core.logging import hash_identifier
from app.core.rate_limit import (
    active_rate_limiters,
    client_key,
    get_rate_limiter,
    require_rate_limit,
)
from app.schemas.rate_limit import PresetStatus, RateLimitStatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rate-limit", tags=["Rate Limit"])


def _preset_status(preset: str, limiter: AbstractRateLimiter | None, key: str) -> PresetStatus:
    if limiter is None:
        # No limiter yet means nothing was ever counted for this preset
        max_attempts = get_preset(preset).max_attempts
        return PresetStatus(preset=preset, limit=max_attempts, remaining=max_attempts, blocked=False)

    blocked_until = limiter.get_blocked_until(key)
    return PresetStatus(
        preset=preset,
        limit=limiter.config.max_attempts,
        remaining=limiter.get_remaining_attempts(key),
        blocked=blocked_until > 0,
        blocked_until=(
            datetime.fromtimestamp(blocked_until, tz=timezone.utc) if blocked_until else None
        ),
    )


@router.get(
    "/status",
    response_model=RateLimitStatusResponse,
    dependencies=[Depends(verify_api_key), Depends(require_rate_limit("api"))],
)
async def rate_limit_status(request: Request) -> RateLimitStatusResponse:
    """Report the calling client's standing on every preset limiter."""
    key = client_key(request)
    limiters = active_rate_limiters()
    return RateLimitStatusResponse(
        presets=[_preset_status(name, limiters.get(name), key) for name in PRESETS]
    )


@router.delete(
    "/{preset}/keys/{key}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(verify_api_key), Depends(require_rate_limit("sensitive"))],
)
async def reset_rate_limit_key(preset: str, key: str) -> Response:
    """Clear a client's counters and block on one preset (admin unblock).

    Raises:
        NotFoundAppError: 404 when the preset does not exist.
    """
    if preset not in PRESETS:
        raise NotFoundAppError(
            code="unknown_preset",
            message=f"Unknown rate limit preset '{preset}'",
            details={"hint": f"Use one of: {', '.join(sorted(PRESETS))}"},
        )

    get_rate_limiter(preset).reset(key)
    logger.info(
        "rate_limit.key_reset",
        extra={"limiter": preset, "key_hash": hash_identifier(key)},
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
