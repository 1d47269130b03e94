from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from app.core.rate_limit import active_rate_limiters
from app.schemas.rate_limit import HealthResponse, LimiterStats

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Health check endpoint.

    Reports liveness plus table sizes of the limiters created so far, which
    is the only unbounded-looking state the process keeps.
    """

    return HealthResponse(
        status="ok",
        rate_limiters={
            preset: LimiterStats(**asdict(limiter.stats()))
            for preset, limiter in active_rate_limiters().items()
        },
    )
