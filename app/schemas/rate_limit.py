"""Pydantic schemas for rate limiting and authentication responses."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class PresetStatus(BaseModel):
    """Caller's standing on a single preset limiter."""

    preset: str = Field(..., description="Preset name (default, auth, sensitive, api).")
    limit: int = Field(..., ge=1, description="Admissions allowed per window.")
    remaining: int = Field(
        ..., ge=0, description="Admissions left in the current window (0 while blocked)."
    )
    blocked: bool = Field(..., description="Whether the caller is currently blocked.")
    blocked_until: datetime | None = Field(
        default=None,
        description="UTC time the block ends; null when not blocked.",
    )


class RateLimitStatusResponse(BaseModel):
    """Rate limit standing of the calling client across all presets."""

    presets: list[PresetStatus] = Field(default_factory=list)


class LimiterStats(BaseModel):
    """Table metrics for one limiter, without exposing keys."""

    entries: int = Field(..., ge=0)
    blocked: int = Field(..., ge=0)
    max_attempts: int = Field(..., ge=1)
    window_seconds: float
    block_seconds: float
    stopped: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    rate_limiters: dict[str, LimiterStats] = Field(
        default_factory=dict,
        description="Stats for limiters created since startup, keyed by preset.",
    )


class AuthVerifyResponse(BaseModel):
    """Result of a successful API key verification."""

    authenticated: bool = True
    remaining_attempts: int = Field(
        ..., ge=0, description="Auth attempts left for this client in the current window."
    )
