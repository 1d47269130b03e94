"""API key authentication with brute-force protection.

Keys are validated against a comma-separated list from environment variables.
Failed attempts are charged to the caller on the ``auth`` rate limiter, so
guessing keys eventually blocks the caller on every key-protected route.

Calling convention with the limiter:
- ``allow`` gates admission (via ``require_rate_limit``)
- ``record_failure`` penalises a wrong key on an already admitted request
- ``reset`` clears the caller after a successful verification
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings
from app.core.errors import AuthenticationAppError
from app.core.logging import hash_identifier
from app.core.rate_limit import build_rate_limit_error, client_key, get_rate_limiter

logger = logging.getLogger(__name__)

AUTH_PRESET = "auth"


def parse_api_keys(keys_string: str | None) -> set[str]:
    """Parse comma-separated API keys into a set.

    Examples:
        >>> parse_api_keys("key1, key2 , key3 ") == {"key1", "key2", "key3"}
        True
        >>> parse_api_keys(None)
        set()
    """
    if not keys_string:
        return set()

    return {key.strip() for key in keys_string.split(",") if key.strip()}


def validate_api_key(provided_key: str) -> None:
    """Validate that provided API key matches configured keys.

    Pure validation logic without FastAPI or limiter dependencies.

    Args:
        provided_key: API key to validate.

    Raises:
        AuthenticationAppError: If key is invalid or authentication is required but no keys configured.
    """
    if not settings.app.api_key_required:
        return

    valid_keys = parse_api_keys(settings.app.api_keys)

    if not valid_keys:
        logger.error(
            "api_key_validation_failed",
            extra={"reason": "api_keys_not_configured"},
        )
        raise AuthenticationAppError(
            code="api_keys_not_configured",
            message="API key authentication is enabled but no valid keys are configured",
            details={"hint": "Set APP_API_KEYS or disable auth with APP_API_KEY_REQUIRED=false"},
        )

    if provided_key not in valid_keys:
        logger.warning(
            "api_key_validation_failed",
            extra={
                "reason": "invalid_api_key",
                "api_key_hash": hash_identifier(provided_key),
            },
        )
        raise AuthenticationAppError(
            code="invalid_api_key",
            message="Invalid or missing API key",
            details={"provided_key_length": len(provided_key) if provided_key else 0},
        )


def authenticate_caller(key: str, provided_key: str | None) -> None:
    """Validate ``provided_key`` and settle the caller's auth limiter state.

    A wrong or missing key is recorded as a failure against ``key``; a valid
    key clears the caller's accumulated failures.

    Args:
        key: Limiter key of the caller (client address).
        provided_key: API key supplied by the caller, if any.

    Raises:
        AuthenticationAppError: If the key is missing or invalid.
    """
    limiter = get_rate_limiter(AUTH_PRESET)

    try:
        validate_api_key(provided_key or "")
    except AuthenticationAppError as exc:
        if settings.rate_limit.enabled and exc.code == "invalid_api_key":
            limiter.record_failure(key)
            logger.warning(
                "auth.failure",
                extra={
                    "key_hash": hash_identifier(key),
                    "remaining": limiter.get_remaining_attempts(key),
                },
            )
        raise

    limiter.reset(key)
    logger.info("auth.success", extra={"key_hash": hash_identifier(key)})


async def verify_api_key(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """FastAPI dependency for API key authentication.

    Rejects callers currently blocked on the ``auth`` limiter before looking
    at the key, and penalises wrong keys. Can be disabled by setting
    APP_API_KEY_REQUIRED=false.

    Usage:
        @router.get("/protected", dependencies=[Depends(verify_api_key)])

    Raises:
        RateLimitAppError: 429 while the caller is blocked.
        HTTPException: 403 Forbidden if authentication fails.
    """
    if not settings.app.api_key_required:
        logger.debug("auth.skipped", extra={"reason": "auth_required_false"})
        return

    key = client_key(request)
    limiter = get_rate_limiter(AUTH_PRESET)

    if settings.rate_limit.enabled and limiter.get_blocked_until(key):
        raise build_rate_limit_error(limiter, key, preset=AUTH_PRESET)

    if not x_api_key:
        if settings.rate_limit.enabled:
            limiter.record_failure(key)
        logger.warning(
            "auth.missing_key",
            extra={"key_hash": hash_identifier(key), "api_key_present": False},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing API key. Provide X-API-Key header.",
        )

    try:
        validate_api_key(x_api_key)
    except AuthenticationAppError as exc:
        if settings.rate_limit.enabled and exc.code == "invalid_api_key":
            limiter.record_failure(key)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=exc.message,
        ) from exc
