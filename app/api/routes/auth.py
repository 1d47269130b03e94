from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Request

from app.core.auth import AUTH_PRESET, authenticate_caller
from app.core.rate_limit import client_key, get_rate_limiter, require_rate_limit
from app.schemas.rate_limit import AuthVerifyResponse

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.post(
    "/verify",
    response_model=AuthVerifyResponse,
    dependencies=[Depends(require_rate_limit(AUTH_PRESET))],
)
async def verify_credentials(
    request: Request,
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> AuthVerifyResponse:
    """Verify an API key, the login step of this service.

    Every call is admitted through the ``auth`` limiter. A wrong key is
    additionally recorded as a failure, and a correct key clears the
    caller's accumulated failures.

    Raises:
        AuthenticationAppError: 403 when the key is missing or invalid.
        RateLimitAppError: 429 when the caller is blocked.
    """
    key = client_key(request)
    authenticate_caller(key, x_api_key)

    return AuthVerifyResponse(
        authenticated=True,
        remaining_attempts=get_rate_limiter(AUTH_PRESET).get_remaining_attempts(key),
    )
