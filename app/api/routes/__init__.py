from __future__ import annotations

from app.api.routes.auth import router as auth_router
from app.api.routes.health import router as health_router
from app.api.routes.rate_limit import router as rate_limit_router

__all__ = ["auth_router", "health_router", "rate_limit_router"]
