"""SlowAPI limiting for the credential endpoints.

Each application builds its own :class:`~slowapi.Limiter` (and with it its own
in-memory counters) from its settings. The login endpoints are registered
through :func:`limited_route`, so the throttle they answer to is the one
stored on ``app.state.limiter`` of the app that mounts them.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Request
from slowapi import Limiter

from .config import Settings

__all__ = ["build_limiter", "get_client_ip", "limited_route"]


def get_client_ip(request: Request) -> str:
    """Extract a best-effort client IP for rate limiting.

    Prefer ``X-Forwarded-For`` (first hop) if present, otherwise use the
    socket peer address.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def build_limiter(settings: Settings) -> Limiter:
    return Limiter(key_func=get_client_ip, enabled=settings.rate_limit_enabled)


def limited_route(
    router: APIRouter,
    path: str,
    endpoint: Callable[..., Any],
    limiter: Limiter,
    limit: str,
    **route_kwargs: Any,
) -> APIRouter:
    """Add ``endpoint`` as a POST route of ``router`` throttled by ``limiter``."""

    router.add_api_route(path, limiter.limit(limit)(endpoint), methods=["POST"], **route_kwargs)
    return router
