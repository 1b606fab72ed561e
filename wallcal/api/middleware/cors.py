"""CORS headers for the dashboard frontend.

In development any origin may call the API; in production only the
configured frontend URL is allowed.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Optional

from aiohttp import web

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "GET, POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type, X-Request-ID"

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def create_cors_middleware(production: bool, frontend_url: Optional[str]) -> Callable[[web.Request, Handler], Awaitable[web.StreamResponse]]:
    """Build a middleware that answers preflight requests and sets CORS headers.

    Args:
        production: Restrict the allowed origin to ``frontend_url``
        frontend_url: Origin of the deployed dashboard

    Returns:
        aiohttp middleware
    """
    allowed_origin = (frontend_url or "") if production else "*"
    if production and not frontend_url:
        logger.warning("Production mode without a frontend URL; cross-origin requests are refused")

    def _apply(response: web.StreamResponse) -> None:
        if allowed_origin:
            response.headers["Access-Control-Allow-Origin"] = allowed_origin
            response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
            response.headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS
            if allowed_origin != "*":
                response.headers["Vary"] = "Origin"

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        if request.method == "OPTIONS" and "Access-Control-Request-Method" in request.headers:
            response: web.StreamResponse = web.Response(status=204)
        else:
            try:
                response = await handler(request)
            except web.HTTPException as exc:
                _apply(exc)
                raise
        _apply(response)
        return response

    return cors_middleware
