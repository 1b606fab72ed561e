"""Static file serving for the built dashboard bundle."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def register_static_routes(app: Any, static_dir: Path) -> None:
    """Serve files from ``static_dir`` with an ``index.html`` fallback.

    Unknown non-API paths return the index so client-side routing works.

    Args:
        app: aiohttp web application
        static_dir: Directory holding the built frontend
    """
    from aiohttp import web

    root = static_dir.resolve()
    index_file = root / "index.html"

    async def serve_static(request: Any) -> Any:
        tail = request.match_info.get("tail", "")
        if tail.startswith("api/"):
            raise web.HTTPNotFound()

        if tail:
            candidate = (root / tail).resolve()
            if candidate.is_relative_to(root) and candidate.is_file():
                return web.FileResponse(candidate)

        if not index_file.exists():
            logger.error("Static index file not found: %s", index_file)
            return web.Response(text="index.html not found", status=404)
        return web.FileResponse(index_file)

    app.router.add_get("/{tail:.*}", serve_static)

    logger.debug("Static routes registered for %s", root)
