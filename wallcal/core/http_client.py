"""Shared httpx client pool.

Feed downloads, weather lookups and printer polling all go through a few
long-lived ``httpx.AsyncClient`` instances keyed by purpose, so connections
are reused between requests. ``close_all_clients`` must run on shutdown.
"""

import asyncio
import logging
from typing import Optional

import httpx

from .. import __version__

logger = logging.getLogger(__name__)

_shared_clients: dict[str, httpx.AsyncClient] = {}
_client_lock: Optional[asyncio.Lock] = None

DEFAULT_LIMITS = httpx.Limits(max_connections=10, max_keepalive_connections=4)

DEFAULT_TIMEOUT = httpx.Timeout(connect=10.0, read=30.0, write=10.0, pool=30.0)

# Some calendar providers (Office365 in particular) reject obviously automated clients
DEFAULT_HEADERS: dict[str, str] = {
    "User-Agent": f"Mozilla/5.0 (compatible; wallcal/{__version__})",
    "Accept": "text/calendar, text/plain, application/json, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
}


def _get_lock() -> asyncio.Lock:
    global _client_lock
    if _client_lock is None:
        _client_lock = asyncio.Lock()
    return _client_lock


async def get_shared_client(
    client_id: str = "default",
    limits: Optional[httpx.Limits] = None,
    timeout: Optional[httpx.Timeout] = None,
) -> httpx.AsyncClient:
    """Get or create a shared HTTP client with connection pooling.

    Args:
        client_id: Identifier for the client (one pool per purpose)
        limits: Custom connection limits
        timeout: Custom timeout configuration

    Returns:
        Shared httpx.AsyncClient
    """
    async with _get_lock():
        client = _shared_clients.get(client_id)
        if client is None or client.is_closed:
            effective_limits = limits or DEFAULT_LIMITS
            logger.debug(
                "Creating shared HTTP client '%s' (max_connections=%s)",
                client_id,
                effective_limits.max_connections,
            )
            client = httpx.AsyncClient(
                limits=effective_limits,
                timeout=timeout or DEFAULT_TIMEOUT,
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
            )
            _shared_clients[client_id] = client
        return client


async def close_all_clients() -> None:
    """Close all shared HTTP clients and drop the pool lock."""
    global _client_lock
    async with _get_lock():
        for client_id, client in _shared_clients.items():
            if client.is_closed:
                continue
            try:
                await client.aclose()
                logger.debug("Closed shared HTTP client '%s'", client_id)
            except (httpx.HTTPError, RuntimeError) as e:
                logger.warning("Error closing shared HTTP client '%s': %s", client_id, e)
        _shared_clients.clear()
    # The lock may be bound to this event loop
    _client_lock = None
