"""HTTP client for downloading iCalendar feeds."""

import asyncio
import logging
import random
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

from ..api.middleware.correlation_id import NO_REQUEST_ID, get_request_id
from ..core.config_manager import get_config_value
from ..core.http_client import get_shared_client
from .exceptions import FeedFetchError

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

ALLOWED_SCHEMES = ("http", "https")


def normalize_feed_url(url: str) -> str:
    """Rewrite ``webcal://`` subscription links to ``https://``."""
    stripped = url.strip()
    if stripped.lower().startswith("webcal://"):
        return "https://" + stripped[len("webcal://") :]
    return stripped


def validate_feed_url(url: str) -> bool:
    """Return True for absolute http(s) URLs with a hostname."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in ALLOWED_SCHEMES and bool(parsed.hostname)


class FeedFetcher:
    """Async downloader for calendar feeds with retry and jittered backoff."""

    def __init__(self, settings: Any = None, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize the fetcher.

        Args:
            settings: Object or dict providing request_timeout, max_retries
                and retry_backoff_factor
            client: Optional client to use instead of the shared pool
        """
        self.settings = settings
        self._client = client

    def _setting(self, key: str, default: Any) -> Any:
        return get_config_value(self.settings, key, default)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_shared_client("feeds")

    def _calculate_backoff(self, attempt: int, backoff_factor: float) -> float:
        """Exponential backoff with randomized jitter, capped at MAX_BACKOFF_SECONDS."""
        base_backoff = min(backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311 - jitter not cryptographic
        return base_backoff + jitter

    async def fetch(self, url: str) -> str:
        """Download feed text.

        Timeouts and network errors are retried; HTTP error statuses are not.

        Args:
            url: Feed URL (http, https or webcal)

        Returns:
            Response body as text

        Raises:
            FeedFetchError: invalid URL, HTTP error status, exhausted retries
                or an empty body
        """
        target = normalize_feed_url(url)
        if not validate_feed_url(target):
            raise FeedFetchError(f"Unsupported feed URL: {url!r}", url=url)

        client = await self._get_client()
        max_retries = int(self._setting("max_retries", 3))
        backoff_factor = float(self._setting("retry_backoff_factor", 1.5))
        timeout = float(self._setting("request_timeout", 30))

        headers = {}
        request_id = get_request_id()
        if request_id != NO_REQUEST_ID:
            headers["X-Request-ID"] = request_id

        attempt = 0
        while True:
            try:
                logger.debug("Fetching feed %s (attempt %d)", target, attempt + 1)
                response = await client.get(target, headers=headers, timeout=timeout)
                response.raise_for_status()
                break
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                logger.warning("HTTP %d fetching feed %s", status, target)
                raise FeedFetchError(
                    f"HTTP {status}: {e.response.reason_phrase}", url=url, status_code=status
                ) from e
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt >= max_retries:
                    logger.warning("All %d attempts failed for %s: %s", attempt + 1, target, e)
                    raise FeedFetchError(f"Network error: {e}", url=url) from e
                backoff_time = self._calculate_backoff(attempt, backoff_factor)
                logger.warning(
                    "Feed request failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1,
                    max_retries + 1,
                    backoff_time,
                    e,
                )
                await asyncio.sleep(backoff_time)
                attempt += 1
            except httpx.HTTPError as e:
                raise FeedFetchError(f"Request failed: {e}", url=url) from e

        text = response.text
        if not text.strip():
            raise FeedFetchError("Feed returned an empty body", url=url, status_code=response.status_code)
        if "BEGIN:VCALENDAR" not in text[:4096].upper():
            logger.warning("Feed %s does not look like iCalendar data", target)

        logger.debug("Fetched %d bytes from %s", len(text), target)
        return text
