"""Multi-feed aggregation: fetch, decode, materialize and merge."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime
from typing import Optional

from .exceptions import AllFeedsFailedError, FeedError, InvalidEventRecord
from .feed_cache import FeedCache
from .ics_decoder import IcsDecoder
from .materializer import OccurrenceMaterializer
from .models import Occurrence
from .windower import DEFAULT_DAYS_FUTURE, DEFAULT_DAYS_PAST, QueryWindow

logger = logging.getLogger(__name__)


class CalendarAggregator:
    """Builds the merged occurrence list for a set of feed URLs.

    Feeds are fetched concurrently, bounded by ``fetch_concurrency`` (one
    slot per feed when unset); each feed is then decoded and materialized
    in a worker thread. A failing feed contributes nothing; only when every
    feed fails is an error raised.
    """

    def __init__(
        self,
        feed_cache: FeedCache,
        decoder: Optional[IcsDecoder] = None,
        materializer: Optional[OccurrenceMaterializer] = None,
        fetch_concurrency: Optional[int] = None,
    ):
        self.feed_cache = feed_cache
        self.decoder = decoder or IcsDecoder()
        self.materializer = materializer or OccurrenceMaterializer()
        self.fetch_concurrency = max(1, int(fetch_concurrency)) if fetch_concurrency is not None else None

    async def get_events(
        self,
        urls: Sequence[str],
        timezone: str,
        days_past: int = DEFAULT_DAYS_PAST,
        days_future: int = DEFAULT_DAYS_FUTURE,
        now: Optional[datetime] = None,
    ) -> list[Occurrence]:
        """Return occurrences from all feeds inside the day-based window.

        Raises:
            WindowComputationError: invalid timezone or day counts (before any fetch)
            AllFeedsFailedError: every feed failed
        """
        window = QueryWindow.from_days(timezone, days_past, days_future, now)
        return await self.aggregate(urls, window)

    async def aggregate(self, urls: Sequence[str], window: QueryWindow) -> list[Occurrence]:
        """Return occurrences from all feeds inside ``window``, stable sorted by start."""
        if not urls:
            return []

        semaphore = asyncio.Semaphore(self.fetch_concurrency or len(urls))
        tasks = [asyncio.create_task(self._process_feed(semaphore, url, window)) for url in urls]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        occurrences: list[Occurrence] = []
        failures: dict[str, Exception] = {}
        for url, result in zip(urls, results):
            if isinstance(result, FeedError):
                logger.warning("Feed %s failed: %s", url, result)
                failures[url] = result
                continue
            if isinstance(result, Exception):
                logger.error("Feed %s failed unexpectedly", url, exc_info=result)
                failures[url] = result
                continue
            if isinstance(result, BaseException):
                raise result
            logger.debug("Feed %s produced %d occurrences", url, len(result))
            occurrences.extend(result)

        if len(failures) == len(urls):
            raise AllFeedsFailedError(f"All {len(urls)} calendar feeds failed", failures)

        occurrences.sort(key=lambda occurrence: occurrence.start)
        logger.info(
            "Aggregated %d occurrences from %d/%d feeds",
            len(occurrences),
            len(urls) - len(failures),
            len(urls),
        )
        return occurrences

    async def _process_feed(
        self, semaphore: asyncio.Semaphore, url: str, window: QueryWindow
    ) -> list[Occurrence]:
        async with semaphore:
            text = await self.feed_cache.fetch(url)
        return await asyncio.to_thread(self._materialize_feed, text, url, window)

    def _materialize_feed(self, text: str, url: str, window: QueryWindow) -> list[Occurrence]:
        events = self.decoder.decode(text, window.timezone)
        occurrences: list[Occurrence] = []
        for event in events:
            try:
                occurrences.extend(self.materializer.materialize(event, window, source_id=url))
            except InvalidEventRecord as e:
                logger.warning("Skipping event %r from %s: %s", e.uid, url, e)
        return occurrences
