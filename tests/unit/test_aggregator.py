"""Unit tests for wallcal.calendar.aggregator."""

import asyncio
from datetime import UTC, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from wallcal.calendar.aggregator import CalendarAggregator
from wallcal.calendar.exceptions import AllFeedsFailedError, FeedFetchError, WindowComputationError

pytestmark = [pytest.mark.unit, pytest.mark.fast]

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=UTC)

FEED_A = "https://example.com/a.ics"
FEED_B = "https://example.com/b.ics"

ICS_B = """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//wallcal test//EN
BEGIN:VEVENT
UID:early@wallcal.test
DTSTAMP:20240101T000000Z
DTSTART:20240114T080000Z
DTEND:20240114T090000Z
SUMMARY:Breakfast
END:VEVENT
END:VCALENDAR
"""


def _feed_cache(feeds: dict[str, Any]) -> AsyncMock:
    async def fetch(url: str) -> str:
        value = feeds[url]
        if isinstance(value, Exception):
            raise value
        return value

    cache = AsyncMock()
    cache.fetch.side_effect = fetch
    return cache


class TestCalendarAggregator:
    """Tests for CalendarAggregator.get_events()."""

    @pytest.mark.asyncio
    async def test_get_events_when_two_feeds_then_merged_and_sorted(self, ics_simple: str) -> None:
        aggregator = CalendarAggregator(_feed_cache({FEED_A: ics_simple, FEED_B: ICS_B}))

        occurrences = await aggregator.get_events([FEED_A, FEED_B], "America/Los_Angeles", 7, 7, now=NOW)

        assert [o.title for o in occurrences] == ["Breakfast", "Dentist", "Holiday"]
        assert occurrences[0].source_id == FEED_B
        assert occurrences[1].source_id == FEED_A

    @pytest.mark.asyncio
    async def test_get_events_when_one_feed_fails_then_others_returned(self, ics_simple: str) -> None:
        aggregator = CalendarAggregator(
            _feed_cache({FEED_A: ics_simple, FEED_B: FeedFetchError("HTTP 500", url=FEED_B)})
        )

        occurrences = await aggregator.get_events([FEED_A, FEED_B], "America/Los_Angeles", 7, 7, now=NOW)

        assert {o.source_id for o in occurrences} == {FEED_A}

    @pytest.mark.asyncio
    async def test_get_events_when_feed_not_icalendar_then_isolated(self, ics_simple: str) -> None:
        aggregator = CalendarAggregator(_feed_cache({FEED_A: ics_simple, FEED_B: "<html></html>"}))

        occurrences = await aggregator.get_events([FEED_A, FEED_B], "America/Los_Angeles", 7, 7, now=NOW)

        assert len(occurrences) == 2

    @pytest.mark.asyncio
    async def test_get_events_when_all_feeds_fail_then_raises(self) -> None:
        aggregator = CalendarAggregator(
            _feed_cache(
                {
                    FEED_A: FeedFetchError("down", url=FEED_A),
                    FEED_B: RuntimeError("boom"),
                }
            )
        )

        with pytest.raises(AllFeedsFailedError) as exc_info:
            await aggregator.get_events([FEED_A, FEED_B], "UTC", 7, 7, now=NOW)

        assert set(exc_info.value.failures) == {FEED_A, FEED_B}

    @pytest.mark.asyncio
    async def test_get_events_when_no_urls_then_empty(self) -> None:
        aggregator = CalendarAggregator(_feed_cache({}))

        assert await aggregator.get_events([], "UTC", 7, 7, now=NOW) == []

    @pytest.mark.asyncio
    async def test_get_events_when_timezone_invalid_then_raises_before_fetch(self) -> None:
        cache = _feed_cache({FEED_A: ICS_B})
        aggregator = CalendarAggregator(cache)

        with pytest.raises(WindowComputationError):
            await aggregator.get_events([FEED_A], "Not/AZone", 7, 7, now=NOW)

        cache.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_events_when_window_excludes_events_then_empty(self, ics_simple: str) -> None:
        aggregator = CalendarAggregator(_feed_cache({FEED_A: ics_simple}))
        later = datetime(2024, 6, 1, tzinfo=UTC)

        assert await aggregator.get_events([FEED_A], "UTC", 7, 7, now=later) == []


class TestFetchConcurrency:
    """Bounding of concurrent feed fetches."""

    @staticmethod
    def _tracking_cache(text: str) -> tuple[AsyncMock, list[int]]:
        active = [0]
        peaks: list[int] = []

        async def fetch(url: str) -> str:
            active[0] += 1
            peaks.append(active[0])
            for _ in range(3):
                await asyncio.sleep(0)
            active[0] -= 1
            return text

        cache = AsyncMock()
        cache.fetch.side_effect = fetch
        return cache, peaks

    @pytest.mark.asyncio
    async def test_aggregate_when_concurrency_unset_then_all_feeds_in_flight(self) -> None:
        cache, peaks = self._tracking_cache(ICS_B)
        urls = [FEED_A, FEED_B, "https://example.com/c.ics"]

        await CalendarAggregator(cache).get_events(urls, "UTC", 7, 7, now=NOW)

        assert max(peaks) == 3

    @pytest.mark.asyncio
    async def test_aggregate_when_concurrency_one_then_fetches_serialized(self) -> None:
        cache, peaks = self._tracking_cache(ICS_B)
        urls = [FEED_A, FEED_B, "https://example.com/c.ics"]

        await CalendarAggregator(cache, fetch_concurrency=1).get_events(urls, "UTC", 7, 7, now=NOW)

        assert max(peaks) == 1
