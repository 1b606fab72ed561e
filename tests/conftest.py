"""Shared fixtures and marker registration for wallcal tests."""

from collections.abc import AsyncIterator, Generator
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from wallcal.calendar.rrule_normalizer import _normalize_for_month
from wallcal.core.http_client import close_all_clients


def pytest_configure(config: Any) -> None:
    """Register custom markers used across the suite."""
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "fast: tests that finish in well under a second")
    config.addinivalue_line("markers", "integration: tests that exercise several layers together")


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Minimal settings object accepted by FeedFetcher and MaterializerConfig."""
    return SimpleNamespace(
        request_timeout=5,
        max_retries=2,
        retry_backoff_factor=1.0,
        max_occurrences_per_rule=1000,
    )


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Clear environment overrides that change time and timezone defaults."""
    for name in ("WALLCAL_TEST_TIME", "WALLCAL_DEFAULT_TIMEZONE", "WALLCAL_DEBUG", "WALLCAL_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield
    _normalize_for_month.cache_clear()


@pytest_asyncio.fixture
async def cleanup_shared_http_clients() -> AsyncIterator[None]:
    """Close shared httpx clients created during a test."""
    yield
    await close_all_clients()


# ==================== ICS Test Data Fixtures ====================


@pytest.fixture
def ics_weekly_new_york() -> str:
    """Weekly Tuesday 20:30 New York meeting spanning the 2024 fall-back change."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//wallcal test//EN
BEGIN:VEVENT
UID:weekly-ny@wallcal.test
DTSTAMP:20241001T000000Z
DTSTART;TZID=America/New_York:20241029T203000
DTEND;TZID=America/New_York:20241029T213000
SUMMARY:Book Club
LOCATION:Library
RRULE:FREQ=WEEKLY;BYDAY=TU
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def ics_yearly_all_day() -> str:
    """Yearly all-day event whose rule only names the day of the month."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//wallcal test//EN
BEGIN:VEVENT
UID:birthday@wallcal.test
DTSTAMP:20241001T000000Z
DTSTART;VALUE=DATE:20241208
DTEND;VALUE=DATE:20241209
SUMMARY:Birthday
RRULE:FREQ=YEARLY;BYMONTHDAY=8
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def ics_weekly_with_exdate_and_override() -> str:
    """Weekly Monday standup with one excluded week and one moved week."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//wallcal test//EN
X-WR-TIMEZONE:America/Los_Angeles
BEGIN:VEVENT
UID:standup@wallcal.test
DTSTAMP:20240101T000000Z
DTSTART;TZID=America/Los_Angeles:20240603T090000
DTEND;TZID=America/Los_Angeles:20240603T093000
SUMMARY:Standup
RRULE:FREQ=WEEKLY;BYDAY=MO
EXDATE;TZID=America/Los_Angeles:20240610T090000
END:VEVENT
BEGIN:VEVENT
UID:standup@wallcal.test
DTSTAMP:20240101T000000Z
RECURRENCE-ID;TZID=America/Los_Angeles:20240617T090000
DTSTART;TZID=America/Los_Angeles:20240617T140000
DTEND;TZID=America/Los_Angeles:20240617T143000
SUMMARY:Standup (moved)
END:VEVENT
BEGIN:VEVENT
UID:standup@wallcal.test
DTSTAMP:20240101T000000Z
RECURRENCE-ID;TZID=America/Los_Angeles:20240624T090000
DTSTART;TZID=America/Los_Angeles:20240624T090000
DTEND;TZID=America/Los_Angeles:20240624T093000
STATUS:CANCELLED
SUMMARY:Standup
END:VEVENT
END:VCALENDAR
"""


@pytest.fixture
def ics_simple() -> str:
    """One timed UTC event and one single all-day event."""
    return """BEGIN:VCALENDAR
VERSION:2.0
PRODID:-//wallcal test//EN
BEGIN:VEVENT
UID:single@wallcal.test
DTSTAMP:20240101T000000Z
DTSTART:20240115T180000Z
DTEND:20240115T190000Z
SUMMARY:Dentist
DESCRIPTION:Cleaning
LOCATION:Main St
END:VEVENT
BEGIN:VEVENT
UID:holiday@wallcal.test
DTSTAMP:20240101T000000Z
DTSTART;VALUE=DATE:20240116
DTEND;VALUE=DATE:20240117
SUMMARY:Holiday
END:VEVENT
END:VCALENDAR
"""
