"""Query window construction and range clipping.

Timed occurrences are kept when they overlap the window (strictly:
``start < range_end and end > range_start``). All-day occurrences are kept
when their local midnight falls inside ``[range_start, range_end]``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from ..core.timezone_utils import get_zone, is_valid_timezone, now_utc
from .exceptions import WindowComputationError
from .models import Occurrence

logger = logging.getLogger(__name__)

DEFAULT_DAYS_PAST = 90
DEFAULT_DAYS_FUTURE = 180
EXPANSION_PAD_DAYS = 1


def _is_aware(value: datetime) -> bool:
    return value.tzinfo is not None and value.utcoffset() is not None


@dataclass(frozen=True)
class QueryWindow:
    """Inclusive query range expressed in a target timezone."""

    timezone: str
    range_start: datetime
    range_end: datetime

    def __post_init__(self) -> None:
        if not is_valid_timezone(self.timezone):
            raise WindowComputationError(f"Unknown timezone: {self.timezone!r}")
        if not isinstance(self.range_start, datetime) or not isinstance(self.range_end, datetime):
            raise WindowComputationError("Window bounds must be datetimes")
        if not _is_aware(self.range_start) or not _is_aware(self.range_end):
            raise WindowComputationError("Window bounds must be timezone-aware")
        if self.range_start > self.range_end:
            raise WindowComputationError(
                f"Window start {self.range_start.isoformat()} is after end {self.range_end.isoformat()}"
            )

    @property
    def tz(self) -> ZoneInfo:
        return get_zone(self.timezone)

    @classmethod
    def from_days(
        cls,
        timezone: str,
        days_past: int = DEFAULT_DAYS_PAST,
        days_future: int = DEFAULT_DAYS_FUTURE,
        now: Optional[datetime] = None,
    ) -> QueryWindow:
        """Build the window from local start-of-day ``days_past`` ago to end-of-day ``days_future`` ahead.

        Args:
            timezone: IANA identifier the day boundaries are computed in
            days_past: Whole days before today to include
            days_future: Whole days after today to include
            now: Reference instant (defaults to the current time)

        Raises:
            WindowComputationError: unknown timezone or invalid day counts
        """
        if not is_valid_timezone(timezone):
            raise WindowComputationError(f"Unknown timezone: {timezone!r}")
        for name, value in (("days_past", days_past), ("days_future", days_future)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise WindowComputationError(f"{name} must be a non-negative integer, got {value!r}")

        tz = get_zone(timezone)
        reference = now if now is not None else now_utc()
        if not _is_aware(reference):
            raise WindowComputationError("Reference time must be timezone-aware")

        today = reference.astimezone(tz).date()
        start = datetime.combine(today - timedelta(days=days_past), time.min, tzinfo=tz)
        end = datetime.combine(today + timedelta(days=days_future), time.max, tzinfo=tz)
        return cls(timezone=timezone, range_start=start, range_end=end)


def overlaps(start: datetime, end: datetime, window: QueryWindow) -> bool:
    return start < window.range_end and end > window.range_start


def contains_day_start(day_start: datetime, window: QueryWindow) -> bool:
    return window.range_start <= day_start <= window.range_end


def in_window(occurrence: Occurrence, window: QueryWindow) -> bool:
    if occurrence.all_day:
        return contains_day_start(occurrence.start, window)
    return overlaps(occurrence.start, occurrence.end, window)


def clip(occurrences: Iterable[Occurrence], window: QueryWindow) -> list[Occurrence]:
    """Drop occurrences outside ``window``, preserving order."""
    return [occurrence for occurrence in occurrences if in_window(occurrence, window)]


def padded_local_bounds(
    window: QueryWindow, tz: tzinfo, pad_days: int = EXPANSION_PAD_DAYS
) -> tuple[datetime, datetime]:
    """Return the window as naive wall-clock bounds in ``tz``, widened by ``pad_days``.

    Expansion runs over the padded range so that instances whose local date
    differs from their date in the window's zone are still generated; the
    results are clipped to the true window afterwards.
    """
    pad = timedelta(days=pad_days)
    start_local = window.range_start.astimezone(tz).replace(tzinfo=None) - pad
    end_local = window.range_end.astimezone(tz).replace(tzinfo=None) + pad
    return start_local, end_local
