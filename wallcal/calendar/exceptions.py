"""Exception hierarchy for calendar aggregation.

All calendar errors derive from ``WallcalError`` so callers at the HTTP
boundary can catch the whole family in one place. Feed-level errors are
isolated per feed by the aggregator; window errors are caller errors and
surface before any network access.
"""

from typing import Optional


class WallcalError(Exception):
    """Base exception for all wallcal calendar errors."""


class InvalidEventRecord(WallcalError):
    """An event record violates its contract (e.g. timed event without a timezone)."""

    def __init__(self, message: str, uid: Optional[str] = None):
        super().__init__(message)
        self.uid = uid


class UnsupportedRecurrence(WallcalError):
    """A recurrence rule cannot be expanded (unknown or sub-daily frequency)."""


class FeedError(WallcalError):
    """Base exception for a single feed that could not be turned into events."""

    def __init__(self, message: str, url: str = ""):
        super().__init__(message)
        self.url = url


class FeedFetchError(FeedError):
    """Feed could not be retrieved and no cached copy is available."""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        super().__init__(message, url)
        self.status_code = status_code


class FeedDecodeError(FeedError):
    """Feed text is not a valid iCalendar document."""


class WindowComputationError(WallcalError):
    """Query window is invalid (unknown timezone, naive bounds or inverted range)."""


class AllFeedsFailedError(WallcalError):
    """Every requested feed failed, so there is nothing to return."""

    def __init__(self, message: str, failures: Optional[dict[str, Exception]] = None):
        super().__init__(message)
        self.failures = failures or {}
