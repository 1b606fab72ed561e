"""Calendar feed decoding, recurrence expansion and aggregation."""

from .aggregator import CalendarAggregator
from .exceptions import (
    AllFeedsFailedError,
    FeedDecodeError,
    FeedError,
    FeedFetchError,
    InvalidEventRecord,
    UnsupportedRecurrence,
    WallcalError,
    WindowComputationError,
)
from .feed_cache import FeedCache
from .fetcher import FeedFetcher
from .ics_decoder import IcsDecoder
from .materializer import EventKind, MaterializerConfig, OccurrenceMaterializer, materialize
from .models import EventRecord, Occurrence, RecurrenceRule
from .windower import QueryWindow

__all__ = [
    "AllFeedsFailedError",
    "CalendarAggregator",
    "EventKind",
    "EventRecord",
    "FeedCache",
    "FeedDecodeError",
    "FeedError",
    "FeedFetchError",
    "FeedFetcher",
    "IcsDecoder",
    "InvalidEventRecord",
    "MaterializerConfig",
    "Occurrence",
    "OccurrenceMaterializer",
    "QueryWindow",
    "RecurrenceRule",
    "UnsupportedRecurrence",
    "WallcalError",
    "WindowComputationError",
    "materialize",
]
