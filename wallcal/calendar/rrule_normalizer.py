"""Recurrence rule normalization.

Repairs feed quirks before expansion so that every rule handed to the
recurrence iterator can be enumerated by local calendar date:

- YEARLY rules without BYMONTH are pinned to the anchor month, otherwise a
  rule such as ``FREQ=YEARLY;BYMONTHDAY=8`` would fire every month.
- Frequencies finer than a day (and unknown tokens) are rejected, because
  exceptions and overrides are matched per local date.
- Non-positive INTERVAL and COUNT values are dropped.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from functools import lru_cache
from typing import Optional

from .exceptions import UnsupportedRecurrence
from .models import RecurrenceRule

logger = logging.getLogger(__name__)

SUPPORTED_FREQUENCIES = frozenset({"YEARLY", "MONTHLY", "WEEKLY", "DAILY"})
SUB_DAILY_FREQUENCIES = frozenset({"HOURLY", "MINUTELY", "SECONDLY"})

WEEKDAY_TOKEN_RE = re.compile(r"^([+-]?\d{1,2})?(MO|TU|WE|TH|FR|SA|SU)$")


def normalize(rule: Optional[RecurrenceRule], anchor_start: date) -> Optional[RecurrenceRule]:
    """Return an expandable version of ``rule`` or None for non-recurring.

    Args:
        rule: Rule as decoded from the feed (may be None)
        anchor_start: Local wall-clock start of the first occurrence (a
            datetime for timed events, a date for all-day events)

    Returns:
        Normalized rule, or None when the rule cannot be expanded and the
        event must be treated as a single occurrence
    """
    if rule is None:
        return None

    try:
        return _normalize_for_month(rule, anchor_start.month)
    except UnsupportedRecurrence as e:
        logger.warning("Treating event as non-recurring: %s", e)
        return None


@lru_cache(maxsize=512)
def _normalize_for_month(rule: RecurrenceRule, anchor_month: int) -> RecurrenceRule:
    frequency = rule.frequency
    if not frequency:
        raise UnsupportedRecurrence("rule has no FREQ")
    if frequency in SUB_DAILY_FREQUENCIES:
        raise UnsupportedRecurrence(f"sub-daily frequency {frequency} is not supported")
    if frequency not in SUPPORTED_FREQUENCIES:
        raise UnsupportedRecurrence(f"unknown frequency {frequency!r}")

    updates: dict[str, object] = {}

    if rule.interval < 1:
        logger.debug("Repairing INTERVAL=%d to 1", rule.interval)
        updates["interval"] = 1

    if rule.count is not None and rule.count < 1:
        logger.debug("Dropping non-positive COUNT=%d", rule.count)
        updates["count"] = None

    weekdays = tuple(token for token in rule.by_weekday if WEEKDAY_TOKEN_RE.match(token))
    if len(weekdays) != len(rule.by_weekday):
        if rule.by_weekday and not weekdays:
            raise UnsupportedRecurrence(f"no usable BYDAY values in {rule.by_weekday!r}")
        logger.debug("Dropping malformed BYDAY values from %r", rule.by_weekday)
        updates["by_weekday"] = weekdays

    month_days = tuple(day for day in rule.by_month_day if day != 0 and -31 <= day <= 31)
    if len(month_days) != len(rule.by_month_day):
        if not month_days:
            raise UnsupportedRecurrence(f"no usable BYMONTHDAY values in {rule.by_month_day!r}")
        logger.debug("Dropping out-of-range BYMONTHDAY values from %r", rule.by_month_day)
        updates["by_month_day"] = month_days

    months = tuple(month for month in rule.by_month if 1 <= month <= 12)
    if len(months) != len(rule.by_month):
        if not months:
            raise UnsupportedRecurrence(f"no usable BYMONTH values in {rule.by_month!r}")
        logger.debug("Dropping out-of-range BYMONTH values from %r", rule.by_month)
        updates["by_month"] = months

    if frequency == "YEARLY" and not months:
        updates["by_month"] = (anchor_month,)

    if not updates:
        return rule
    return rule.model_copy(update=updates)
