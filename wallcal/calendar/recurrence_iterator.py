"""Recurrence enumeration over local wall-clock time.

Rules are expanded with dateutil against a *naive* local dtstart, so every
candidate keeps the anchor's wall-clock time of day regardless of DST. The
caller resolves each candidate to an instant afterwards.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, tzinfo
from typing import Optional

from dateutil import rrule as du_rrule

from .exceptions import UnsupportedRecurrence
from .models import RecurrenceRule
from .rrule_normalizer import WEEKDAY_TOKEN_RE

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 1000

FREQUENCY_MAP = {
    "YEARLY": du_rrule.YEARLY,
    "MONTHLY": du_rrule.MONTHLY,
    "WEEKLY": du_rrule.WEEKLY,
    "DAILY": du_rrule.DAILY,
}

WEEKDAY_MAP = {
    "MO": du_rrule.MO,
    "TU": du_rrule.TU,
    "WE": du_rrule.WE,
    "TH": du_rrule.TH,
    "FR": du_rrule.FR,
    "SA": du_rrule.SA,
    "SU": du_rrule.SU,
}


def _to_weekdays(tokens: tuple[str, ...]) -> list[du_rrule.weekday]:
    weekdays = []
    for token in tokens:
        match = WEEKDAY_TOKEN_RE.match(token)
        if match is None:
            raise UnsupportedRecurrence(f"malformed BYDAY value {token!r}")
        ordinal, code = match.groups()
        weekday = WEEKDAY_MAP[code]
        n = int(ordinal) if ordinal else 0
        weekdays.append(weekday(n) if n else weekday)
    return weekdays


def local_until(rule: RecurrenceRule, local_tz: tzinfo) -> Optional[datetime]:
    """Convert the rule's UNTIL into a naive local wall-clock bound.

    A date-valued UNTIL includes the whole day. An aware UNTIL (normally
    UTC per RFC 5545) is converted into ``local_tz``. A naive UNTIL is
    already local.
    """
    until = rule.until
    if until is None:
        return None
    if isinstance(until, datetime):
        if until.tzinfo is not None:
            return until.astimezone(local_tz).replace(tzinfo=None)
        return until
    return datetime.combine(until, time.max)


def build_rrule(rule: RecurrenceRule, anchor_local: datetime) -> du_rrule.rrule:
    """Build a dateutil rrule for ``rule`` anchored at naive ``anchor_local``.

    UNTIL is not passed to dateutil (it rejects COUNT together with UNTIL);
    callers bound the iteration with ``local_until`` instead.

    Raises:
        UnsupportedRecurrence: frequency or BYDAY values cannot be expanded
    """
    if anchor_local.tzinfo is not None:
        raise ValueError("recurrence anchor must be naive local wall-clock time")

    freq = FREQUENCY_MAP.get(rule.frequency or "")
    if freq is None:
        raise UnsupportedRecurrence(f"cannot expand frequency {rule.frequency!r}")

    kwargs: dict[str, object] = {
        "dtstart": anchor_local.replace(microsecond=0),
        "interval": max(rule.interval, 1),
    }
    if rule.count is not None:
        kwargs["count"] = rule.count
    if rule.by_weekday:
        kwargs["byweekday"] = _to_weekdays(rule.by_weekday)
    if rule.by_month_day:
        kwargs["bymonthday"] = list(rule.by_month_day)
    if rule.by_month:
        kwargs["bymonth"] = list(rule.by_month)

    return du_rrule.rrule(freq, **kwargs)


def enumerate_local_starts(
    rule: RecurrenceRule,
    anchor_local: datetime,
    range_start_local: datetime,
    range_end_local: datetime,
    local_tz: tzinfo,
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES,
) -> list[datetime]:
    """Enumerate naive local starts of ``rule`` inside the local range.

    Args:
        rule: Normalized recurrence rule
        anchor_local: Naive local wall-clock start of the first occurrence
        range_start_local: Inclusive naive local lower bound
        range_end_local: Inclusive naive local upper bound
        local_tz: Zone used to interpret an aware UNTIL
        max_occurrences: Hard cap on the number of starts returned

    Returns:
        Ascending list of naive local datetimes, each carrying the anchor's
        time of day

    Raises:
        UnsupportedRecurrence: rule cannot be expanded
    """
    until_bound = local_until(rule, local_tz)
    anchor = anchor_local.replace(microsecond=0)
    if until_bound is not None and until_bound < anchor:
        logger.debug("UNTIL %s precedes anchor %s; no occurrences", until_bound, anchor)
        return []

    starts: list[datetime] = []
    for candidate in build_rrule(rule, anchor_local):
        if candidate > range_end_local:
            break
        if until_bound is not None and candidate > until_bound:
            break
        if candidate < range_start_local:
            continue
        starts.append(candidate)
        if len(starts) >= max_occurrences:
            logger.warning(
                "Recurrence expansion capped at %d occurrences (freq=%s)",
                max_occurrences,
                rule.frequency,
            )
            break

    return starts

