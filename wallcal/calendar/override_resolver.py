"""Per-instance exception and override resolution.

Exception dates and override anchors are compared with candidates by
*local calendar date* in the event's own timezone. Feeds routinely emit
EXDATE/RECURRENCE-ID values in a different zone or precision than the
DTSTART they refer to, and the local date is the one value they agree on.

A rule producing more than one occurrence per local day cannot have those
instances excluded individually; the normalizer rejects every frequency
that could.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Union

from .models import EventRecord


@dataclass(frozen=True)
class Skip:
    """Candidate is excluded by an exception date."""


@dataclass(frozen=True)
class Replace:
    """Candidate is replaced by an override instance."""

    override: EventRecord
    anchor: datetime


@dataclass(frozen=True)
class Keep:
    """Candidate is emitted unchanged."""


Resolution = Union[Skip, Replace, Keep]

SKIP = Skip()
KEEP = Keep()


def local_date(instant: datetime, tz: tzinfo) -> date:
    """Return the calendar date of ``instant`` in ``tz`` (naive values are taken as local)."""
    if instant.tzinfo is None:
        return instant.date()
    return instant.astimezone(tz).date()


def exception_date_set(exception_dates: Iterable[datetime], tz: tzinfo) -> frozenset[date]:
    return frozenset(local_date(value, tz) for value in exception_dates)


def override_date_map(
    overrides: Mapping[datetime, EventRecord], tz: tzinfo
) -> dict[date, tuple[datetime, EventRecord]]:
    """Index overrides by the local date of their anchor.

    When several overrides land on the same date the one appearing last in
    ``overrides`` wins.
    """
    by_date: dict[date, tuple[datetime, EventRecord]] = {}
    for anchor, override in overrides.items():
        by_date[local_date(anchor, tz)] = (anchor, override)
    return by_date


def resolve(
    candidate_date: date,
    exception_dates: Iterable[datetime],
    overrides: Mapping[datetime, EventRecord],
    local_timezone: tzinfo,
) -> Resolution:
    """Decide what happens to the recurrence instance on ``candidate_date``.

    Exceptions take precedence over overrides.

    Args:
        candidate_date: Local calendar date of the candidate occurrence
        exception_dates: EXDATE instants of the master event
        overrides: RECURRENCE-ID anchor to replacement record
        local_timezone: Zone in which dates are compared

    Returns:
        SKIP, a Replace carrying the winning override, or KEEP
    """
    if candidate_date in exception_date_set(exception_dates, local_timezone):
        return SKIP

    match = override_date_map(overrides, local_timezone).get(candidate_date)
    if match is not None:
        anchor, override = match
        return Replace(override=override, anchor=anchor)

    return KEEP


class OverrideResolver:
    """Resolver bound to one event, with its exception and override indexes precomputed."""

    def __init__(self, event: EventRecord, local_timezone: tzinfo):
        self.local_timezone = local_timezone
        self._exceptions = exception_date_set(event.exception_dates, local_timezone)
        self._overrides = override_date_map(event.overrides, local_timezone)

    def resolve(self, candidate_date: date) -> Resolution:
        if candidate_date in self._exceptions:
            return SKIP
        match = self._overrides.get(candidate_date)
        if match is not None:
            return Replace(override=match[1], anchor=match[0])
        return KEEP

    def override_dates(self) -> dict[date, tuple[datetime, EventRecord]]:
        """Return the override index (local date to anchor and record), skipping excluded dates."""
        return {
            day: match for day, match in self._overrides.items() if day not in self._exceptions
        }
