"""Occurrence materialization for a single calendar entry.

Given one decoded ``EventRecord`` and a ``QueryWindow`` this produces the
concrete, deduplicated occurrences inside the window, ordered by start.

Recurring timed events are expanded in the event's own wall-clock time:
the anchor's time of day is reapplied to every candidate date and each
candidate is then resolved with the UTC offset in force on that date. A
weekly 20:30 meeting therefore stays at 20:30 local across DST changes.

Duration policy for recurring timed events: the wall-clock duration of the
first instance is preserved. Across a DST transition the elapsed duration
shifts by the DST delta. When the local end resolves to or before the
start (a start inside a spring-forward gap) the elapsed duration of the
first instance is used instead.

Ambiguous wall times (fall-back overlap) resolve to the first occurrence
(``fold=0``). Nonexistent wall times (spring-forward gap) are shifted
forward by the gap length.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from enum import Enum
from typing import Any, Optional

from ..core.config_manager import get_config_value
from ..core.timezone_utils import get_zone, is_valid_timezone
from .exceptions import InvalidEventRecord, UnsupportedRecurrence
from .models import EventRecord, Occurrence, RecurrenceRule
from .override_resolver import OverrideResolver, Replace, Skip, local_date
from .recurrence_iterator import DEFAULT_MAX_OCCURRENCES, enumerate_local_starts
from .rrule_normalizer import normalize
from .windower import (
    EXPANSION_PAD_DAYS,
    QueryWindow,
    contains_day_start,
    in_window,
    overlaps,
    padded_local_bounds,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMED_DURATION = timedelta(hours=1)
ONE_MICROSECOND = timedelta(microseconds=1)


class EventKind(Enum):
    """Closed classification of calendar entries."""

    SINGLE_TIMED = "single_timed"
    SINGLE_ALL_DAY = "single_all_day"
    RECURRING_TIMED = "recurring_timed"
    RECURRING_ALL_DAY = "recurring_all_day"


def classify(event: EventRecord, rule: Optional[RecurrenceRule]) -> EventKind:
    if rule is None:
        return EventKind.SINGLE_ALL_DAY if event.is_all_day else EventKind.SINGLE_TIMED
    return EventKind.RECURRING_ALL_DAY if event.is_all_day else EventKind.RECURRING_TIMED


@dataclass
class MaterializerConfig:
    """Limits applied while expanding recurring entries."""

    max_occurrences_per_rule: int = DEFAULT_MAX_OCCURRENCES
    expansion_pad_days: int = EXPANSION_PAD_DAYS

    @classmethod
    def from_settings(cls, settings: Any) -> MaterializerConfig:
        """Create config from an application settings object or dict."""
        limit = get_config_value(settings, "max_occurrences_per_rule", DEFAULT_MAX_OCCURRENCES)
        pad_days = get_config_value(settings, "expansion_pad_days", EXPANSION_PAD_DAYS)
        return cls(
            max_occurrences_per_rule=int(limit or DEFAULT_MAX_OCCURRENCES),
            expansion_pad_days=int(pad_days or 0),
        )


def resolve_wall_time(wall: datetime, tz: tzinfo) -> datetime:
    """Resolve a naive local wall-clock time to a UTC instant.

    Uses ``fold=0``: ambiguous times take the earlier (pre-transition)
    offset, and nonexistent times are interpreted with the pre-gap offset,
    which lands them after the gap.
    """
    return wall.replace(tzinfo=tz, fold=0).astimezone(UTC)


def local_midnight(day: date, tz: tzinfo) -> datetime:
    return resolve_wall_time(datetime.combine(day, time.min), tz)


def local_end_of_day(day: date, tz: tzinfo) -> datetime:
    return resolve_wall_time(datetime.combine(day, time.max), tz)


def all_day_span(event: EventRecord, tz: tzinfo) -> tuple[date, int]:
    """Return the first local day of an all-day entry and its inclusive day count."""
    first_day = local_date(event.start, tz)
    last_day = local_date(event.end - ONE_MICROSECOND, tz)
    if last_day < first_day:
        last_day = first_day
    return first_day, (last_day - first_day).days + 1


class OccurrenceMaterializer:
    """Expands calendar entries into concrete occurrences inside a query window."""

    def __init__(self, config: Optional[MaterializerConfig] = None):
        self.config = config or MaterializerConfig()
        self._handlers: dict[
            EventKind,
            Callable[[EventRecord, Optional[RecurrenceRule], QueryWindow, str], list[Occurrence]],
        ] = {
            EventKind.SINGLE_TIMED: self._single_timed,
            EventKind.SINGLE_ALL_DAY: self._single_all_day,
            EventKind.RECURRING_TIMED: self._recurring_timed,
            EventKind.RECURRING_ALL_DAY: self._recurring_all_day,
        }

    def materialize(
        self, event: EventRecord, window: QueryWindow, source_id: str = ""
    ) -> list[Occurrence]:
        """Return the occurrences of ``event`` inside ``window``, sorted by start.

        Args:
            event: Decoded calendar entry
            window: Query window
            source_id: Identifier of the feed, copied onto each occurrence

        Returns:
            Deduplicated occurrences ordered by start

        Raises:
            InvalidEventRecord: timed entry without a usable timezone
        """
        if event.is_all_day:
            first_day, _ = all_day_span(event, self._all_day_zone(event, window))
            rule = normalize(event.recurrence_rule, first_day)
        else:
            event_tz = self._event_zone(event)
            rule = normalize(event.recurrence_rule, event.start.astimezone(event_tz))

        kind = classify(event, rule)
        try:
            occurrences = self._handlers[kind](event, rule, window, source_id)
        except UnsupportedRecurrence as e:
            logger.warning("Event %r: %s; using first instance only", event.uid, e)
            fallback = EventKind.SINGLE_ALL_DAY if event.is_all_day else EventKind.SINGLE_TIMED
            occurrences = self._handlers[fallback](event, None, window, source_id)

        return _finalize(occurrences)

    def _event_zone(self, event: EventRecord) -> tzinfo:
        if not event.local_timezone:
            raise InvalidEventRecord("Timed event has no local timezone", uid=event.uid)
        if not is_valid_timezone(event.local_timezone):
            raise InvalidEventRecord(
                f"Timed event has unknown timezone {event.local_timezone!r}", uid=event.uid
            )
        return get_zone(event.local_timezone)

    def _all_day_zone(self, event: EventRecord, window: QueryWindow) -> tzinfo:
        # Date values were decoded as midnight in local_timezone; read them back there
        if event.local_timezone and is_valid_timezone(event.local_timezone):
            return get_zone(event.local_timezone)
        return window.tz

    def _timed_bounds(self, event: EventRecord) -> tuple[datetime, datetime]:
        if event.end <= event.start:
            logger.warning(
                "Event %r ends at or before its start; using default duration", event.uid
            )
            return event.start, event.start + DEFAULT_TIMED_DURATION
        return event.start, event.end

    def _single_timed(
        self, event: EventRecord, _rule: Optional[RecurrenceRule], window: QueryWindow, source_id: str
    ) -> list[Occurrence]:
        start, end = self._timed_bounds(event)
        if not overlaps(start, end, window):
            return []
        return [_occurrence(event, start, end, all_day=False, source_id=source_id)]

    def _single_all_day(
        self, event: EventRecord, _rule: Optional[RecurrenceRule], window: QueryWindow, source_id: str
    ) -> list[Occurrence]:
        first_day, day_count = all_day_span(event, self._all_day_zone(event, window))
        last_day = first_day + timedelta(days=day_count - 1)

        # Only walk the days that can possibly intersect the window
        tz = window.tz
        window_first = window.range_start.astimezone(tz).date() - timedelta(days=1)
        window_last = window.range_end.astimezone(tz).date() + timedelta(days=1)
        day = max(first_day, window_first)
        stop = min(last_day, window_last)

        occurrences = []
        while day <= stop:
            midnight = local_midnight(day, tz)
            if contains_day_start(midnight, window):
                occurrences.append(
                    _occurrence(
                        event, midnight, local_end_of_day(day, tz), all_day=True, source_id=source_id
                    )
                )
            day += timedelta(days=1)
        return occurrences

    def _recurring_timed(
        self, event: EventRecord, rule: Optional[RecurrenceRule], window: QueryWindow, source_id: str
    ) -> list[Occurrence]:
        if rule is None:
            return self._single_timed(event, rule, window, source_id)
        tz = self._event_zone(event)
        start, end = self._timed_bounds(event)
        elapsed = end - start

        anchor_local = start.astimezone(tz).replace(tzinfo=None)
        wall_duration = end.astimezone(tz).replace(tzinfo=None) - anchor_local
        if wall_duration <= timedelta(0):
            wall_duration = elapsed

        range_start_local, range_end_local = padded_local_bounds(
            window, tz, self.config.expansion_pad_days
        )
        # Instances starting before the window can still run into it
        range_start_local -= max(wall_duration, elapsed)
        wall_starts = enumerate_local_starts(
            rule,
            anchor_local,
            range_start_local,
            range_end_local,
            tz,
            self.config.max_occurrences_per_rule,
        )

        resolver = OverrideResolver(event, tz)
        replaced: set[date] = set()
        occurrences: list[Occurrence] = []

        for wall_start in wall_starts:
            resolution = resolver.resolve(wall_start.date())
            if isinstance(resolution, Skip):
                continue
            if isinstance(resolution, Replace):
                replaced.add(wall_start.date())
                replacement = self._override_occurrence(event, resolution.override, window, source_id)
                if replacement is not None and in_window(replacement, window):
                    occurrences.append(replacement)
                continue

            instance_start = resolve_wall_time(wall_start, tz)
            instance_end = resolve_wall_time(wall_start + wall_duration, tz)
            if instance_end <= instance_start:
                instance_end = instance_start + elapsed
            if overlaps(instance_start, instance_end, window):
                occurrences.append(
                    _occurrence(event, instance_start, instance_end, all_day=False, source_id=source_id)
                )

        occurrences.extend(self._moved_overrides(event, resolver, replaced, window, source_id))
        return occurrences

    def _recurring_all_day(
        self, event: EventRecord, rule: Optional[RecurrenceRule], window: QueryWindow, source_id: str
    ) -> list[Occurrence]:
        if rule is None:
            return self._single_all_day(event, rule, window, source_id)
        source_tz = self._all_day_zone(event, window)
        first_day, day_count = all_day_span(event, source_tz)
        tz = window.tz

        anchor_local = datetime.combine(first_day, time.min)
        range_start_local, range_end_local = padded_local_bounds(
            window, tz, self.config.expansion_pad_days
        )
        day_starts = enumerate_local_starts(
            rule,
            anchor_local,
            range_start_local,
            range_end_local,
            tz,
            self.config.max_occurrences_per_rule,
        )

        resolver = OverrideResolver(event, source_tz)
        replaced: set[date] = set()
        occurrences: list[Occurrence] = []

        for day_start in day_starts:
            day = day_start.date()
            midnight = local_midnight(day, tz)
            if not contains_day_start(midnight, window):
                continue

            resolution = resolver.resolve(day)
            if isinstance(resolution, Skip):
                continue
            if isinstance(resolution, Replace):
                replaced.add(day)
                replacement = self._override_occurrence(event, resolution.override, window, source_id)
                if replacement is not None and in_window(replacement, window):
                    occurrences.append(replacement)
                continue

            end = local_midnight(day + timedelta(days=day_count), tz)
            occurrences.append(_occurrence(event, midnight, end, all_day=True, source_id=source_id))

        occurrences.extend(self._moved_overrides(event, resolver, replaced, window, source_id))
        return occurrences

    def _moved_overrides(
        self,
        event: EventRecord,
        resolver: OverrideResolver,
        replaced: set[date],
        window: QueryWindow,
        source_id: str,
    ) -> list[Occurrence]:
        """Emit overrides whose anchor was not among the expanded candidates.

        An instance whose original date lies outside the window can be moved
        into it; it must still show up.
        """
        moved = []
        for day, (_anchor, override) in resolver.override_dates().items():
            if day in replaced:
                continue
            replacement = self._override_occurrence(event, override, window, source_id)
            if replacement is not None and in_window(replacement, window):
                moved.append(replacement)
        return moved

    def _override_occurrence(
        self, base: EventRecord, override: EventRecord, window: QueryWindow, source_id: str
    ) -> Optional[Occurrence]:
        title = override.summary or base.summary
        description = override.description or base.description
        location = override.location or base.location

        if override.is_all_day:
            first_day, day_count = all_day_span(override, self._all_day_zone(override, window))
            start = local_midnight(first_day, window.tz)
            end = local_midnight(first_day + timedelta(days=day_count), window.tz)
            all_day = True
        else:
            start, end = self._timed_bounds(override)
            all_day = False

        if end <= start:
            logger.debug("Dropping degenerate override of %r at %s", base.uid, start)
            return None

        return Occurrence(
            title=title,
            description=description,
            location=location,
            start=start,
            end=end,
            all_day=all_day,
            source_id=source_id,
        )


def _occurrence(
    event: EventRecord, start: datetime, end: datetime, all_day: bool, source_id: str
) -> Occurrence:
    return Occurrence(
        title=event.summary,
        description=event.description,
        location=event.location,
        start=start,
        end=end,
        all_day=all_day,
        source_id=source_id,
    )


def _finalize(occurrences: list[Occurrence]) -> list[Occurrence]:
    """Deduplicate by (title, start, end, all_day) and sort by start."""
    unique: dict[tuple[str, datetime, datetime, bool], Occurrence] = {}
    for occurrence in occurrences:
        key = (occurrence.title, occurrence.start, occurrence.end, occurrence.all_day)
        unique.setdefault(key, occurrence)
    return sorted(unique.values(), key=lambda occurrence: occurrence.start)


_default_materializer = OccurrenceMaterializer()


def materialize(event: EventRecord, window: QueryWindow, source_id: str = "") -> list[Occurrence]:
    """Materialize ``event`` inside ``window`` with default limits."""
    return _default_materializer.materialize(event, window, source_id)
