"""iCalendar feed decoding into ``EventRecord`` values.

Uses the icalendar library for parsing. Timed values carrying a TZID are
re-read as wall-clock times in the IANA zone the TZID maps to (Windows
names and legacy aliases included), so feeds whose VTIMEZONE blocks are
missing or non-standard still land on the right instant. Floating times
and DATE values are interpreted in the default timezone.

RECURRENCE-ID components are attached to the master event with the same
UID as overrides; cancelled instances become exception dates.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, date, datetime, time, timedelta
from typing import Any, Optional, Union

from icalendar import Calendar

from ..core.config_manager import (
    MAX_EVENT_DESCRIPTION_LENGTH,
    MAX_EVENT_LOCATION_LENGTH,
    MAX_EVENT_SUBJECT_LENGTH,
)
from ..core.timezone_utils import DEFAULT_TIMEZONE, get_zone, normalize_timezone_name
from .exceptions import FeedDecodeError
from .models import EventRecord, RecurrenceRule

logger = logging.getLogger(__name__)

DEFAULT_TIMED_DURATION = timedelta(hours=1)
DEFAULT_ALL_DAY_DURATION = timedelta(days=1)

# RRULE parts that change which dates a rule produces but are not expanded
UNSUPPORTED_RRULE_PARTS = ("BYSETPOS", "BYWEEKNO", "BYYEARDAY", "BYHOUR", "BYMINUTE", "BYSECOND")


def _truncate(value: Any, limit: int) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


def _first(values: Any) -> Any:
    if isinstance(values, (list, tuple)):
        return values[0] if values else None
    return values


def _is_cancelled(component: Any) -> bool:
    return str(component.get("STATUS", "")).upper() == "CANCELLED"


class IcsDecoder:
    """Decodes raw iCalendar text into event records."""

    def __init__(self, default_timezone: str = DEFAULT_TIMEZONE):
        self.default_timezone = normalize_timezone_name(default_timezone) or DEFAULT_TIMEZONE

    def decode(
        self, raw: Union[bytes, str], default_timezone: Optional[str] = None
    ) -> list[EventRecord]:
        """Decode a feed into event records.

        Args:
            raw: iCalendar document text
            default_timezone: Zone for floating times and DATE values;
                the calendar's X-WR-TIMEZONE wins when present and valid

        Returns:
            Event records, masters carrying their overrides and exceptions

        Raises:
            FeedDecodeError: the document is not a parseable VCALENDAR
        """
        text = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        if not text or "BEGIN:VCALENDAR" not in text.upper():
            raise FeedDecodeError("Content is not an iCalendar document")

        try:
            calendar = Calendar.from_ical(text)
        except Exception as e:
            raise FeedDecodeError(f"Invalid iCalendar data: {e}") from e

        fallback_tz = default_timezone or self.default_timezone
        calendar_tz = calendar.get("X-WR-TIMEZONE")
        tz_name = normalize_timezone_name(str(calendar_tz)) if calendar_tz else None
        tz_name = tz_name or normalize_timezone_name(fallback_tz) or DEFAULT_TIMEZONE

        masters: list[EventRecord] = []
        instances: dict[str, list[tuple[datetime, EventRecord, bool]]] = defaultdict(list)

        for index, component in enumerate(calendar.walk("VEVENT")):
            uid = str(component.get("UID") or f"event-{index}")
            try:
                record = self._parse_event(component, uid, tz_name)
                recurrence_id = component.get("RECURRENCE-ID")
                if recurrence_id is None:
                    if _is_cancelled(component):
                        logger.debug("Skipping cancelled event %r", uid)
                        continue
                    masters.append(record)
                else:
                    anchor = self._to_instant(recurrence_id, record.local_timezone or tz_name, tz_name)
                    instances[uid].append((anchor, record, _is_cancelled(component)))
            except Exception:
                logger.warning("Skipping unparseable VEVENT %r", uid, exc_info=True)

        records = self._attach_instances(masters, instances)
        logger.debug("Decoded %d events (%d masters)", len(records), len(masters))
        return records

    def _attach_instances(
        self,
        masters: list[EventRecord],
        instances: dict[str, list[tuple[datetime, EventRecord, bool]]],
    ) -> list[EventRecord]:
        """Fold RECURRENCE-ID instances into their recurring master.

        Instances without a recurring master are returned as standalone
        events unless cancelled.
        """
        recurring_by_uid: dict[str, int] = {}
        for position, master in enumerate(masters):
            if master.is_recurring:
                recurring_by_uid.setdefault(master.uid, position)

        records = list(masters)
        for uid, entries in instances.items():
            position = recurring_by_uid.get(uid)
            if position is None:
                for _anchor, record, cancelled in entries:
                    if not cancelled:
                        records.append(record)
                continue

            master = records[position]
            overrides = dict(master.overrides)
            exception_dates = list(master.exception_dates)
            for anchor, record, cancelled in entries:
                if cancelled:
                    exception_dates.append(anchor)
                else:
                    overrides[anchor] = record
            records[position] = master.model_copy(
                update={"overrides": overrides, "exception_dates": tuple(exception_dates)}
            )

        return records

    def _parse_event(self, component: Any, uid: str, default_tz: str) -> EventRecord:
        dtstart = component.get("DTSTART")
        if dtstart is None:
            raise ValueError("VEVENT has no DTSTART")

        is_all_day = not isinstance(dtstart.dt, datetime)
        local_tz = default_tz if is_all_day else self._zone_name(dtstart, default_tz)
        start = self._to_instant(dtstart, local_tz, default_tz)

        dtend = component.get("DTEND")
        duration = component.get("DURATION")
        if dtend is not None:
            end = self._to_instant(dtend, local_tz, default_tz)
        elif duration is not None and isinstance(duration.dt, timedelta):
            end = start + duration.dt
        else:
            end = start + (DEFAULT_ALL_DAY_DURATION if is_all_day else DEFAULT_TIMED_DURATION)

        return EventRecord(
            uid=uid,
            summary=_truncate(component.get("SUMMARY"), MAX_EVENT_SUBJECT_LENGTH) or "",
            description=_truncate(component.get("DESCRIPTION"), MAX_EVENT_DESCRIPTION_LENGTH),
            location=_truncate(component.get("LOCATION"), MAX_EVENT_LOCATION_LENGTH),
            start=start,
            end=end,
            is_all_day=is_all_day,
            local_timezone=local_tz,
            recurrence_rule=self._recurrence_rule(component),
            exception_dates=self._exception_dates(component, local_tz, default_tz),
        )

    def _zone_name(self, prop: Any, default_tz: str) -> str:
        """Pick the IANA zone a timed property was authored in."""
        params = getattr(prop, "params", {}) or {}
        tzid = params.get("TZID")
        if tzid:
            normalized = normalize_timezone_name(str(tzid))
            if normalized:
                return normalized

        tzinfo = getattr(getattr(prop, "dt", None), "tzinfo", None)
        if tzinfo is not None:
            key = getattr(tzinfo, "key", None) or getattr(tzinfo, "zone", None)
            if key:
                normalized = normalize_timezone_name(str(key))
                if normalized and normalized != "UTC":
                    return normalized

        return default_tz

    def _to_instant(self, prop: Any, zone_name: str, default_tz: str) -> datetime:
        """Convert a DTSTART/DTEND/RECURRENCE-ID style property to a UTC instant."""
        value = prop.dt if hasattr(prop, "dt") else prop
        return self._value_to_instant(value, getattr(prop, "params", {}) or {}, zone_name, default_tz)

    def _value_to_instant(
        self, value: Union[date, datetime], params: Any, zone_name: str, default_tz: str
    ) -> datetime:
        if not isinstance(value, datetime):
            return datetime.combine(value, time.min, tzinfo=get_zone(default_tz)).astimezone(UTC)

        tzid = params.get("TZID") if params else None
        if tzid:
            mapped = normalize_timezone_name(str(tzid))
            if mapped:
                return value.replace(tzinfo=get_zone(mapped)).astimezone(UTC)

        if value.tzinfo is None or value.utcoffset() is None:
            return value.replace(tzinfo=get_zone(zone_name)).astimezone(UTC)
        return value.astimezone(UTC)

    def _exception_dates(self, component: Any, zone_name: str, default_tz: str) -> tuple[datetime, ...]:
        raw = component.get("EXDATE")
        if raw is None:
            return ()

        entries = raw if isinstance(raw, list) else [raw]
        instants: list[datetime] = []
        for entry in entries:
            params = getattr(entry, "params", {}) or {}
            for item in getattr(entry, "dts", []):
                try:
                    instants.append(self._value_to_instant(item.dt, params, zone_name, default_tz))
                except Exception:
                    logger.debug("Ignoring unparseable EXDATE value %r", item, exc_info=True)
        return tuple(instants)

    def _recurrence_rule(self, component: Any) -> Optional[RecurrenceRule]:
        rrule = component.get("RRULE")
        if rrule is None:
            return None
        if isinstance(rrule, list):
            if len(rrule) > 1:
                logger.debug("Event has %d RRULEs; expanding the first only", len(rrule))
            rrule = rrule[0]

        ignored = [part for part in UNSUPPORTED_RRULE_PARTS if part in rrule]
        if ignored:
            logger.debug("Ignoring unsupported RRULE parts: %s", ", ".join(ignored))

        frequency = _first(rrule.get("FREQ"))
        interval = _first(rrule.get("INTERVAL"))
        count = _first(rrule.get("COUNT"))
        until = _first(rrule.get("UNTIL"))

        return RecurrenceRule(
            frequency=str(frequency) if frequency else None,
            interval=int(interval) if interval is not None else 1,
            count=int(count) if count is not None else None,
            until=until if isinstance(until, (date, datetime)) else None,
            by_weekday=tuple(str(day) for day in rrule.get("BYDAY", [])),
            by_month_day=tuple(int(day) for day in rrule.get("BYMONTHDAY", [])),
            by_month=tuple(int(month) for month in rrule.get("BYMONTH", [])),
        )
