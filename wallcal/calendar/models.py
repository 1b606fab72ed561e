"""Data models for decoded calendar entries and materialized occurrences."""

from __future__ import annotations

from datetime import UTC, date, datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator


def _require_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must be timezone-aware")
    return value.astimezone(UTC)


class RecurrenceRule(BaseModel):
    """Subset of an RFC 5545 RRULE that the materializer understands.

    ``frequency`` keeps the raw FREQ token so that unsupported values can be
    rejected by the normalizer instead of at decode time.
    """

    frequency: Optional[str] = Field(default=None, description="Raw FREQ token, e.g. WEEKLY")
    interval: int = Field(default=1, description="INTERVAL between recurrences")
    count: Optional[int] = Field(default=None, description="COUNT limit")
    until: Optional[Union[datetime, date]] = Field(default=None, description="UNTIL bound")
    by_weekday: tuple[str, ...] = Field(default=(), description="BYDAY tokens, e.g. TU or -1FR")
    by_month_day: tuple[int, ...] = Field(default=(), description="BYMONTHDAY values")
    by_month: tuple[int, ...] = Field(default=(), description="BYMONTH values")

    model_config = ConfigDict(frozen=True)

    @field_validator("frequency")
    @classmethod
    def _upper_frequency(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().upper() if value else None

    @field_validator("by_weekday")
    @classmethod
    def _upper_weekdays(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(token.strip().upper() for token in value if token and token.strip())


class EventRecord(BaseModel):
    """One decoded calendar entry, possibly recurring.

    ``start`` and ``end`` are normalized to UTC. For all-day entries ``end``
    is the exclusive boundary (midnight of the day after the last day).
    ``local_timezone`` is the wall-clock zone the entry was authored in and
    drives recurrence expansion for timed entries.
    """

    uid: str = Field(default="", description="Feed-assigned unique identifier")
    summary: str = Field(default="", description="Event title")
    description: Optional[str] = Field(default=None, description="Event description")
    location: Optional[str] = Field(default=None, description="Event location")
    start: datetime = Field(..., description="First occurrence start (UTC)")
    end: datetime = Field(..., description="First occurrence end (UTC)")
    is_all_day: bool = Field(default=False, description="Date-valued (all-day) entry")
    local_timezone: Optional[str] = Field(default=None, description="IANA zone of the author")
    recurrence_rule: Optional[RecurrenceRule] = Field(default=None, description="Parsed RRULE")
    exception_dates: tuple[datetime, ...] = Field(default=(), description="EXDATE instants")
    overrides: dict[datetime, EventRecord] = Field(
        default_factory=dict,
        description="RECURRENCE-ID anchor instant mapped to the replacement instance",
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("start", "end")
    @classmethod
    def _normalize_instant(cls, value: datetime) -> datetime:
        return _require_aware_utc(value)

    @field_validator("exception_dates")
    @classmethod
    def _normalize_exceptions(cls, value: tuple[datetime, ...]) -> tuple[datetime, ...]:
        return tuple(_require_aware_utc(item) for item in value)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_rule is not None


class Occurrence(BaseModel):
    """A concrete instance of an event inside a query window."""

    title: str = Field(default="", description="Display title")
    description: Optional[str] = Field(default=None, description="Display description")
    location: Optional[str] = Field(default=None, description="Display location")
    start: datetime = Field(..., description="Occurrence start instant")
    end: datetime = Field(..., description="Occurrence end instant")
    all_day: bool = Field(default=False, description="Whole-day occurrence")
    source_id: str = Field(default="", description="Feed the occurrence came from")

    model_config = ConfigDict(frozen=True)

    @field_validator("start", "end")
    @classmethod
    def _require_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError("occurrence bounds must be timezone-aware")
        return value

    @model_validator(mode="after")
    def _check_ordering(self) -> Occurrence:
        if not self.start < self.end:
            raise ValueError(f"occurrence start {self.start} is not before end {self.end}")
        return self

    @field_serializer("start", "end")
    def _serialize_instant(self, value: datetime) -> str:
        return value.astimezone(UTC).isoformat().replace("+00:00", "Z")

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape served by the events endpoint."""
        data = self.model_dump()
        return {
            "title": data["title"],
            "description": data["description"],
            "location": data["location"],
            "start": data["start"],
            "end": data["end"],
            "allDay": data["all_day"],
            "calendarUrl": data["source_id"],
        }


EventRecord.model_rebuild()
