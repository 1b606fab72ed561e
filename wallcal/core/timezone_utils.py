"""Timezone lookup and name normalization for wallcal."""

from __future__ import annotations

import datetime
import logging
import os
import zoneinfo
from functools import lru_cache

logger = logging.getLogger(__name__)

# Zone used for floating times and date-only values when nothing else is configured
DEFAULT_TIMEZONE = "America/Los_Angeles"

# Windows zone names emitted by Outlook/Exchange feeds in TZID parameters
WINDOWS_TZ_MAP: dict[str, str] = {
    "Pacific Standard Time": "America/Los_Angeles",
    "Mountain Standard Time": "America/Denver",
    "Central Standard Time": "America/Chicago",
    "Eastern Standard Time": "America/New_York",
    "Alaskan Standard Time": "America/Anchorage",
    "Hawaiian Standard Time": "Pacific/Honolulu",
    "US Mountain Standard Time": "America/Phoenix",
    "Atlantic Standard Time": "America/Halifax",
    "Newfoundland Standard Time": "America/St_Johns",
    "GMT Standard Time": "Europe/London",
    "Greenwich Standard Time": "Atlantic/Reykjavik",
    "W. Europe Standard Time": "Europe/Berlin",
    "Romance Standard Time": "Europe/Paris",
    "Central Europe Standard Time": "Europe/Budapest",
    "Central European Standard Time": "Europe/Warsaw",
    "E. Europe Standard Time": "Europe/Chisinau",
    "FLE Standard Time": "Europe/Kiev",
    "GTB Standard Time": "Europe/Bucharest",
    "Russian Standard Time": "Europe/Moscow",
    "Israel Standard Time": "Asia/Jerusalem",
    "Arabian Standard Time": "Asia/Dubai",
    "India Standard Time": "Asia/Kolkata",
    "SE Asia Standard Time": "Asia/Bangkok",
    "China Standard Time": "Asia/Shanghai",
    "Singapore Standard Time": "Asia/Singapore",
    "Tokyo Standard Time": "Asia/Tokyo",
    "Korea Standard Time": "Asia/Seoul",
    "AUS Eastern Standard Time": "Australia/Sydney",
    "E. Australia Standard Time": "Australia/Brisbane",
    "W. Australia Standard Time": "Australia/Perth",
    "New Zealand Standard Time": "Pacific/Auckland",
    "E. South America Standard Time": "America/Sao_Paulo",
    "Argentina Standard Time": "America/Argentina/Buenos_Aires",
    "South Africa Standard Time": "Africa/Johannesburg",
    "Egypt Standard Time": "Africa/Cairo",
    "UTC": "UTC",
}

# Legacy and alias zone names mapped to canonical IANA identifiers
TZ_ALIAS_MAP: dict[str, str] = {
    "US/Pacific": "America/Los_Angeles",
    "US/Mountain": "America/Denver",
    "US/Central": "America/Chicago",
    "US/Eastern": "America/New_York",
    "US/Alaska": "America/Anchorage",
    "US/Hawaii": "Pacific/Honolulu",
    "US/Arizona": "America/Phoenix",
    "GMT": "UTC",
    "Etc/UTC": "UTC",
    "Etc/GMT": "UTC",
    "Universal": "UTC",
    "Zulu": "UTC",
    "Z": "UTC",
    "PST8PDT": "America/Los_Angeles",
    "MST7MDT": "America/Denver",
    "CST6CDT": "America/Chicago",
    "EST5EDT": "America/New_York",
    "Asia/Calcutta": "Asia/Kolkata",
    "Asia/Rangoon": "Asia/Yangon",
    "America/Godthab": "America/Nuuk",
}


@lru_cache(maxsize=64)
def get_zone(tz_name: str) -> zoneinfo.ZoneInfo:
    """Return the ZoneInfo for an IANA identifier.

    Raises:
        zoneinfo.ZoneInfoNotFoundError: the identifier is unknown
        ValueError: the identifier is malformed
    """
    return zoneinfo.ZoneInfo(tz_name)


def is_valid_timezone(tz_name: str | None) -> bool:
    if not tz_name or not isinstance(tz_name, str):
        return False
    try:
        get_zone(tz_name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        return False
    return True


def normalize_timezone_name(tz_str: str | None) -> str | None:
    """Normalize a timezone string to a canonical IANA identifier.

    Windows zone names are mapped first, then legacy aliases. The result is
    validated with zoneinfo.

    Args:
        tz_str: Windows name, alias or IANA identifier

    Returns:
        Canonical IANA identifier, or None when the name cannot be resolved

    Examples:
        >>> normalize_timezone_name("Eastern Standard Time")
        'America/New_York'
        >>> normalize_timezone_name("US/Pacific")
        'America/Los_Angeles'
    """
    if not tz_str:
        return None

    candidate = tz_str.strip().strip('"')
    candidate = WINDOWS_TZ_MAP.get(candidate, candidate)
    candidate = TZ_ALIAS_MAP.get(candidate, candidate)

    if is_valid_timezone(candidate):
        return candidate

    logger.warning("Unrecognized timezone name: %r", tz_str)
    return None


def get_default_timezone(fallback: str = DEFAULT_TIMEZONE) -> str:
    """Return WALLCAL_DEFAULT_TIMEZONE when valid, otherwise ``fallback``."""
    configured = os.environ.get("WALLCAL_DEFAULT_TIMEZONE", fallback)
    normalized = normalize_timezone_name(configured)
    if normalized is None:
        logger.warning("Invalid default timezone %r, falling back to %r", configured, fallback)
        return fallback
    return normalized


def now_utc() -> datetime.datetime:
    """Return the current UTC time.

    Can be pinned for testing via the WALLCAL_TEST_TIME environment variable
    (ISO 8601, e.g. "2024-10-28T08:00:00-04:00"; naive values are taken as UTC).
    """
    test_time = os.environ.get("WALLCAL_TEST_TIME")
    if test_time:
        from dateutil import parser as date_parser

        try:
            dt = date_parser.isoparse(test_time)
        except ValueError as e:
            logger.warning("Failed to parse WALLCAL_TEST_TIME=%r: %s", test_time, e)
        else:
            if dt.tzinfo is None:
                return dt.replace(tzinfo=datetime.UTC)
            return dt.astimezone(datetime.UTC)

    return datetime.datetime.now(datetime.UTC)
