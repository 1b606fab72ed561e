"""Calendar events API route for wallcal."""

from __future__ import annotations

import json
import logging
from typing import Any

from ...calendar.aggregator import CalendarAggregator
from ...calendar.exceptions import AllFeedsFailedError, WindowComputationError
from ...calendar.windower import DEFAULT_DAYS_FUTURE, DEFAULT_DAYS_PAST

logger = logging.getLogger(__name__)


class RequestValidationError(ValueError):
    """The request body does not match the events endpoint contract."""


def parse_events_request(body: Any) -> tuple[list[str], str, int, int]:
    """Validate the events request body.

    Returns:
        (calendar URLs, timezone, days past, days future)

    Raises:
        RequestValidationError: missing or mistyped fields
    """
    if not isinstance(body, dict):
        raise RequestValidationError("Invalid request body, expected a JSON object.")

    urls = body.get("calendarUrls")
    if not isinstance(urls, list) or not all(isinstance(url, str) for url in urls):
        raise RequestValidationError("Invalid request body, expected array of URLs.")

    timezone = body.get("timezone")
    if not isinstance(timezone, str) or not timezone.strip():
        raise RequestValidationError("Invalid request body, expected timezone.")

    def _days(key: str, default: int) -> int:
        value = body.get(key)
        if value is None:
            return default
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise RequestValidationError(f"Invalid request body, {key} must be a non-negative integer.")
        return value

    return (
        urls,
        timezone.strip(),
        _days("daysPast", DEFAULT_DAYS_PAST),
        _days("daysFuture", DEFAULT_DAYS_FUTURE),
    )


def register_calendar_routes(app: Any, aggregator: CalendarAggregator, production: bool = False) -> None:
    """Register the calendar events route.

    Args:
        app: aiohttp web application
        aggregator: Aggregator that fetches and expands the feeds
        production: Hide internal error details from clients
    """
    from aiohttp import web

    async def calendar_events(request: Any) -> Any:
        """Return the merged occurrences of the requested feeds."""
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return web.json_response({"error": "Request body must be valid JSON."}, status=400)

        try:
            urls, timezone, days_past, days_future = parse_events_request(body)
        except RequestValidationError as e:
            return web.json_response({"error": str(e)}, status=400)

        try:
            occurrences = await aggregator.get_events(urls, timezone, days_past, days_future)
        except WindowComputationError as e:
            return web.json_response({"error": str(e)}, status=400)
        except AllFeedsFailedError as e:
            logger.error("Error fetching calendar events: %s", e)
            message = "Failed to fetch calendar events." if production else str(e)
            return web.json_response({"error": message}, status=502)
        except Exception as e:
            logger.exception("Unexpected error building calendar events")
            message = "Failed to fetch calendar events." if production else str(e)
            return web.json_response({"error": message}, status=500)

        return web.json_response([occurrence.to_api_dict() for occurrence in occurrences])

    app.router.add_post("/api/calendars/events", calendar_events)
    logger.debug("Calendar routes registered")
