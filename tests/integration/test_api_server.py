"""Integration tests for the wallcal HTTP API."""

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp.test_utils import TestClient, TestServer

from wallcal.api.server import make_app
from wallcal.calendar.aggregator import CalendarAggregator
from wallcal.calendar.exceptions import AllFeedsFailedError, FeedFetchError
from wallcal.calendar.models import Occurrence
from wallcal.config_loader import Config
from wallcal.status.exceptions import StatusServiceError
from wallcal.status.octoprint import PrinterStatus

pytestmark = [pytest.mark.integration]

FEED = "https://example.com/family.ics"


def _services() -> dict[str, Any]:
    weather = MagicMock()
    weather.api_key = "key"
    weather.get_forecast = AsyncMock(return_value=[{"temp": {"day": 70}}])
    octoprint = MagicMock()
    octoprint.enabled = False
    octoprint.get_status = AsyncMock(return_value=PrinterStatus(enabled=False))
    garage = MagicMock()
    garage.enabled = False
    garage.get_state.return_value = {"state": None, "lastUpdate": None, "connected": False, "enabled": False}
    return {"weather": weather, "octoprint": octoprint, "garage": garage}


def _config(tmp_path: Path, **overrides: Any) -> Config:
    public_config = tmp_path / "public-config.json"
    public_config.write_text(json.dumps({"calendars": [FEED], "timezone": "America/Los_Angeles"}), encoding="utf-8")
    values = {"public_config_path": str(public_config), "cache_dir": str(tmp_path / "cache")}
    values.update(overrides)
    return Config.from_dict(values)


def _aggregator_with(occurrences: Any = None, error: Any = None) -> MagicMock:
    aggregator = MagicMock(spec=CalendarAggregator)
    aggregator.get_events = AsyncMock(return_value=occurrences or [], side_effect=error)
    return aggregator


class TestCalendarEventsRoute:
    """POST /api/calendars/events"""

    @pytest.mark.asyncio
    async def test_events_when_valid_request_then_occurrences_returned(self, tmp_path: Path) -> None:
        occurrence = Occurrence(
            title="Dentist",
            start=datetime(2024, 1, 15, 18, 0, tzinfo=UTC),
            end=datetime(2024, 1, 15, 19, 0, tzinfo=UTC),
            source_id=FEED,
        )
        aggregator = _aggregator_with([occurrence])
        app = make_app(_config(tmp_path), aggregator=aggregator, **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.post(
                "/api/calendars/events",
                json={"calendarUrls": [FEED], "timezone": "America/Los_Angeles", "daysPast": 3},
            )
            body = await response.json()

        assert response.status == 200
        assert body == [
            {
                "title": "Dentist",
                "description": None,
                "location": None,
                "start": "2024-01-15T18:00:00Z",
                "end": "2024-01-15T19:00:00Z",
                "allDay": False,
                "calendarUrl": FEED,
            }
        ]
        aggregator.get_events.assert_awaited_once_with([FEED], "America/Los_Angeles", 3, 180)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload,message",
        [
            ({"timezone": "UTC"}, "Invalid request body, expected array of URLs."),
            ({"calendarUrls": "https://x", "timezone": "UTC"}, "Invalid request body, expected array of URLs."),
            ({"calendarUrls": [FEED]}, "Invalid request body, expected timezone."),
            ({"calendarUrls": [FEED], "timezone": "UTC", "daysFuture": -1}, None),
        ],
    )
    async def test_events_when_body_invalid_then_400(self, tmp_path: Path, payload: Any, message: Any) -> None:
        aggregator = _aggregator_with()
        app = make_app(_config(tmp_path), aggregator=aggregator, **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.post("/api/calendars/events", json=payload)
            body = await response.json()

        assert response.status == 400
        if message is not None:
            assert body == {"error": message}
        aggregator.get_events.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_events_when_body_not_json_then_400(self, tmp_path: Path) -> None:
        app = make_app(_config(tmp_path), aggregator=_aggregator_with(), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.post("/api/calendars/events", data="not json")

        assert response.status == 400

    @pytest.mark.asyncio
    async def test_events_when_timezone_unknown_then_400(self, tmp_path: Path) -> None:
        # Real aggregator: window validation happens before any fetch
        feed_cache = AsyncMock()
        app = make_app(_config(tmp_path), aggregator=CalendarAggregator(feed_cache), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.post(
                "/api/calendars/events", json={"calendarUrls": [FEED], "timezone": "Atlantis/Capital"}
            )

        assert response.status == 400
        feed_cache.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_events_when_all_feeds_fail_then_502(self, tmp_path: Path) -> None:
        error = AllFeedsFailedError("All 1 calendar feeds failed", {FEED: FeedFetchError("down", url=FEED)})
        app = make_app(_config(tmp_path), aggregator=_aggregator_with(error=error), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.post("/api/calendars/events", json={"calendarUrls": [FEED], "timezone": "UTC"})
            body = await response.json()

        assert response.status == 502
        assert "failed" in body["error"]

    @pytest.mark.asyncio
    async def test_events_when_unexpected_error_in_production_then_generic_500(self, tmp_path: Path) -> None:
        config = _config(tmp_path, production=True, frontend_url="https://wall.example")
        app = make_app(config, aggregator=_aggregator_with(error=RuntimeError("secret detail")), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.post("/api/calendars/events", json={"calendarUrls": [FEED], "timezone": "UTC"})
            body = await response.json()

        assert response.status == 500
        assert body == {"error": "Failed to fetch calendar events."}

    @pytest.mark.asyncio
    async def test_events_when_real_pipeline_then_feed_expanded(
        self, tmp_path: Path, ics_weekly_new_york: str, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("WALLCAL_TEST_TIME", "2024-10-28T12:00:00Z")
        feed_cache = AsyncMock()
        feed_cache.fetch.return_value = ics_weekly_new_york
        app = make_app(_config(tmp_path), aggregator=CalendarAggregator(feed_cache), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.post(
                "/api/calendars/events",
                json={"calendarUrls": [FEED], "timezone": "America/New_York", "daysPast": 0, "daysFuture": 8},
            )
            body = await response.json()

        assert response.status == 200
        assert [event["start"] for event in body] == ["2024-10-30T00:30:00Z", "2024-11-06T01:30:00Z"]
        assert {event["calendarUrl"] for event in body} == {FEED}


class TestStatusRoutes:
    """Weather, printer, garage door, config and health endpoints."""

    @pytest.mark.asyncio
    async def test_weather_when_available_then_forecast_list(self, tmp_path: Path) -> None:
        app = make_app(_config(tmp_path), aggregator=_aggregator_with(), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.get("/api/weather")
            body = await response.json()

        assert response.status == 200
        assert body == [{"temp": {"day": 70}}]

    @pytest.mark.asyncio
    async def test_weather_when_service_fails_then_500_message(self, tmp_path: Path) -> None:
        services = _services()
        services["weather"].get_forecast = AsyncMock(
            side_effect=StatusServiceError("Weather API key is missing", service="weather")
        )
        app = make_app(_config(tmp_path), aggregator=_aggregator_with(), **services)

        async with TestClient(TestServer(app)) as client:
            response = await client.get("/api/weather")
            body = await response.json()

        assert response.status == 500
        assert body == {"message": "Weather API key is missing"}

    @pytest.mark.asyncio
    async def test_octoprint_and_garage_when_disabled_then_disabled_payloads(self, tmp_path: Path) -> None:
        app = make_app(_config(tmp_path), aggregator=_aggregator_with(), **_services())

        async with TestClient(TestServer(app)) as client:
            printer = await (await client.get("/api/octoprint/status")).json()
            garage = await (await client.get("/api/garage/door/state")).json()

        assert printer["enabled"] is False
        assert garage["enabled"] is False

    @pytest.mark.asyncio
    async def test_config_when_file_present_then_refresh_interval_added(self, tmp_path: Path) -> None:
        config = _config(tmp_path, printer_refresh_interval_seconds=45)
        app = make_app(config, aggregator=_aggregator_with(), **_services())

        async with TestClient(TestServer(app)) as client:
            body = await (await client.get("/api/config")).json()

        assert body == {
            "calendars": [FEED],
            "timezone": "America/Los_Angeles",
            "printerRefreshIntervalSeconds": 45,
        }

    @pytest.mark.asyncio
    async def test_config_when_file_missing_then_500(self, tmp_path: Path) -> None:
        config = _config(tmp_path, public_config_path=str(tmp_path / "absent.json"))
        app = make_app(config, aggregator=_aggregator_with(), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.get("/api/config")
            body = await response.json()

        assert response.status == 500
        assert body == {"error": "Failed to load server configuration."}

    @pytest.mark.asyncio
    async def test_health_when_called_then_ok(self, tmp_path: Path) -> None:
        app = make_app(_config(tmp_path), aggregator=_aggregator_with(), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.get("/api/health")
            body = await response.json()

        assert response.status == 200
        assert body["status"] == "ok"
        assert body["services"] == {"weather": True, "octoprint": False, "garage": False}


class TestStaticRoutes:
    """Production mode serves the built dashboard."""

    @pytest.mark.asyncio
    async def test_static_when_production_then_files_and_index_fallback(self, tmp_path: Path) -> None:
        static_dir = tmp_path / "dist"
        static_dir.mkdir()
        (static_dir / "index.html").write_text("<html>wall</html>", encoding="utf-8")
        (static_dir / "app.js").write_text("console.log('wall')", encoding="utf-8")
        config = _config(tmp_path, production=True, static_dir=str(static_dir), frontend_url="https://wall.example")
        app = make_app(config, aggregator=_aggregator_with(), **_services())

        async with TestClient(TestServer(app)) as client:
            script = await client.get("/app.js")
            script_text = await script.text()
            fallback = await client.get("/some/client/route")
            fallback_text = await fallback.text()
            api_miss = await client.get("/api/unknown")

        assert script_text == "console.log('wall')"
        assert fallback_text == "<html>wall</html>"
        assert api_miss.status == 404

    @pytest.mark.asyncio
    async def test_static_when_development_then_not_served(self, tmp_path: Path) -> None:
        app = make_app(_config(tmp_path), aggregator=_aggregator_with(), **_services())

        async with TestClient(TestServer(app)) as client:
            response = await client.get("/")

        assert response.status == 404
