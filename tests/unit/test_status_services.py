"""Unit tests for the dashboard status services in wallcal.status."""

import json
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
import pytest

from wallcal.status.exceptions import StatusServiceError
from wallcal.status.garage_door import GarageDoorService, parse_broker
from wallcal.status.octoprint import OctoPrintService, PrinterStatus, parse_job_response
from wallcal.status.weather import CACHE_FILE_NAME, WeatherService

pytestmark = [pytest.mark.unit, pytest.mark.fast]

FORECAST = [{"dt": 1718000000, "temp": {"day": 72.5}}]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _client(handler: Any) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWeatherService:
    """Tests for WeatherService.get_forecast()."""

    @pytest.mark.asyncio
    async def test_get_forecast_when_api_ok_then_cached_in_memory_and_file(self, tmp_path: Path) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"list": FORECAST})

        clock = FakeClock()
        async with _client(handler) as client:
            service = WeatherService("key", 34.0, -118.0, cache_dir=tmp_path, client=client, clock=clock)
            assert await service.get_forecast() == FORECAST
            assert await service.get_forecast() == FORECAST

        assert len(calls) == 1
        assert calls[0].url.params["units"] == "imperial"
        assert calls[0].url.params["cnt"] == "10"
        cached = json.loads((tmp_path / CACHE_FILE_NAME).read_text(encoding="utf-8"))
        assert cached == {"forecast": FORECAST, "timestamp": int(clock.now * 1000)}

    @pytest.mark.asyncio
    async def test_get_forecast_when_fresh_cache_file_then_no_request(self, tmp_path: Path) -> None:
        clock = FakeClock()
        (tmp_path / CACHE_FILE_NAME).write_text(
            json.dumps({"forecast": FORECAST, "timestamp": int((clock.now - 60) * 1000)}), encoding="utf-8"
        )

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with _client(handler) as client:
            service = WeatherService("key", 34.0, -118.0, cache_dir=tmp_path, client=client, clock=clock)
            assert await service.get_forecast() == FORECAST

    @pytest.mark.asyncio
    async def test_get_forecast_when_refresh_fails_then_outdated_forecast_served(self, tmp_path: Path) -> None:
        clock = FakeClock()
        responses = iter([httpx.Response(200, json={"list": FORECAST}), httpx.Response(429)])

        async with _client(lambda request: next(responses)) as client:
            service = WeatherService(
                "key", 34.0, -118.0, cache_dir=tmp_path, cache_hours=1, client=client, clock=clock
            )
            await service.get_forecast()
            clock.now += 2 * 3600

            assert await service.get_forecast() == FORECAST

    @pytest.mark.asyncio
    async def test_get_forecast_when_no_api_key_then_raises(self, tmp_path: Path) -> None:
        service = WeatherService(None, 34.0, -118.0, cache_dir=tmp_path)

        with pytest.raises(StatusServiceError):
            await service.get_forecast()

    @pytest.mark.asyncio
    async def test_get_forecast_when_http_error_and_no_cache_then_raises(self, tmp_path: Path) -> None:
        async with _client(lambda request: httpx.Response(401, text="invalid key")) as client:
            service = WeatherService("bad", 34.0, -118.0, cache_dir=tmp_path, client=client)

            with pytest.raises(StatusServiceError) as exc_info:
                await service.get_forecast()

        assert exc_info.value.status_code == 401


class TestOctoPrintService:
    """Tests for OctoPrintService.get_status()."""

    def test_parse_job_response_when_printing_then_progress_rounded(self) -> None:
        status = parse_job_response(
            {"state": "Printing", "progress": {"completion": 42.6}, "job": {"file": {"name": "benchy.gcode"}}}
        )

        assert status.to_api_dict() == {
            "printing": True,
            "progress": 43,
            "fileName": "benchy.gcode",
            "enabled": True,
            "state": "printing",
        }

    def test_parse_job_response_when_idle_then_not_printing(self) -> None:
        status = parse_job_response({"state": "Operational", "progress": {"completion": None}, "job": {"file": {}}})

        assert status.printing is False
        assert status.progress == 0
        assert status.file_name is None

    @pytest.mark.asyncio
    async def test_get_status_when_not_configured_then_disabled(self) -> None:
        status = await OctoPrintService(None, None).get_status()

        assert status.to_api_dict() == {"printing": False, "progress": 0, "fileName": None, "enabled": False}

    @pytest.mark.asyncio
    async def test_get_status_when_ok_then_cached_for_short_period(self) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"state": "Printing", "progress": {"completion": 10}, "job": {}})

        clock = FakeClock()
        async with _client(handler) as client:
            service = OctoPrintService("http://printer.local/", "secret", client=client, clock=clock)
            first = await service.get_status()
            second = await service.get_status()

        assert first == second
        assert len(calls) == 1
        assert str(calls[0].url) == "http://printer.local/api/job"
        assert calls[0].headers["X-Api-Key"] == "secret"

    @pytest.mark.asyncio
    async def test_get_status_when_unreachable_and_no_cache_then_error_marker(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            status = await OctoPrintService("http://printer.local", "secret", client=client).get_status()

        assert status == PrinterStatus(error=True)
        assert status.to_api_dict()["error"] is True


class FakeMqttClient:
    """Records the calls GarageDoorService makes on a paho client."""

    def __init__(self) -> None:
        self.credentials: Any = None
        self.connected_to: Any = None
        self.subscriptions: list[str] = []
        self.loop_started = False
        self.loop_stopped = False
        self.disconnected = False

    def username_pw_set(self, username: str, password: Any) -> None:
        self.credentials = (username, password)

    def reconnect_delay_set(self, min_delay: int, max_delay: int) -> None:
        self.reconnect_delay = (min_delay, max_delay)

    def connect_async(self, host: str, port: int, keepalive: int) -> None:
        self.connected_to = (host, port, keepalive)

    def loop_start(self) -> None:
        self.loop_started = True

    def loop_stop(self) -> None:
        self.loop_stopped = True

    def subscribe(self, topic: str) -> None:
        self.subscriptions.append(topic)

    def disconnect(self) -> None:
        self.disconnected = True


class TestGarageDoorService:
    """Tests for GarageDoorService."""

    @pytest.mark.parametrize(
        "broker,expected",
        [
            ("mqtt://broker.local:1884", ("broker.local", 1884)),
            ("broker.local", ("broker.local", 1883)),
            ("mqtts://broker.local/", ("broker.local", 1883)),
        ],
    )
    def test_parse_broker_when_given_then_host_and_port(self, broker: str, expected: tuple[str, int]) -> None:
        assert parse_broker(broker) == expected

    def test_get_state_when_not_configured_then_disabled(self) -> None:
        service = GarageDoorService(broker=None)

        assert service.get_state() == {"state": None, "lastUpdate": None, "connected": False, "enabled": False}

    def test_start_when_configured_then_connects_in_background(self) -> None:
        fake = FakeMqttClient()
        service = GarageDoorService(
            broker="mqtt://broker.local:1884", username="user", password="pw", client_factory=lambda: fake
        )

        service.start()

        assert fake.connected_to == ("broker.local", 1884, 60)
        assert fake.credentials == ("user", "pw")
        assert fake.loop_started is True

    def test_on_message_when_payload_received_then_state_updated(self) -> None:
        fake = FakeMqttClient()
        clock = FakeClock(1_700_000_000.5)
        service = GarageDoorService(broker="broker.local", client_factory=lambda: fake, clock=clock)
        service.start()

        service._on_connect(fake, None, None, SimpleNamespace(is_failure=False), None)
        service._on_message(fake, None, SimpleNamespace(payload=b"open\n"))

        state = service.get_state()
        assert fake.subscriptions == ["home/garage/door/state"]
        assert state == {
            "state": "open",
            "lastUpdate": 1_700_000_000_500,
            "connected": True,
            "connectionStatus": "connected",
            "enabled": True,
        }

    def test_on_disconnect_when_unexpected_then_offline(self) -> None:
        fake = FakeMqttClient()
        service = GarageDoorService(broker="broker.local", client_factory=lambda: fake)
        service.start()
        service._on_connect(fake, None, None, SimpleNamespace(is_failure=False), None)

        service._on_disconnect(fake, None, None, SimpleNamespace(is_failure=True), None)

        state = service.get_state()
        assert state["connected"] is False
        assert state["connectionStatus"] == "offline"

    def test_disconnect_when_started_then_loop_stopped(self) -> None:
        fake = FakeMqttClient()
        service = GarageDoorService(broker="broker.local", client_factory=lambda: fake)
        service.start()

        service.disconnect()

        assert fake.disconnected is True
        assert fake.loop_stopped is True
