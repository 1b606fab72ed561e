"""Dashboard status API routes: weather, printer, garage door, config and health."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional

from ...core.timezone_utils import now_utc
from ...status.exceptions import StatusServiceError
from ...status.garage_door import GarageDoorService
from ...status.octoprint import OctoPrintService
from ...status.weather import WeatherService

logger = logging.getLogger(__name__)


def load_public_config(path: Path, printer_refresh_interval_seconds: int) -> dict[str, Any]:
    """Read the client-visible config file and add server-side settings.

    Raises:
        OSError: the file cannot be read
        ValueError: the file is not a JSON object
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    data["printerRefreshIntervalSeconds"] = printer_refresh_interval_seconds
    return data


def register_status_routes(
    app: Any,
    weather: WeatherService,
    octoprint: OctoPrintService,
    garage: GarageDoorService,
    public_config_path: Path,
    printer_refresh_interval_seconds: int = 60,
    time_provider: Callable[[], Any] = now_utc,
    version: Optional[str] = None,
) -> None:
    """Register the dashboard status routes.

    Args:
        app: aiohttp web application
        weather: Forecast source
        octoprint: Printer status source
        garage: Garage door state source
        public_config_path: JSON file exposed by ``/api/config``
        printer_refresh_interval_seconds: Poll interval the client should use
        time_provider: Returns the current UTC time (for health output)
        version: Server version reported by the health check
    """
    from aiohttp import web

    async def weather_forecast(_request: Any) -> Any:
        try:
            forecast = await weather.get_forecast()
        except StatusServiceError as e:
            logger.error("Weather API error: %s", e)
            return web.json_response({"message": str(e)}, status=500)
        return web.json_response(forecast)

    async def printer_status(_request: Any) -> Any:
        status = await octoprint.get_status()
        return web.json_response(status.to_api_dict())

    async def garage_door_state(_request: Any) -> Any:
        return web.json_response(garage.get_state())

    async def public_config(_request: Any) -> Any:
        try:
            data = load_public_config(public_config_path, printer_refresh_interval_seconds)
        except (OSError, ValueError) as e:
            logger.error("Error reading %s: %s", public_config_path, e)
            return web.json_response({"error": "Failed to load server configuration."}, status=500)
        return web.json_response(data)

    async def health(_request: Any) -> Any:
        return web.json_response(
            {
                "status": "ok",
                "server_time_iso": time_provider().isoformat(),
                "version": version,
                "services": {
                    "weather": bool(weather.api_key),
                    "octoprint": octoprint.enabled,
                    "garage": garage.enabled,
                },
            }
        )

    app.router.add_get("/api/weather", weather_forecast)
    app.router.add_get("/api/octoprint/status", printer_status)
    app.router.add_get("/api/garage/door/state", garage_door_state)
    app.router.add_get("/api/config", public_config)
    app.router.add_get("/api/health", health)

    logger.debug("Status routes registered")
