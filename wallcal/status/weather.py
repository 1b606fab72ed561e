"""Daily weather forecast from OpenWeatherMap with memory and file caching.

The forecast is kept in memory and mirrored to ``weatherCache.json`` as
``{"forecast": [...], "timestamp": <epoch ms>}`` so a restart within the
cache lifetime does not hit the API. When a refresh fails the last known
forecast is served, however old.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from ..core.http_client import get_shared_client
from .exceptions import StatusServiceError

logger = logging.getLogger(__name__)

OPENWEATHER_BASE_URL = "https://api.openweathermap.org/data/2.5"
FORECAST_DAYS = 10
REQUEST_TIMEOUT_SECONDS = 10.0
CACHE_FILE_NAME = "weatherCache.json"


class WeatherService:
    """Serves the cached daily forecast, refreshing it when stale."""

    def __init__(
        self,
        api_key: Optional[str],
        latitude: float,
        longitude: float,
        cache_dir: Path | str = "cache",
        cache_hours: float = 6.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.api_key = api_key
        self.latitude = latitude
        self.longitude = longitude
        self.cache_path = Path(cache_dir) / CACHE_FILE_NAME
        self.cache_seconds = cache_hours * 3600
        self._client = client
        self._clock = clock
        self._forecast: Optional[list[dict[str, Any]]] = None
        self._fetched_at = 0.0

        if not api_key:
            logger.error("OpenWeather API key is not configured; weather is unavailable")
        self._load_cache_file()

    def _is_fresh(self) -> bool:
        return self._forecast is not None and self._clock() - self._fetched_at < self.cache_seconds

    def _load_cache_file(self) -> None:
        """Load the file cache when it is present and within the cache lifetime."""
        try:
            payload = json.loads(self.cache_path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.debug("No weather cache file at %s", self.cache_path)
            return
        except (OSError, ValueError) as e:
            logger.warning("Could not read weather cache %s: %s", self.cache_path, e)
            return

        if not isinstance(payload, dict):
            logger.warning("Ignoring malformed weather cache %s", self.cache_path)
            return
        timestamp = payload.get("timestamp")
        forecast = payload.get("forecast")
        if not isinstance(timestamp, (int, float)) or not isinstance(forecast, list):
            logger.warning("Ignoring malformed weather cache %s", self.cache_path)
            return

        fetched_at = timestamp / 1000.0
        if self._clock() - fetched_at >= self.cache_seconds:
            logger.info("Weather cache file is older than %.0fh; will refetch", self.cache_seconds / 3600)
            return

        self._forecast = forecast
        self._fetched_at = fetched_at
        logger.info("Loaded weather forecast from cache file")

    def _write_cache_file(self) -> None:
        payload = {"forecast": self._forecast, "timestamp": int(self._fetched_at * 1000)}
        try:
            self.cache_path.parent.mkdir(parents=True, exist_ok=True)
            self.cache_path.write_text(json.dumps(payload), encoding="utf-8")
        except OSError:
            logger.warning("Failed to write weather cache %s", self.cache_path, exc_info=True)

    async def _fetch(self) -> list[dict[str, Any]]:
        if not self.api_key:
            raise StatusServiceError("Weather API key is missing", service="weather")

        client = self._client or await get_shared_client("status")
        params = {
            "lat": self.latitude,
            "lon": self.longitude,
            "cnt": FORECAST_DAYS,
            "appid": self.api_key,
            "units": "imperial",
        }
        logger.info("Fetching weather for lat=%s lon=%s", self.latitude, self.longitude)
        try:
            response = await client.get(
                f"{OPENWEATHER_BASE_URL}/forecast/daily",
                params=params,
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            # 401 invalid/inactive key, 429 rate limited
            logger.error(
                "OpenWeatherMap returned HTTP %d: %s", e.response.status_code, e.response.text[:200]
            )
            raise StatusServiceError(
                "Failed to fetch weather data from external API",
                service="weather",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Weather request failed: %s", e)
            raise StatusServiceError(
                "Failed to fetch weather data from external API", service="weather"
            ) from e

        forecast = data.get("list") if isinstance(data, dict) else None
        if not isinstance(forecast, list):
            raise StatusServiceError("Weather response has no forecast list", service="weather")
        return forecast

    async def get_forecast(self) -> list[dict[str, Any]]:
        """Return the daily forecast, refreshing it when the cache has expired.

        Raises:
            StatusServiceError: refresh failed and nothing is cached
        """
        if self._forecast is not None and self._is_fresh():
            logger.debug("Serving weather from memory cache")
            return self._forecast

        try:
            forecast = await self._fetch()
        except StatusServiceError:
            if self._forecast is not None:
                logger.warning("Returning outdated weather forecast after failed refresh")
                return self._forecast
            raise

        self._forecast = forecast
        self._fetched_at = self._clock()
        self._write_cache_file()
        return forecast
