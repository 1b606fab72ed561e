"""wallcal.api.server: aiohttp server for the wall calendar dashboard.

Wires the calendar aggregator and the status services into an aiohttp
application, binds it (stepping to the next port when the configured one is
taken) and runs until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from pathlib import Path
from typing import Any, Optional

from aiohttp import web

from .. import __version__
from ..calendar.aggregator import CalendarAggregator
from ..calendar.feed_cache import FeedCache
from ..calendar.fetcher import FeedFetcher
from ..calendar.ics_decoder import IcsDecoder
from ..calendar.materializer import MaterializerConfig, OccurrenceMaterializer
from ..config_loader import Config
from ..core.http_client import close_all_clients
from ..status.garage_door import GarageDoorService
from ..status.octoprint import OctoPrintService
from ..status.weather import WeatherService
from .middleware import correlation_id_middleware, create_cors_middleware
from .routes import register_calendar_routes, register_static_routes, register_status_routes

logger = logging.getLogger(__name__)

MAX_PORT_ATTEMPTS = 10


def build_aggregator(config: Config) -> CalendarAggregator:
    """Create the feed fetch/decode/materialize pipeline from config."""
    fetcher = FeedFetcher(settings=config)
    feed_cache = FeedCache(
        fetcher,
        cache_dir=Path(config.cache_dir) / "feeds",
        ttl_seconds=config.feed_cache_ttl_seconds,
    )
    return CalendarAggregator(
        feed_cache,
        decoder=IcsDecoder(config.default_timezone),
        materializer=OccurrenceMaterializer(MaterializerConfig.from_settings(config)),
        fetch_concurrency=config.fetch_concurrency,
    )


def build_services(config: Config) -> tuple[WeatherService, OctoPrintService, GarageDoorService]:
    """Create the dashboard status services from config."""
    weather = WeatherService(
        api_key=config.openweather_api_key,
        latitude=config.weather_latitude,
        longitude=config.weather_longitude,
        cache_dir=config.cache_dir,
        cache_hours=config.weather_cache_hours,
    )
    octoprint = OctoPrintService(config.octoprint_url, config.octoprint_api_key)
    garage = GarageDoorService(
        broker=config.mqtt_broker,
        username=config.mqtt_username,
        password=config.mqtt_password,
        topic=config.mqtt_garage_door_topic,
        port=config.mqtt_port,
        enabled=config.mqtt_enabled,
    )
    return weather, octoprint, garage


def make_app(
    config: Config,
    aggregator: Optional[CalendarAggregator] = None,
    weather: Optional[WeatherService] = None,
    octoprint: Optional[OctoPrintService] = None,
    garage: Optional[GarageDoorService] = None,
) -> web.Application:
    """Create the aiohttp application with middleware and routes.

    Components not passed in are built from ``config``.
    """
    if aggregator is None:
        aggregator = build_aggregator(config)
    if weather is None or octoprint is None or garage is None:
        default_weather, default_octoprint, default_garage = build_services(config)
        weather = weather or default_weather
        octoprint = octoprint or default_octoprint
        garage = garage or default_garage

    app = web.Application(
        middlewares=[
            correlation_id_middleware,
            create_cors_middleware(config.production, config.frontend_url),
        ]
    )

    register_calendar_routes(app, aggregator, production=config.production)
    register_status_routes(
        app,
        weather=weather,
        octoprint=octoprint,
        garage=garage,
        public_config_path=Path(config.public_config_path),
        printer_refresh_interval_seconds=config.printer_refresh_interval_seconds,
        version=__version__,
    )

    if config.production and config.static_dir:
        register_static_routes(app, Path(config.static_dir))
    elif config.production:
        logger.warning("Production mode without static_dir; the dashboard bundle is not served")

    async def _shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested")
        garage.disconnect()

    app.on_shutdown.append(_shutdown)
    return app


async def _start_site(runner: web.AppRunner, host: str, configured_port: int) -> int:
    """Bind the runner, trying successive ports when the address is in use.

    Returns:
        The port actually bound

    Raises:
        RuntimeError: no free port in the attempted range
        OSError: binding failed for a reason other than the port being taken
    """
    for port_offset in range(MAX_PORT_ATTEMPTS):
        port = configured_port + port_offset
        site = web.TCPSite(runner, host=host, port=port)
        try:
            await site.start()
        except OSError as e:
            if "address already in use" not in str(e).lower():
                logger.exception("Failed to start server on %s:%d", host, port)
                raise
            logger.debug("Port %d in use, trying next port", port)
            continue
        if port != configured_port:
            logger.warning("Configured port %d was in use, using port %d instead", configured_port, port)
        return port

    last_port = configured_port + MAX_PORT_ATTEMPTS - 1
    logger.error("Could not find available port in range %d-%d", configured_port, last_port)
    raise RuntimeError(f"No available port found in range {configured_port}-{last_port}")


async def _serve(config: Config, external_stop_event: Optional[asyncio.Event] = None) -> None:
    """Run the server until the stop event is set (by a signal when we own it)."""
    stop_event = external_stop_event or asyncio.Event()

    app = make_app(config)
    runner = web.AppRunner(app)
    await runner.setup()

    try:
        port = await _start_site(runner, config.server_bind, config.server_port)
    except (OSError, RuntimeError):
        await runner.cleanup()
        await close_all_clients()
        raise

    logger.info("Server started successfully on %s:%d", config.server_bind, port)

    if external_stop_event is None:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")

    await runner.cleanup()
    await close_all_clients()
    logger.debug("Shared HTTP clients cleaned up")


def start_server(config: Config) -> None:
    """Start the server and block until it is stopped."""
    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
