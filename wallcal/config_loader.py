"""wallcal.config_loader

Typed configuration for the wallcal server.

- Reads YAML (PyYAML) or, for ``.json`` files, JSON.
- Values from the environment (see ``wallcal.core.config_manager``) override
  values from the file.
- Exposes a dataclass ``Config`` and a ``load_config()`` helper.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from .core.timezone_utils import DEFAULT_TIMEZONE, normalize_timezone_name

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("wallcal.yaml")


@dataclass
class Config:
    """Typed configuration for wallcal.

    Fields:
        server_bind / server_port: where the HTTP server listens
        production: serve the static bundle and restrict CORS to frontend_url
        cache_dir: directory for feed and weather cache files
        feed_cache_ttl_seconds: freshness lifetime of cached feeds (0..86400)
        fetch_concurrency: concurrent feed downloads (1..16, default one per feed)
        default_timezone: zone for floating times and date-only values
        openweather_*, weather_*: weather forecast source
        octoprint_*: printer status source
        mqtt_*: garage door state source
        public_config_path: JSON file served by /api/config
    """

    server_bind: str = "0.0.0.0"  # nosec: B104 - intentional default for local network display
    server_port: int = 5500
    production: bool = False
    debug_logging: bool = False
    log_level: str = "INFO"
    frontend_url: Optional[str] = None
    static_dir: Optional[str] = None
    cache_dir: str = "cache"
    feed_cache_ttl_seconds: int = 1200
    fetch_concurrency: Optional[int] = None
    request_timeout: int = 30
    max_retries: int = 3
    retry_backoff_factor: float = 1.5
    max_occurrences_per_rule: int = 1000
    default_timezone: str = DEFAULT_TIMEZONE
    openweather_api_key: Optional[str] = None
    weather_latitude: float = 34.0522
    weather_longitude: float = -118.2437
    weather_cache_hours: float = 6.0
    octoprint_url: Optional[str] = None
    octoprint_api_key: Optional[str] = None
    printer_refresh_interval_seconds: int = 60
    mqtt_enabled: bool = True
    mqtt_broker: Optional[str] = None
    mqtt_port: int = 1883
    mqtt_username: Optional[str] = None
    mqtt_password: Optional[str] = None
    mqtt_garage_door_topic: str = "home/garage/door/state"
    public_config_path: str = "public-config.json"

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric values are coerced and clamped to their allowed ranges,
        unknown keys are ignored, and every coercion is logged.
        """
        if data is None:
            data = {}
        defaults = cls()

        def _coerce(key: str, kind: type, low: Optional[float] = None, high: Optional[float] = None) -> Any:
            default = getattr(defaults, key)
            raw = data.get(key, default)
            try:
                value = kind(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not a %s; using default %r", key, raw, kind.__name__, default)
                return default
            if low is not None and value < low:
                logger.warning("Config %s=%r below minimum; coercing to %r", key, value, low)
                value = kind(low)
            elif high is not None and value > high:
                logger.warning("Config %s=%r above maximum; coercing to %r", key, value, high)
                value = kind(high)
            return value

        def _bool(key: str) -> bool:
            raw = data.get(key, getattr(defaults, key))
            if isinstance(raw, str):
                return raw.strip().lower() in ("1", "true", "yes", "on")
            return bool(raw)

        def _optional_str(key: str) -> Optional[str]:
            raw = data.get(key, getattr(defaults, key))
            if raw is None or str(raw).strip() == "":
                return None
            return str(raw)

        default_tz = _optional_str("default_timezone") or DEFAULT_TIMEZONE
        normalized_tz = normalize_timezone_name(default_tz)
        if normalized_tz is None:
            logger.warning("Config default_timezone=%r is invalid; using %s", default_tz, DEFAULT_TIMEZONE)
            normalized_tz = DEFAULT_TIMEZONE

        unknown = sorted(set(data) - set(asdict(defaults)))
        if unknown:
            logger.debug("Ignoring unknown config keys: %s", ", ".join(unknown))

        return cls(
            server_bind=_optional_str("server_bind") or defaults.server_bind,
            server_port=_coerce("server_port", int, 1, 65535),
            production=_bool("production"),
            debug_logging=_bool("debug_logging"),
            log_level=str(data.get("log_level") or "INFO").upper(),
            frontend_url=_optional_str("frontend_url"),
            static_dir=_optional_str("static_dir"),
            cache_dir=_optional_str("cache_dir") or defaults.cache_dir,
            feed_cache_ttl_seconds=_coerce("feed_cache_ttl_seconds", int, 0, 86400),
            fetch_concurrency=(
                None if data.get("fetch_concurrency") is None else _coerce("fetch_concurrency", int, 1, 16)
            ),
            request_timeout=_coerce("request_timeout", int, 1, 300),
            max_retries=_coerce("max_retries", int, 0, 10),
            retry_backoff_factor=_coerce("retry_backoff_factor", float, 1.0, 10.0),
            max_occurrences_per_rule=_coerce("max_occurrences_per_rule", int, 1, 10000),
            default_timezone=normalized_tz,
            openweather_api_key=_optional_str("openweather_api_key"),
            weather_latitude=_coerce("weather_latitude", float, -90.0, 90.0),
            weather_longitude=_coerce("weather_longitude", float, -180.0, 180.0),
            weather_cache_hours=_coerce("weather_cache_hours", float, 0.0, 48.0),
            octoprint_url=_optional_str("octoprint_url"),
            octoprint_api_key=_optional_str("octoprint_api_key"),
            printer_refresh_interval_seconds=_coerce("printer_refresh_interval_seconds", int, 1, 3600),
            mqtt_enabled=_bool("mqtt_enabled"),
            mqtt_broker=_optional_str("mqtt_broker"),
            mqtt_port=_coerce("mqtt_port", int, 1, 65535),
            mqtt_username=_optional_str("mqtt_username"),
            mqtt_password=_optional_str("mqtt_password"),
            mqtt_garage_door_topic=_optional_str("mqtt_garage_door_topic") or defaults.mqtt_garage_door_topic,
            public_config_path=_optional_str("public_config_path") or defaults.public_config_path,
        )


def _load_yaml_or_json(path: Path) -> Any:
    """Load a mapping from a YAML or JSON file (``.json`` suffix selects JSON)."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    loaded = yaml.safe_load(text)
    # safe_load returns None for empty files
    return {} if loaded is None else loaded


def load_config(path: Optional[str] = None, overrides: Optional[dict[str, Any]] = None) -> Config:
    """Load configuration from a YAML/JSON file and return a Config instance.

    Args:
        path: Optional path to the config file (defaults to ./wallcal.yaml)
        overrides: Values applied on top of the file, typically from the environment

    Returns:
        Config dataclass instance

    Raises:
        ValueError: the file's top level is not a mapping
        yaml.YAMLError / json.JSONDecodeError: the file cannot be parsed
    """
    p = Path(path) if path else DEFAULT_CONFIG_PATH
    data: dict[str, Any] = {}

    if p.exists():
        raw = _load_yaml_or_json(p)
        if not isinstance(raw, dict):
            logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
            raise ValueError("Config file must contain a mapping at top level")
        data.update(raw)
        logger.info("Loaded configuration from %s", p)
    elif path:
        logger.warning("Config file %s not found; using defaults", p)
    else:
        logger.debug("No config file at %s; using defaults", p)

    if overrides:
        data.update(overrides)

    cfg = Config.from_dict(data)
    logger.debug("Configuration values: %s", {k: v for k, v in asdict(cfg).items() if "password" not in k and "key" not in k})
    return cfg
