"""Configuration management for the wallcal server."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Accepts an optional leading ``export``
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return {}

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :]

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")
        if key:
            result[key] = val

    return result


# Limits applied to decoded event text fields
MAX_EVENT_SUBJECT_LENGTH = 200
MAX_EVENT_LOCATION_LENGTH = 100
MAX_EVENT_DESCRIPTION_LENGTH = 500

TRUTHY_VALUES = ("1", "true", "yes", "on")


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in TRUTHY_VALUES


# (environment variable, config key, converter)
ENV_SETTINGS: tuple[tuple[str, str, Callable[[str], Any]], ...] = (
    ("WALLCAL_WEB_HOST", "server_bind", str),
    ("WALLCAL_WEB_PORT", "server_port", int),
    ("WALLCAL_PRODUCTION", "production", _is_truthy),
    ("WALLCAL_DEBUG", "debug_logging", _is_truthy),
    ("WALLCAL_LOG_LEVEL", "log_level", str),
    ("WALLCAL_FRONTEND_URL", "frontend_url", str),
    ("WALLCAL_STATIC_DIR", "static_dir", str),
    ("WALLCAL_CACHE_DIR", "cache_dir", str),
    ("WALLCAL_FEED_CACHE_TTL", "feed_cache_ttl_seconds", int),
    ("WALLCAL_FETCH_CONCURRENCY", "fetch_concurrency", int),
    ("WALLCAL_DEFAULT_TIMEZONE", "default_timezone", str),
    ("WALLCAL_OPENWEATHER_API_KEY", "openweather_api_key", str),
    ("WALLCAL_WEATHER_LATITUDE", "weather_latitude", float),
    ("WALLCAL_WEATHER_LONGITUDE", "weather_longitude", float),
    ("WALLCAL_OCTOPRINT_URL", "octoprint_url", str),
    ("WALLCAL_OCTOPRINT_API_KEY", "octoprint_api_key", str),
    ("WALLCAL_OCTOPRINT_REFRESH_INTERVAL", "printer_refresh_interval_seconds", int),
    ("WALLCAL_MQTT_ENABLED", "mqtt_enabled", _is_truthy),
    ("WALLCAL_MQTT_BROKER", "mqtt_broker", str),
    ("WALLCAL_MQTT_PORT", "mqtt_port", int),
    ("WALLCAL_MQTT_USERNAME", "mqtt_username", str),
    ("WALLCAL_MQTT_PASSWORD", "mqtt_password", str),
    ("WALLCAL_MQTT_GARAGE_DOOR_TOPIC", "mqtt_garage_door_topic", str),
    ("WALLCAL_PUBLIC_CONFIG", "public_config_path", str),
)


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file into the process environment.

        Variables already present in the environment are left untouched.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []
        for key, val in parse_env_file(self.env_file_path).items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build a configuration dictionary from WALLCAL_* environment variables.

        Values that fail conversion are logged and ignored.

        Returns:
            Configuration dictionary compatible with ``Config.from_dict``
        """
        cfg: dict[str, Any] = {}
        for env_name, key, convert in ENV_SETTINGS:
            raw = os.environ.get(env_name)
            if raw is None or raw == "":
                continue
            try:
                cfg[key] = convert(raw)
            except ValueError:
                logger.warning("Invalid %s=%r; ignoring", env_name, raw)
        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Load the .env file, then build configuration from the environment."""
        self.load_env_file()
        return self.build_config_from_env()


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and dataclass-like objects.

    Args:
        config: Configuration object (dict or object with attributes)
        key: Configuration key to retrieve
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
