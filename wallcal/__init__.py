"""wallcal - calendar aggregation server for a wall-mounted dashboard.

Imports stay light here so the package (and its version) can be inspected
without starting the server stack.
"""

__version__ = "0.1.0"

from typing import Any, Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream colorized output to the console.

    Honors WALLCAL_DEBUG (truthy values: "1", "true", "yes", "on") which
    forces DEBUG verbosity regardless of ``level_name``.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("WALLCAL_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none are present to avoid duplicate output.
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message (only the level is colorized)
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        candidate = getattr(logging, level_name.strip().upper(), None)
        if isinstance(candidate, int):
            level = candidate
    root.setLevel(level)
    logging.getLogger(__name__).debug("Logging initialized at level %s", logging.getLevelName(level))


def run_server(args: Optional[Any] = None) -> None:
    """Load configuration and run the wallcal server until stopped.

    Configuration precedence, lowest to highest: config file, environment
    (including a ``.env`` file), command line arguments.

    Args:
        args: Optional argparse namespace with port, host, config and debug
    """
    import logging
    import os

    _init_logging(os.environ.get("WALLCAL_LOG_LEVEL"))
    logger = logging.getLogger(__name__)

    from .api.server import start_server
    from .config_loader import load_config
    from .core.config_manager import ConfigManager
    from .core.logging_config import configure_logging

    overrides = ConfigManager().load_full_config()

    config_path = os.environ.get("WALLCAL_CONFIG")
    if args is not None:
        if getattr(args, "config", None):
            config_path = args.config
        if getattr(args, "port", None) is not None:
            overrides["server_port"] = args.port
            logger.debug("Applied command line port override: %d", args.port)
        if getattr(args, "host", None):
            overrides["server_bind"] = args.host
        if getattr(args, "debug", False):
            overrides["debug_logging"] = True

    config = load_config(config_path, overrides=overrides)

    _init_logging(config.log_level)
    configure_logging(debug_mode=config.debug_logging)

    logger.info("Starting wallcal %s (production=%s)", __version__, config.production)
    start_server(config)
