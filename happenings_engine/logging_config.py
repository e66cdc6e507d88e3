"""
Central logging configuration for happenings_engine.

The engine itself only emits records through module loggers. Host
applications that have no logging setup of their own can call
:func:`configure_logging` to get a colorized console handler and
engine-wide levels.
"""

import logging
import os
import sys
from typing import Optional

from colorlog import ColoredFormatter

ENGINE_MODULES = [
    "happenings_engine",
    "happenings_engine.recurrence",
    "happenings_engine.expander",
    "happenings_engine.overrides",
    "happenings_engine.timeline",
    "happenings_engine.verification",
    "happenings_engine.models",
    "happenings_engine.core.config_manager",
    "happenings_engine.core.timezone_utils",
]

# HH:MM:SS  LEVEL   logger.name: message, only the level is colorized
LOG_FORMAT = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

_TRUTHY = ("1", "true", "yes", "on")
_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR")


def build_console_handler(level: int = logging.INFO) -> logging.Handler:
    """Create a stderr handler with the colorized engine format."""
    handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt="%H:%M:%S", log_colors=LOG_COLORS))
    return handler


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for happenings_engine.

    Args:
        debug_mode: Whether to enable debug logging for engine modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        HAPPENINGS_DEBUG: Set to '1', 'true', 'yes' or 'on' to force debug logging
        HAPPENINGS_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("HAPPENINGS_DEBUG", "").strip().lower() in _TRUTHY
    env_log_level = os.getenv("HAPPENINGS_LOG_LEVEL", "").strip().upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in _LEVEL_NAMES:
        root_level = getattr(logging, env_log_level)

    # Host-installed handlers are left alone
    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    if not root_logger.handlers:
        root_logger.addHandler(build_console_handler(root_level))

    engine_level = logging.DEBUG if final_debug else logging.INFO
    for module in ENGINE_MODULES:
        logging.getLogger(module).setLevel(engine_level)

    if final_debug:
        root_logger.info("Debug logging enabled for happenings_engine modules")
    else:
        root_logger.debug("Production logging configuration applied")


def reset_logging_to_debug() -> None:
    """Reset root and engine loggers to DEBUG for troubleshooting."""
    logging.getLogger().setLevel(logging.DEBUG)
    for module in ENGINE_MODULES:
        logging.getLogger(module).setLevel(logging.DEBUG)

    logging.getLogger().info("All happenings_engine loggers reset to DEBUG level")


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ENGINE_MODULES:
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
