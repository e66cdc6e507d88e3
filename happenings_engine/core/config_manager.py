"""Configuration management for happenings_engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from happenings_engine.core.timezone_utils import DEFAULT_TIMEZONE, normalize_timezone_name

logger = logging.getLogger(__name__)

# Documented expansion defaults
DEFAULT_LOOKAHEAD_DAYS = 90
DEFAULT_MAX_OCCURRENCES_PER_EVENT = 40
DEFAULT_MAX_EVENTS = 200
DEFAULT_MAX_TOTAL_OCCURRENCES = 500

# Environment variable -> EngineConfig attribute
_INT_ENV_KEYS: dict[str, str] = {
    "HAPPENINGS_LOOKAHEAD_DAYS": "lookahead_days",
    "HAPPENINGS_MAX_OCCURRENCES": "max_occurrences_per_event",
    "HAPPENINGS_MAX_EVENTS": "max_events",
    "HAPPENINGS_MAX_TOTAL_OCCURRENCES": "max_total_occurrences",
}


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

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")
        if key:
            result[key] = val

    return result


@dataclass(frozen=True)
class EngineConfig:
    """Expansion settings with explicit defaults.

    Bounds the work done per request: the lookahead window and the per-event,
    per-batch occurrence caps.
    """

    timezone: str = DEFAULT_TIMEZONE
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
    max_occurrences_per_event: int = DEFAULT_MAX_OCCURRENCES_PER_EVENT
    max_events: int = DEFAULT_MAX_EVENTS
    max_total_occurrences: int = DEFAULT_MAX_TOTAL_OCCURRENCES

    @classmethod
    def from_settings(cls, settings: Any) -> EngineConfig:
        """Extract engine configuration from a dict or attribute-style settings object.

        Args:
            settings: Configuration object or dict; missing keys use defaults

        Returns:
            EngineConfig with values from settings or defaults
        """
        if settings is None:
            return cls()
        return cls(
            timezone=normalize_timezone_name(get_config_value(settings, "timezone", DEFAULT_TIMEZONE)),
            lookahead_days=int(get_config_value(settings, "lookahead_days", DEFAULT_LOOKAHEAD_DAYS)),
            max_occurrences_per_event=int(
                get_config_value(settings, "max_occurrences_per_event", DEFAULT_MAX_OCCURRENCES_PER_EVENT)
            ),
            max_events=int(get_config_value(settings, "max_events", DEFAULT_MAX_EVENTS)),
            max_total_occurrences=int(
                get_config_value(settings, "max_total_occurrences", DEFAULT_MAX_TOTAL_OCCURRENCES)
            ),
        )


class ConfigManager:
    """Manages engine configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

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
        """Build configuration dictionary from environment variables.

        Recognizes:
        - HAPPENINGS_TIMEZONE -> 'timezone'
        - HAPPENINGS_LOOKAHEAD_DAYS -> 'lookahead_days' (int)
        - HAPPENINGS_MAX_OCCURRENCES -> 'max_occurrences_per_event' (int)
        - HAPPENINGS_MAX_EVENTS -> 'max_events' (int)
        - HAPPENINGS_MAX_TOTAL_OCCURRENCES -> 'max_total_occurrences' (int)

        Returns:
            Configuration dictionary accepted by EngineConfig.from_settings
        """
        cfg: dict[str, Any] = {}

        tz_name = os.environ.get("HAPPENINGS_TIMEZONE")
        if tz_name:
            cfg["timezone"] = tz_name

        for env_key, attr in _INT_ENV_KEYS.items():
            raw = os.environ.get(env_key)
            if not raw:
                continue
            try:
                value = int(raw)
            except ValueError:
                logger.warning("Invalid %s=%r; ignoring", env_key, raw)
                continue
            if value <= 0:
                logger.warning("Non-positive %s=%r; ignoring", env_key, raw)
                continue
            cfg[attr] = value

        return cfg

    def load_config(self) -> EngineConfig:
        """Load .env file and build the engine configuration from the environment."""
        self.load_env_file()
        return EngineConfig.from_settings(self.build_config_from_env())


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and dataclass-like objects."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
