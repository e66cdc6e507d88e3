"""Configuration and canonical-time helpers shared by the engine modules."""

from .config_manager import ConfigManager, EngineConfig
from .timezone_utils import DEFAULT_TIMEZONE, to_date_key, today_key

__all__ = ["DEFAULT_TIMEZONE", "ConfigManager", "EngineConfig", "to_date_key", "today_key"]
