"""Shared test configuration and lightweight fixtures for happenings_engine tests."""

import logging
from datetime import date
from typing import Any, Callable

import pytest

from happenings_engine.core.config_manager import EngineConfig
from happenings_engine.logging_config import ENGINE_MODULES
from happenings_engine.models import EventDefinition


def pytest_configure(config: Any) -> None:
    """Register test markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "critical_path: Core functionality tests")


@pytest.fixture
def make_definition() -> Callable[..., EventDefinition]:
    """Factory for published, active event definitions.

    Defaults to a weekly Monday series anchored on 2026-01-05.
    """

    def _make(**overrides: Any) -> EventDefinition:
        data: dict[str, Any] = {
            "id": "evt-1",
            "anchor_date": date(2026, 1, 5),
            "recurrence_rule": "weekly",
            "is_published": True,
            "base_fields": {"title": "Open Mic", "start_time": "19:00"},
        }
        data.update(overrides)
        return EventDefinition(**data)

    return _make


@pytest.fixture
def engine_config() -> EngineConfig:
    """Default engine configuration pinned to the canonical timezone."""
    return EngineConfig(timezone="America/Denver")


@pytest.fixture
def restore_logging():
    """Restore root and engine logger levels/handlers after a logging test."""
    root = logging.getLogger()
    saved_root_level = root.level
    saved_handlers = list(root.handlers)
    saved_levels = {name: logging.getLogger(name).level for name in ENGINE_MODULES}
    yield
    root.setLevel(saved_root_level)
    for handler in list(root.handlers):
        if handler not in saved_handlers:
            root.removeHandler(handler)
    for name, level in saved_levels.items():
        logging.getLogger(name).setLevel(level)
