"""Shared pytest fixtures for planoverride tests."""
import logging
from pathlib import Path
from typing import Any, Dict, List

import pytest
import yaml

from planoverride.infrastructure.logger import Logger
from planoverride.settings.registry import SettingDefinition, SettingsRegistry, SettingType


class ListHandler(logging.Handler):
    """Collects log records in memory."""

    def __init__(self):
        super().__init__()
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def messages(self, level: int = logging.DEBUG) -> List[str]:
        return [r.getMessage() for r in self.records if r.levelno >= level]


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def log_handler() -> ListHandler:
    return ListHandler()


@pytest.fixture
def logger(log_handler: ListHandler) -> Logger:
    """Logger writing into an in-memory handler at DEBUG level."""
    return Logger(name="planoverride.test", level="DEBUG", handlers=[log_handler])


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry() -> SettingsRegistry:
    """Registry with a few planner-like settings."""
    return SettingsRegistry(
        [
            SettingDefinition("enable_seqscan", SettingType.BOOL, default="on"),
            SettingDefinition("enable_hashjoin", SettingType.BOOL, default="on"),
            SettingDefinition("work_mem", SettingType.STRING, default="4MB"),
            SettingDefinition("random_page_cost", SettingType.REAL, default="4.0", min_value=0),
            SettingDefinition(
                "max_parallel_workers", SettingType.INT, default="8", min_value=0, max_value=1024
            ),
            SettingDefinition(
                "plan_cache_mode",
                SettingType.ENUM,
                default="auto",
                choices=("auto", "force_generic_plan", "force_custom_plan"),
            ),
            SettingDefinition("server_version", SettingType.STRING, default="16.0", read_only=True),
        ]
    )


@pytest.fixture
def sample_records() -> List[Dict[str, Any]]:
    """Rule records in the shape a store returns them."""
    return [
        {
            "id": 1,
            "query_pattern": "SELECT%FROM orders%",
            "gucs": {"enable_seqscan": "off"},
            "priority": 5,
        },
        {
            "id": 2,
            "query_id": 4242,
            "gucs": {"enable_hashjoin": False, "work_mem": "64MB"},
            "priority": 1,
        },
        {
            "id": 3,
            "query_pattern": "%orders%",
            "gucs": {"random_page_cost": 1.1},
            "priority": 0,
            "enabled": False,
        },
    ]


@pytest.fixture
def rules_file(tmp_path: Path, sample_records: List[Dict[str, Any]]) -> Path:
    """YAML rule file holding the sample records."""
    path = tmp_path / "rules.yaml"
    with open(path, "w") as f:
        yaml.safe_dump({"rules": sample_records}, f, sort_keys=False)
    return path
