#!/usr/bin/env python3
"""Tests for the hierarchical ConfigManager."""

import logging

import pytest

from planoverride.core.constants import ErrorCode
from planoverride.infrastructure.config_manager import (
    ConfigError,
    ConfigManager,
    ConfigSource,
    ConfigValue,
)


@pytest.fixture
def manager(logger):
    return ConfigManager(environ={}, logger=logger)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "planoverride.yaml"
    path.write_text(
        "planoverride:\n"
        "  cache_ttl: 30\n"
        "  store:\n"
        "    type: yaml\n"
        "    path: /etc/planoverride/rules.yaml\n"
    )
    return path


class TestConfigSource:
    """Tests for ConfigSource enum."""

    def test_precedence_order(self):
        assert ConfigSource.COMPILED_DEFAULTS.value < ConfigSource.USER_CONFIG.value
        assert ConfigSource.USER_CONFIG.value < ConfigSource.ENVIRONMENT.value
        assert ConfigSource.ENVIRONMENT.value < ConfigSource.CLI_ARGS.value
        assert ConfigSource.CLI_ARGS.value < ConfigSource.RUNTIME.value


class TestConfigError:
    """Tests for ConfigError."""

    def test_default_code(self):
        assert ConfigError("bad").error_code == ErrorCode.INVALID_INPUT

    def test_custom_code(self):
        error = ConfigError("missing", ErrorCode.NOT_FOUND)
        assert error.error_code == ErrorCode.NOT_FOUND
        assert error.message == "missing"


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_defaults(self, manager):
        assert manager.get("planoverride.enabled") is True
        assert manager.get("planoverride.verbose") is False
        assert manager.get("planoverride.cache_ttl") == 60
        assert manager.get("planoverride.control.port") == 8711

    def test_get_with_default(self, manager):
        assert manager.get("planoverride.nope", default="x") == "x"
        assert manager.get("planoverride.cache_ttl.deeper", default=1) == 1

    def test_load_file(self, manager, config_file):
        manager.load_file(str(config_file))

        assert manager.get("planoverride.cache_ttl") == 30
        assert manager.get("planoverride.store.path") == "/etc/planoverride/rules.yaml"
        assert manager.get("planoverride.enabled") is True

    def test_constructor_loads_file(self, config_file):
        assert ConfigManager(str(config_file), environ={}).get("planoverride.cache_ttl") == 30

    def test_load_file_not_found(self, manager, tmp_path):
        with pytest.raises(ConfigError) as exc_info:
            manager.load_file(str(tmp_path / "missing.yaml"))
        assert exc_info.value.error_code == ErrorCode.NOT_FOUND

    def test_load_file_invalid_yaml(self, manager, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("planoverride: [unclosed\n")

        with pytest.raises(ConfigError, match="YAML parse error"):
            manager.load_file(str(path))

    def test_load_file_not_dict(self, manager, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError, match="Invalid config format"):
            manager.load_file(str(path))

    def test_environment(self):
        """Test PLANOVERRIDE_* variables map onto the planoverride section."""
        manager = ConfigManager(
            environ={
                "PLANOVERRIDE_CACHE_TTL": "15",
                "PLANOVERRIDE_VERBOSE": "yes",
                "PLANOVERRIDE_STORE__URL": "sqlite:///rules.db",
                "OTHER": "ignored",
            }
        )

        assert manager.get("planoverride.cache_ttl") == 15
        assert manager.get("planoverride.verbose") is True
        assert manager.get("planoverride.store.url") == "sqlite:///rules.db"
        assert manager.get("planoverride.store.type") == "yaml"
        assert manager.get_value("planoverride.cache_ttl").source == ConfigSource.ENVIRONMENT

    def test_environment_beats_file(self, config_file):
        manager = ConfigManager(str(config_file), environ={"PLANOVERRIDE_CACHE_TTL": "5"})
        assert manager.get("planoverride.cache_ttl") == 5

    @pytest.mark.parametrize(
        "raw,expected",
        [("true", True), ("OFF", False), ("42", 42), ("1.5", 1.5), ("64MB", "64MB"), ("1", 1)],
    )
    def test_parse_env_value(self, manager, raw, expected):
        assert manager._parse_env_value(raw) == expected

    def test_set_and_precedence(self, manager, config_file):
        manager.load_file(str(config_file))
        manager.set("planoverride.cache_ttl", 10, ConfigSource.CLI_ARGS)

        assert manager.get("planoverride.cache_ttl") == 10
        value = manager.get_value("planoverride.cache_ttl")
        assert isinstance(value, ConfigValue)
        assert value.source == ConfigSource.CLI_ARGS

        manager.set("planoverride.cache_ttl", 20)
        assert manager.get("planoverride.cache_ttl") == 20

    def test_get_value_missing(self, manager):
        assert manager.get_value("planoverride.nope") is None

    def test_section_merges_sources(self, manager, config_file):
        manager.load_file(str(config_file))
        manager.set("planoverride.store.type", "sql")

        store = manager.section("planoverride.store")

        assert store["type"] == "sql"
        assert store["path"] == "/etc/planoverride/rules.yaml"
        assert manager.section("planoverride.cache_ttl") == {}

    def test_load_dict(self, manager):
        manager.load_dict({"planoverride": {"enabled": False}})

        assert manager.get("planoverride.enabled") is False
        assert manager.get("planoverride.cache_ttl") == 60

    def test_get_all_does_not_alias_sources(self, manager):
        merged = manager.get_all()
        merged["planoverride"]["cache_ttl"] = 1

        assert manager.get("planoverride.cache_ttl") == 60
        assert manager.get_all()["planoverride"]["cache_ttl"] == 60

    def test_reload(self, manager, config_file):
        manager.load_file(str(config_file))
        config_file.write_text("planoverride:\n  cache_ttl: 45\n")
        seen = []
        manager.add_watcher(seen.append)

        manager.reload()

        assert manager.get("planoverride.cache_ttl") == 45
        assert len(seen) == 1
        assert seen[0]["planoverride"]["cache_ttl"] == 45

    def test_reload_missing_file(self, manager, config_file):
        manager.load_file(str(config_file))
        config_file.unlink()

        with pytest.raises(ConfigError):
            manager.reload()

    def test_watchers(self, manager):
        seen = []
        manager.add_watcher(seen.append)

        manager.set("planoverride.verbose", True)
        manager.remove_watcher(seen.append)
        manager.set("planoverride.verbose", False)

        assert len(seen) == 1
        assert seen[0]["planoverride"]["verbose"] is True

    def test_failing_watcher_logged(self, manager, log_handler):
        """Test a failing watcher does not stop the change or other watchers."""
        seen = []

        def broken(config):
            raise ValueError("cache_ttl must be integer")

        manager.add_watcher(broken)
        manager.add_watcher(seen.append)
        manager.set("planoverride.cache_ttl", "soon")

        assert len(seen) == 1
        assert manager.get("planoverride.cache_ttl") == "soon"
        assert any("watcher failed" in m for m in log_handler.messages(logging.WARNING))

    def test_clear(self, manager, config_file):
        manager.load_file(str(config_file))
        manager.set("planoverride.verbose", True)

        manager.clear(ConfigSource.RUNTIME)
        assert manager.get("planoverride.verbose") is False
        assert manager.get("planoverride.cache_ttl") == 30

        manager.clear()
        assert manager.get("planoverride.cache_ttl") == 60

    def test_clear_keeps_defaults(self, manager):
        manager.clear(ConfigSource.COMPILED_DEFAULTS)
        assert manager.get("planoverride.cache_ttl") == 60
