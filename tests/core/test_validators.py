"""Tests for planoverride input validators."""

import pytest

from planoverride.core.constants import ErrorCode
from planoverride.core.validators import (
    ValidationError,
    validate_cache_ttl,
    validate_config,
    validate_identity_key,
    validate_pattern,
    validate_port,
    validate_rule_record,
    validate_setting_name,
    validate_store_config,
)


class TestValidationError:
    def test_default_code(self):
        assert ValidationError("bad").error_code == ErrorCode.INVALID_INPUT


class TestValidateConfig:
    """Tests for validate_config."""

    def test_valid(self):
        assert validate_config({"enabled": True, "verbose": False, "cache_ttl": 60, "store": None})

    def test_empty(self):
        assert validate_config({})

    @pytest.mark.parametrize(
        "config",
        [
            {"enabled": "yes"},
            {"verbose": 1},
            {"cache_ttl": 0},
            {"store": {"type": "redis"}},
            [],
        ],
    )
    def test_invalid(self, config):
        with pytest.raises(ValidationError):
            validate_config(config)


class TestValidateCacheTtl:
    @pytest.mark.parametrize("ttl", [1, 60, 3600])
    def test_valid(self, ttl):
        assert validate_cache_ttl(ttl)

    @pytest.mark.parametrize("ttl", [0, 3601, -1, 1.0, "60", None, True])
    def test_invalid(self, ttl):
        with pytest.raises(ValidationError):
            validate_cache_ttl(ttl)


class TestValidateStoreConfig:
    def test_yaml(self):
        assert validate_store_config({"type": "yaml", "path": "rules.yaml"})
        assert validate_store_config({"path": None})

    def test_memory(self):
        assert validate_store_config({"type": "memory"})

    def test_sql_requires_url(self):
        with pytest.raises(ValidationError, match="url"):
            validate_store_config({"type": "sql"})
        assert validate_store_config({"type": "sql", "url": "sqlite://"})

    def test_path_must_be_string(self):
        with pytest.raises(ValidationError):
            validate_store_config({"type": "yaml", "path": 5})

    def test_not_dict(self):
        with pytest.raises(ValidationError):
            validate_store_config("rules.yaml")


class TestValidateIdentityKey:
    def test_unset(self):
        assert validate_identity_key(None) is None
        assert validate_identity_key(0) is None

    def test_range(self):
        assert validate_identity_key(-(2**63)) == -(2**63)
        assert validate_identity_key(2**63 - 1) == 2**63 - 1
        with pytest.raises(ValidationError, match="64-bit"):
            validate_identity_key(2**63)

    @pytest.mark.parametrize("key", ["42", 4.2, True])
    def test_type(self, key):
        with pytest.raises(ValidationError):
            validate_identity_key(key)


class TestValidatePattern:
    def test_valid(self):
        assert validate_pattern("SELECT%")
        assert validate_pattern("")

    def test_invalid(self):
        with pytest.raises(ValidationError):
            validate_pattern(None)
        with pytest.raises(ValidationError, match="null"):
            validate_pattern("a\0b")


class TestValidateSettingName:
    @pytest.mark.parametrize("name", ["work_mem", "enable_seqscan", "myapp.batch_size", "_x$1"])
    def test_valid(self, name):
        assert validate_setting_name(name)

    @pytest.mark.parametrize("name", ["", "1abc", "bad name", "a..b", "a.", "x" * 64, None, 5])
    def test_invalid(self, name):
        with pytest.raises(ValidationError):
            validate_setting_name(name)


class TestValidateRuleRecord:
    def test_identity_rule(self):
        assert validate_rule_record({"query_id": 1, "gucs": {}})

    def test_pattern_rule(self):
        assert validate_rule_record({"query_pattern": "%", "gucs": [], "priority": -3})

    def test_needs_match_method(self):
        with pytest.raises(ValidationError, match="query_id"):
            validate_rule_record({"query_id": 0, "query_pattern": None, "gucs": {}})

    def test_needs_settings(self):
        with pytest.raises(ValidationError, match="gucs"):
            validate_rule_record({"query_id": 1})

    @pytest.mark.parametrize(
        "record",
        [
            {"query_id": 1, "gucs": {}, "priority": "1"},
            {"query_id": 1, "gucs": {}, "priority": False},
            {"query_id": "1", "gucs": {}},
            {"query_pattern": 3, "gucs": {}},
            "query_id=1",
        ],
    )
    def test_invalid(self, record):
        with pytest.raises(ValidationError):
            validate_rule_record(record)


class TestValidatePort:
    @pytest.mark.parametrize("port", [1, 8711, "8080", 65535])
    def test_valid(self, port):
        assert validate_port(port)

    @pytest.mark.parametrize("port", [0, 65536, "http", None])
    def test_invalid(self, port):
        with pytest.raises(ValidationError):
            validate_port(port)
