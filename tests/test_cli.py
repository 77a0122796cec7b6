"""Tests for the planoverride-ctl command line.

This module tests the command-line interface including:
- Argument parsing and validation
- Configuration building from files and arguments
- The match, rules, add, resolve, serve and refresh commands
- Error reporting and exit codes
"""

import os
from unittest.mock import MagicMock, patch

import httpx
import pytest
import yaml

from planoverride.cli import (
    CLIError,
    build_config,
    main,
    open_store,
    parse_arguments,
    parse_setting_pairs,
)
from planoverride.infrastructure.logger import Logger
from planoverride.rules.store import SqlRuleStore, YamlRuleStore


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for key in list(os.environ):
        if key.startswith("PLANOVERRIDE_"):
            monkeypatch.delenv(key)


class TestParseArguments:
    """Test argument parsing."""

    def test_match(self):
        args = parse_arguments(["match", "SELECT 1", "SELECT%"])

        assert args.command == "match"
        assert args.text == "SELECT 1"
        assert args.pattern == "SELECT%"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_arguments([])

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            parse_arguments(["--version"])

        assert exc_info.value.code == 0
        assert "planoverride-ctl" in capsys.readouterr().out

    def test_store_and_url_exclusive(self):
        with pytest.raises(CLIError, match="either"):
            parse_arguments(["--store", "r.yaml", "--store-url", "sqlite://", "rules"])

    def test_add_requires_target(self):
        with pytest.raises(SystemExit):
            parse_arguments(["add", "--set", "jit=off"])

    def test_add_target_exclusive(self):
        with pytest.raises(SystemExit):
            parse_arguments(["add", "--identity-key", "1", "--pattern", "%", "--set", "jit=off"])

    def test_add_bad_setting(self):
        with pytest.raises(CLIError, match="NAME=VALUE"):
            parse_arguments(["add", "--pattern", "%", "--set", "jit"])

    def test_resolve_needs_input(self):
        with pytest.raises(CLIError, match="resolve"):
            parse_arguments(["resolve"])

    def test_resolve_with_text_only(self):
        args = parse_arguments(["resolve", "--text", ""])
        assert args.text == ""
        assert args.identity_key == 0


class TestParseSettingPairs:
    """Tests for NAME=VALUE parsing."""

    def test_pairs_keep_order_and_duplicates(self):
        assert parse_setting_pairs(["work_mem=1MB", " jit =off", "work_mem=2MB"]) == [
            ("work_mem", "1MB"),
            ("jit", "off"),
            ("work_mem", "2MB"),
        ]

    def test_value_may_contain_equals(self):
        assert parse_setting_pairs(["search_path=a=b"]) == [("search_path", "a=b")]

    def test_empty_value(self):
        assert parse_setting_pairs(["application_name="]) == [("application_name", "")]

    @pytest.mark.parametrize("item", ["jit", "=off"])
    def test_invalid(self, item):
        with pytest.raises(CLIError):
            parse_setting_pairs([item])


class TestBuildConfig:
    """Tests for configuration building."""

    def test_store_argument(self):
        config = build_config(parse_arguments(["--store", "rules.yaml", "rules"]))

        assert config.get("planoverride.store.type") == "yaml"
        assert config.get("planoverride.store.path") == "rules.yaml"

    def test_store_url_argument(self):
        config = build_config(parse_arguments(["--store-url", "sqlite://", "rules"]))

        assert config.get("planoverride.store.type") == "sql"
        assert config.get("planoverride.store.url") == "sqlite://"

    def test_debug_and_log_file(self, tmp_path):
        log_file = str(tmp_path / "ctl.log")
        config = build_config(parse_arguments(["--debug", "--log-file", log_file, "rules"]))

        assert config.get("planoverride.logging.level") == "DEBUG"
        assert config.get("planoverride.logging.file") == log_file

    def test_config_file(self, tmp_path, rules_file):
        path = tmp_path / "planoverride.yaml"
        path.write_text(f"planoverride:\n  store:\n    path: {rules_file}\n")

        config = build_config(parse_arguments(["--config", str(path), "rules"]))

        assert config.get("planoverride.store.path") == str(rules_file)

    def test_arguments_override_file(self, tmp_path):
        path = tmp_path / "planoverride.yaml"
        path.write_text("planoverride:\n  store:\n    path: from-file.yaml\n")

        config = build_config(parse_arguments(["-c", str(path), "--store", "cli.yaml", "rules"]))

        assert config.get("planoverride.store.path") == "cli.yaml"

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(CLIError, match="not found"):
            build_config(parse_arguments(["-c", str(tmp_path / "nope.yaml"), "rules"]))


class TestOpenStore:
    """Tests for store selection."""

    def test_no_store(self):
        config = build_config(parse_arguments(["rules"]))
        with pytest.raises(CLIError, match="No rule store"):
            open_store(config, Logger("planoverride.test.cli"))

    def test_yaml(self, rules_file):
        config = build_config(parse_arguments(["--store", str(rules_file), "rules"]))
        assert isinstance(open_store(config, Logger("planoverride.test.cli")), YamlRuleStore)

    def test_sql(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'rules.db'}"
        config = build_config(parse_arguments(["--store-url", url, "rules"]))
        assert isinstance(open_store(config, Logger("planoverride.test.cli")), SqlRuleStore)


class TestCommands:
    """Tests for command execution through main()."""

    def test_match(self, capsys):
        assert main(["match", "SELECT * FROM orders", "SELECT%orders"]) == 0
        assert capsys.readouterr().out == "match\n"

    def test_no_match(self, capsys):
        assert main(["match", "SELECT 1", "UPDATE%"]) == 1
        assert capsys.readouterr().out == "no match\n"

    def test_rules(self, rules_file, capsys):
        assert main(["--store", str(rules_file), "rules"]) == 0

        data = yaml.safe_load(capsys.readouterr().out)
        assert [rule["id"] for rule in data["rules"]] == [1, 2, 3]
        assert data["rules"][0]["gucs"] == [["enable_seqscan", "off"]]

    def test_rules_empty(self, tmp_path, capsys):
        assert main(["--store", str(tmp_path / "none.yaml"), "rules"]) == 0
        assert capsys.readouterr().out == "No rules\n"

    def test_rules_broken_file(self, tmp_path, capsys):
        path = tmp_path / "rules.yaml"
        path.write_text("rules: [unclosed\n")

        assert main(["--store", str(path), "rules"]) == 1
        assert "Error: YAML parse error" in capsys.readouterr().err

    def test_no_store_configured(self, capsys):
        assert main(["rules"]) == 1
        assert "No rule store configured" in capsys.readouterr().err

    def test_add_pattern(self, rules_file, capsys):
        code = main(
            [
                "--store",
                str(rules_file),
                "add",
                "--pattern",
                "VACUUM%",
                "--set",
                "maintenance_work_mem=1GB",
                "--set",
                "jit=off",
                "--priority",
                "4",
                "--description",
                "vacuum tuning",
            ]
        )

        assert code == 0
        assert capsys.readouterr().out == "Added rule 4\n"
        rule = YamlRuleStore(rules_file).list_rules()[-1]
        assert rule.text_pattern == "VACUUM%"
        assert rule.settings == (("maintenance_work_mem", "1GB"), ("jit", "off"))
        assert rule.priority == 4
        assert rule.description == "vacuum tuning"

    def test_add_identity_to_sql(self, tmp_path, capsys):
        url = f"sqlite:///{tmp_path / 'rules.db'}"
        store = SqlRuleStore(url)
        store.create_schema()

        assert main(["--store-url", url, "add", "--identity-key", "99", "--set", "jit=off"]) == 0

        assert capsys.readouterr().out == "Added rule 1\n"
        assert store.list_rules()[0].identity_key == 99
        store.close()

    def test_add_rejects_zero_identity_key(self, rules_file, capsys):
        assert main(["--store", str(rules_file), "add", "--identity-key", "0", "--set", "a=b"]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_add_bad_setting(self, capsys):
        assert main(["add", "--pattern", "%", "--set", "oops"]) == 1
        assert "Invalid setting" in capsys.readouterr().err

    def test_resolve_identity(self, rules_file, capsys):
        assert main(["--store", str(rules_file), "resolve", "--identity-key", "4242"]) == 0

        out = capsys.readouterr().out
        assert out.startswith("Matched by identity (position 1)\n")
        assert "work_mem" in out

    def test_resolve_pattern(self, rules_file, capsys):
        code = main(["--store", str(rules_file), "resolve", "--text", "SELECT * FROM orders"])

        assert code == 0
        assert capsys.readouterr().out.startswith("Matched by pattern (position 0)\n")

    def test_resolve_no_match(self, rules_file, capsys):
        assert main(["--store", str(rules_file), "resolve", "--text", "VACUUM"]) == 1
        assert capsys.readouterr().out == "No matching rule\n"

    def test_serve(self, rules_file):
        """Test serve starts the control server and stops it on exit."""
        with patch("planoverride.cli.ControlServer") as server_class:
            server = server_class.return_value
            server.is_running.return_value = False
            server.get_url.return_value = "http://127.0.0.1:9000"

            assert main(["--store", str(rules_file), "serve", "--port", "9000"]) == 0

        kwargs = server_class.call_args.kwargs
        assert kwargs["port"] == 9000
        assert kwargs["host"] == "127.0.0.1"
        engine = server_class.call_args.args[0]
        assert len(engine.cache.rules) == 2
        server.start.assert_called_once()
        server.stop.assert_called_once()

    @pytest.mark.parametrize("port", ["70000", "0"])
    def test_serve_rejects_bad_port(self, rules_file, port, capsys):
        with patch("planoverride.cli.ControlServer") as server_class:
            assert main(["--store", str(rules_file), "serve", "--port", port]) == 1

        server_class.assert_not_called()
        assert "Error: Port must be in range 1-65535" in capsys.readouterr().err

    def test_serve_interrupted(self, rules_file, capsys):
        with patch("planoverride.cli.ControlServer") as server_class:
            server = server_class.return_value
            server.is_running.side_effect = KeyboardInterrupt

            assert main(["--store", str(rules_file), "serve"]) == 130

        server.stop.assert_called_once()
        assert "Interrupted" in capsys.readouterr().err

    def test_refresh(self, capsys):
        response = MagicMock(status_code=200)
        response.json.return_value = {"success": True, "rule_count": 3}

        with patch("planoverride.cli.httpx.post", return_value=response) as post:
            assert main(["refresh", "--url", "http://127.0.0.1:9000/"]) == 0

        post.assert_called_once_with("http://127.0.0.1:9000/cache/refresh", json={}, timeout=5.0)
        assert capsys.readouterr().out == "Rule cache reloaded (3 rules)\n"

    def test_refresh_conflict(self, capsys):
        response = MagicMock(status_code=409)
        response.json.return_value = {"error": "Rule refresh already in progress"}

        with patch("planoverride.cli.httpx.post", return_value=response):
            assert main(["refresh"]) == 1

        assert "already in progress" in capsys.readouterr().err

    def test_refresh_unreachable(self, capsys):
        error = httpx.ConnectError("Connection refused")

        with patch("planoverride.cli.httpx.post", side_effect=error):
            assert main(["refresh", "--url", "http://127.0.0.1:1"]) == 1

        assert "Failed to reach control server" in capsys.readouterr().err
