#!/usr/bin/env python3
"""Command-line interface for planoverride.

This module provides ``planoverride-ctl`` for managing override rules:
- Testing LIKE-style patterns against text
- Listing and adding rules in a rule store
- Dry-run resolution of a request against the stored rules
- Serving the HTTP control API
- Triggering a rule cache reload on a running control server

Example:
    >>> from planoverride.cli import parse_arguments
    >>> args = parse_arguments(["match", "SELECT 1", "SELECT%"])
"""

import argparse
import sys
import time
from typing import Dict, List, Optional, Tuple

import httpx
import yaml

from planoverride.control import ControlServer, ControlServerError
from planoverride.core.constants import PLANOVERRIDE_VERSION, ConfigKey, Limits
from planoverride.core.validators import ValidationError, validate_port
from planoverride.engine import OverrideEngine
from planoverride.infrastructure.config_manager import ConfigError, ConfigManager, ConfigSource
from planoverride.infrastructure.logger import Logger
from planoverride.rules.cache import RuleCache
from planoverride.rules.matcher import Matcher
from planoverride.rules.patterns import PatternMatcher
from planoverride.rules.store import RuleStore, RuleStoreError, create_store
from planoverride.settings.registry import SettingsRegistry

DESCRIPTION = "planoverride - rule-driven setting overrides around units of work"


class CLIError(Exception):
    """Exception raised for CLI-related errors."""

    pass


def parse_arguments(args: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        args: Argument list to parse (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace

    Raises:
        SystemExit: On invalid arguments or --help/--version
    """
    parser = argparse.ArgumentParser(
        prog="planoverride-ctl",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Test a pattern
  planoverride-ctl match "SELECT * FROM orders" "SELECT%orders"

  # Add a pattern rule to a YAML rule file
  planoverride-ctl --store rules.yaml add --pattern "SELECT%orders%" --set enable_seqscan=off

  # Show which rule a request would get
  planoverride-ctl --store rules.yaml resolve --identity-key 42 --text "SELECT 1"

  # Serve the control API and reload a running server's cache
  planoverride-ctl --config planoverride.yaml serve --port 8711
  planoverride-ctl refresh --url http://127.0.0.1:8711
        """,
    )

    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {PLANOVERRIDE_VERSION}",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        type=str,
        help="Configuration file path (YAML format)",
    )

    store_group = parser.add_argument_group("rule store options")
    store_group.add_argument("--store", metavar="FILE", help="YAML rule file")
    store_group.add_argument("--store-url", metavar="URL", help="SQLAlchemy database URL")

    log_group = parser.add_argument_group("logging options")
    log_group.add_argument("--debug", action="store_true", help="Enable debug logging")
    log_group.add_argument("--log-file", metavar="FILE", help="Also log to this file")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.required = True

    match_cmd = commands.add_parser("match", help="Test a pattern against text")
    match_cmd.add_argument("text", help="Request text")
    match_cmd.add_argument("pattern", help="Pattern with %% and _ wildcards")

    commands.add_parser("rules", help="List stored rules")

    add_cmd = commands.add_parser("add", help="Add a rule to the store")
    target = add_cmd.add_mutually_exclusive_group(required=True)
    target.add_argument("--identity-key", type=int, metavar="N", help="Match by identity key")
    target.add_argument("--pattern", metavar="PATTERN", help="Match by text pattern")
    add_cmd.add_argument(
        "--set",
        dest="settings",
        metavar="NAME=VALUE",
        action="append",
        required=True,
        help="Setting override (can be specified multiple times)",
    )
    add_cmd.add_argument("--priority", type=int, default=0, help="Rule priority (default: 0)")
    add_cmd.add_argument("--description", help="Free-form description")

    resolve_cmd = commands.add_parser("resolve", help="Show the rule a request resolves to")
    resolve_cmd.add_argument("--identity-key", type=int, default=0, metavar="N")
    resolve_cmd.add_argument("--text", metavar="TEXT")

    serve_cmd = commands.add_parser("serve", help="Serve the HTTP control API")
    serve_cmd.add_argument("--host", default=None, help="Bind address")
    serve_cmd.add_argument("--port", type=int, default=None, help="Port")

    refresh_cmd = commands.add_parser("refresh", help="Reload a running server's rule cache")
    refresh_cmd.add_argument(
        "--url",
        default=f"http://127.0.0.1:{Limits.DEFAULT_CONTROL_PORT}",
        help="Control server base URL",
    )
    refresh_cmd.add_argument("--timeout", type=float, default=5.0, help="Request timeout")

    parsed = parser.parse_args(args)
    _validate_arguments(parsed)
    return parsed


def _validate_arguments(args: argparse.Namespace) -> None:
    """
    Validate parsed arguments.

    Raises:
        CLIError: If validation fails
    """
    if args.store and args.store_url:
        raise CLIError("Use either --store or --store-url, not both")

    if args.command == "add":
        parse_setting_pairs(args.settings)

    if args.command == "resolve" and not args.identity_key and args.text is None:
        raise CLIError("resolve needs --identity-key or --text")


def parse_setting_pairs(items: List[str]) -> List[Tuple[str, str]]:
    """
    Parse ``NAME=VALUE`` arguments into ordered pairs.

    Raises:
        CLIError: If an item has no ``=`` or an empty name
    """
    pairs = []
    for item in items:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise CLIError(f"Invalid setting '{item}', expected NAME=VALUE")
        pairs.append((name.strip(), value))
    return pairs


def build_config(args: argparse.Namespace) -> ConfigManager:
    """
    Build configuration from the config file and command-line arguments.

    Command-line arguments take precedence over the file and environment.
    """
    try:
        config = ConfigManager(args.config)
    except ConfigError as e:
        raise CLIError(str(e))

    root = ConfigKey.ROOT
    if args.store:
        config.set(f"{root}.store.type", "yaml", ConfigSource.CLI_ARGS)
        config.set(f"{root}.store.path", args.store, ConfigSource.CLI_ARGS)
    elif args.store_url:
        config.set(f"{root}.store.type", "sql", ConfigSource.CLI_ARGS)
        config.set(f"{root}.store.url", args.store_url, ConfigSource.CLI_ARGS)

    if args.debug:
        config.set(f"{root}.logging.level", "DEBUG", ConfigSource.CLI_ARGS)
    if args.log_file:
        config.set(f"{root}.logging.file", args.log_file, ConfigSource.CLI_ARGS)

    return config


def setup_logging(config: ConfigManager) -> Logger:
    """Create the CLI logger from the ``logging`` configuration section."""
    return Logger.from_config(config.section(f"{ConfigKey.ROOT}.logging"), name="planoverride")


def open_store(config: ConfigManager, logger: Logger) -> RuleStore:
    """
    Open the configured rule store.

    Raises:
        CLIError: If no store is configured or it cannot be opened
    """
    store_config: Dict = config.section(f"{ConfigKey.ROOT}.store")
    if not store_config.get(ConfigKey.STORE_PATH) and not store_config.get(ConfigKey.STORE_URL):
        raise CLIError("No rule store configured\nUse --store, --store-url or --config")

    try:
        return create_store(store_config, logger)
    except RuleStoreError as e:
        raise CLIError(str(e))


def cmd_match(args: argparse.Namespace) -> int:
    matched = PatternMatcher().match(args.text, args.pattern)
    print("match" if matched else "no match")
    return 0 if matched else 1


def cmd_rules(args: argparse.Namespace, config: ConfigManager, logger: Logger) -> int:
    store = open_store(config, logger)
    try:
        records = [rule.to_record() for rule in store.list_rules()]
    except RuleStoreError as e:
        raise CLIError(str(e))

    if not records:
        print("No rules")
        return 0

    print(yaml.safe_dump({"rules": records}, sort_keys=False), end="")
    return 0


def cmd_add(args: argparse.Namespace, config: ConfigManager, logger: Logger) -> int:
    store = open_store(config, logger)
    record = {
        ConfigKey.RULE_IDENTITY_KEY: args.identity_key,
        ConfigKey.RULE_PATTERN: args.pattern,
        ConfigKey.RULE_SETTINGS: [list(pair) for pair in parse_setting_pairs(args.settings)],
        ConfigKey.RULE_PRIORITY: args.priority,
        ConfigKey.RULE_DESCRIPTION: args.description,
    }
    try:
        rule_id = store.add_rule(record)
    except (RuleStoreError, ValidationError) as e:
        raise CLIError(str(e))

    print(f"Added rule {rule_id}")
    return 0


def cmd_resolve(args: argparse.Namespace, config: ConfigManager, logger: Logger) -> int:
    cache = RuleCache(open_store(config, logger), logger=logger)
    cache.refresh()
    result = Matcher(cache).explain(args.identity_key, args.text)

    if not result.matched:
        print("No matching rule")
        return 1

    print(f"Matched by {result.kind.value} (position {result.position})")
    print(yaml.safe_dump(result.rule.to_record(), sort_keys=False), end="")
    return 0


def cmd_serve(args: argparse.Namespace, config: ConfigManager, logger: Logger) -> int:
    control = config.section(f"{ConfigKey.ROOT}.{ConfigKey.CONTROL}")
    port = args.port if args.port is not None else control.get("port", Limits.DEFAULT_CONTROL_PORT)
    try:
        validate_port(port)
    except ValidationError as e:
        raise CLIError(str(e))

    try:
        engine = OverrideEngine.from_config(config, SettingsRegistry(allow_custom=True), logger)
    except (RuleStoreError, ValidationError) as e:
        raise CLIError(str(e))

    server = ControlServer(
        engine,
        config,
        host=args.host or control.get("host", "127.0.0.1"),
        port=int(port),
        logger=logger,
    )

    try:
        server.start()
    except ControlServerError as e:
        raise CLIError(str(e))

    engine.refresh_cache()
    logger.info("Serving control API", url=server.get_url())

    try:
        while server.is_running():
            time.sleep(1)
    finally:
        server.stop()

    return 0


def cmd_refresh(args: argparse.Namespace) -> int:
    url = args.url.rstrip("/") + "/cache/refresh"
    try:
        response = httpx.post(url, json={}, timeout=args.timeout)
    except httpx.HTTPError as e:
        raise CLIError(f"Failed to reach control server at {args.url}: {e}")

    try:
        payload = response.json()
    except ValueError:
        payload = {}

    if response.status_code != 200:
        raise CLIError(payload.get("error") or f"Control server returned {response.status_code}")

    print(f"Rule cache reloaded ({payload.get('rule_count', 0)} rules)")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.
    """
    try:
        args = parse_arguments(argv)

        if args.command == "match":
            return cmd_match(args)
        if args.command == "refresh":
            return cmd_refresh(args)

        config = build_config(args)
        logger = setup_logging(config)

        handlers = {
            "rules": cmd_rules,
            "add": cmd_add,
            "resolve": cmd_resolve,
            "serve": cmd_serve,
        }
        return handlers[args.command](args, config, logger)

    except CLIError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
