#!/usr/bin/env python3
"""Override engine: rule resolution around a unit of work.

The engine ties the pieces together for one execution context:

    run() -> refresh cache if stale -> resolve rule -> no match: call through
                                                    -> match: snapshot, apply,
                                                       call, restore

One engine (with its own cache and reentrancy flag) belongs to one context;
processes hosting many contexts create one engine per context.

Example:
    >>> engine = OverrideEngine(YamlRuleStore("rules.yaml"), registry)
    >>> plan = engine.run(query.identity_key, query.text, planner.plan, query)
"""

import functools
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from planoverride.core.constants import ConfigKey, Limits
from planoverride.core.validators import validate_config
from planoverride.infrastructure.config_manager import ConfigManager
from planoverride.infrastructure.logger import Logger, get_logger
from planoverride.rules.cache import RuleCache
from planoverride.rules.matcher import Matcher
from planoverride.rules.store import RuleStore, create_store
from planoverride.settings.registry import SettingsNamespace
from planoverride.settings.session import OverrideSession


class EngineState(Enum):
    """Phase of the most recent run()."""

    IDLE = "idle"
    REFRESHING = "refreshing"
    MATCHING = "matching"
    PASSTHROUGH = "passthrough"
    OVERRIDING = "overriding"
    INVOKING = "invoking"
    RESTORING = "restoring"
    DONE = "done"


@dataclass
class EngineConfig:
    """Runtime switches of an engine."""

    enabled: bool = True
    verbose: bool = False
    cache_ttl: int = Limits.DEFAULT_CACHE_TTL

    def validate(self) -> None:
        """Validate configuration.

        Raises:
            ValidationError: If a field has the wrong type or is out of range
        """
        validate_config(asdict(self))

    @classmethod
    def from_dict(cls, section: Dict[str, Any]) -> "EngineConfig":
        """Build from the ``planoverride`` configuration section."""
        config = cls(
            enabled=section.get(ConfigKey.ENABLED, True),
            verbose=section.get(ConfigKey.VERBOSE, False),
            cache_ttl=section.get(ConfigKey.CACHE_TTL, Limits.DEFAULT_CACHE_TTL),
        )
        config.validate()
        return config

    @classmethod
    def from_config_manager(cls, config_manager: ConfigManager) -> "EngineConfig":
        return cls.from_dict(config_manager.section(ConfigKey.ROOT))


class OverrideEngine:
    """Apply rule-selected setting overrides around callables.

    Args:
        store: Rule store; None means no rules
        namespace: Ambient settings the overrides are applied to
        config: Engine switches (defaults to enabled, quiet, 60s TTL)
        clock: Time source for cache staleness
        logger: Logger shared with the cache and sessions
    """

    def __init__(
        self,
        store: Optional[RuleStore],
        namespace: SettingsNamespace,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[Logger] = None,
    ):
        self.config = config or EngineConfig()
        self.config.validate()
        self.namespace = namespace
        self._logger = logger or get_logger()
        self.cache = RuleCache(
            store,
            ttl_seconds=self.config.cache_ttl,
            clock=clock,
            logger=self._logger,
            verbose=self.config.verbose,
        )
        self.matcher = Matcher(self.cache)
        self.state = EngineState.IDLE

        # Statistics
        self._stats = {
            "runs": 0,
            "bypassed": 0,
            "passthrough": 0,
            "overridden": 0,
            "failed": 0,
        }

    @classmethod
    def from_config(
        cls,
        config_manager: ConfigManager,
        namespace: SettingsNamespace,
        logger: Optional[Logger] = None,
    ) -> "OverrideEngine":
        """Build an engine and its store from configuration.

        The engine is registered as a watcher so later configuration changes
        take effect on the running engine.
        """
        section = config_manager.section(ConfigKey.ROOT)
        store_config = section.get(ConfigKey.STORE) or {}
        store = None
        if (
            store_config.get(ConfigKey.STORE_TYPE) == "memory"
            or store_config.get(ConfigKey.STORE_PATH)
            or store_config.get(ConfigKey.STORE_URL)
        ):
            store = create_store(store_config, logger)
        engine = cls(store, namespace, EngineConfig.from_dict(section), logger=logger)
        config_manager.add_watcher(engine.apply_config)
        return engine

    @property
    def store(self) -> Optional[RuleStore]:
        return self.cache.store

    def run(
        self,
        identity_key: Optional[int],
        raw_text: Optional[str],
        operation: Callable[..., Any],
        /,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run an operation with any matching overrides in effect.

        Args:
            identity_key: Request fingerprint; 0 or None if unavailable
            raw_text: Request text; None if unavailable
            operation: Unit of work
            *args: Positional arguments for the operation
            **kwargs: Keyword arguments for the operation

        Returns:
            Whatever the operation returns

        Raises:
            Exception: Whatever the operation raises, unchanged, after
                settings have been restored; SettingError if an override
                cannot be applied; RestoreError if restoring fails after the
                operation succeeded
        """
        self._stats["runs"] += 1

        # A store lookup that comes back through here must not touch the cache
        if not self.config.enabled or self.cache.refreshing_here:
            self._stats["bypassed"] += 1
            return operation(*args, **kwargs)

        self.state = EngineState.IDLE

        if self.cache.is_stale():
            self.state = EngineState.REFRESHING
            self.cache.refresh()

        self.state = EngineState.MATCHING
        rule = self.matcher.resolve(identity_key, raw_text)

        if rule is None:
            self.state = EngineState.PASSTHROUGH
            self._stats["passthrough"] += 1
            try:
                return operation(*args, **kwargs)
            finally:
                self.state = EngineState.DONE

        self.state = EngineState.OVERRIDING
        self._stats["overridden"] += 1
        try:
            with OverrideSession(self.namespace, rule.settings, self._logger):
                if self.config.verbose:
                    self._logger.info(
                        "Applied setting overrides",
                        count=len(rule.settings),
                        identity_key=rule.identity_key or 0,
                        rule_id=rule.rule_id,
                    )
                self.state = EngineState.INVOKING
                try:
                    return operation(*args, **kwargs)
                finally:
                    self.state = EngineState.RESTORING
        except BaseException:
            self._stats["failed"] += 1
            raise
        finally:
            self.state = EngineState.DONE

    def wrap(
        self,
        operation: Callable[..., Any],
        identity_key_fn: Optional[Callable[..., Optional[int]]] = None,
        text_fn: Optional[Callable[..., Optional[str]]] = None,
    ) -> Callable[..., Any]:
        """Return a callable that runs ``operation`` through this engine.

        Args:
            operation: Unit of work
            identity_key_fn: Derives the identity key from the call arguments
            text_fn: Derives the request text from the call arguments

        Returns:
            Wrapped callable with the operation's signature
        """

        @functools.wraps(operation)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            identity_key = identity_key_fn(*args, **kwargs) if identity_key_fn else None
            raw_text = text_fn(*args, **kwargs) if text_fn else None
            return self.run(identity_key, raw_text, operation, *args, **kwargs)

        return wrapper

    def refresh_cache(self) -> bool:
        """Reload rules now, regardless of TTL.

        Returns:
            True if a reload was attempted, False if one was already running
        """
        refreshed = self.cache.force_refresh()
        self._logger.info("Rule cache refresh requested", refreshed=refreshed, rules=len(self.cache.rules))
        return refreshed

    def configure(self, config: EngineConfig) -> None:
        """Replace the engine switches.

        Raises:
            ValidationError: If the new configuration is invalid
        """
        config.validate()
        self.config = config
        self.cache.ttl_seconds = config.cache_ttl
        self.cache.verbose = config.verbose

    def apply_config(self, merged: Dict[str, Any]) -> None:
        """ConfigManager watcher: reconfigure from a merged config tree."""
        self.configure(EngineConfig.from_dict(merged.get(ConfigKey.ROOT) or {}))

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics.

        Returns:
            Run counters, current configuration and cache statistics
        """
        return {
            **self._stats,
            "state": self.state.value,
            "config": asdict(self.config),
            "cache": self.cache.get_stats(),
            "matcher": self.matcher.pattern_matcher.get_stats(),
        }
