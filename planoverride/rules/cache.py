#!/usr/bin/env python3
"""Rule cache with TTL refresh and reentrancy protection.

This module keeps the current rule set for one execution context:
- TTL-based staleness check
- Wholesale replacement of the rule set on refresh
- Fail-open loading (store errors become an empty rule set)
- A reentrancy flag so a store lookup that passes back through the
  engine cannot trigger a nested refresh

Example:
    >>> cache = RuleCache(YamlRuleStore("rules.yaml"), ttl_seconds=60)
    >>> cache.refresh_if_stale()
    >>> len(cache.rules)
    3
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from planoverride.core.constants import Limits
from planoverride.core.validators import validate_cache_ttl
from planoverride.infrastructure.logger import Logger, get_logger
from planoverride.rules.models import RuleSet
from planoverride.rules.store import RuleStore


@dataclass
class CacheState:
    """Load bookkeeping for a rule cache."""

    ttl_seconds: int = Limits.DEFAULT_CACHE_TTL
    loaded_at: Optional[float] = None
    refreshing_thread: Optional[int] = None

    def validate(self) -> None:
        """Validate cache state configuration."""
        validate_cache_ttl(self.ttl_seconds)

    @property
    def refreshing(self) -> bool:
        return self.refreshing_thread is not None

    def is_stale(self, now: float) -> bool:
        if self.loaded_at is None:
            return True
        return now - self.loaded_at >= self.ttl_seconds


class RuleCache:
    """Per-context cache of enabled rules.

    One cache belongs to one execution context. An administrative refresh
    may run on another thread; the reentrancy flag records which thread is
    loading so only lookups on that thread are treated as nested.
    """

    def __init__(
        self,
        store: Optional[RuleStore],
        ttl_seconds: int = Limits.DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.time,
        logger: Optional[Logger] = None,
        verbose: bool = False,
    ):
        """Initialize rule cache.

        Args:
            store: Rule store to load from; None behaves as an empty store
            ttl_seconds: Seconds before the loaded rule set goes stale
            clock: Time source returning seconds
            logger: Logger for load warnings
            verbose: Log every successful load at INFO
        """
        self.store = store
        self.verbose = verbose
        self._clock = clock
        self._logger = logger or get_logger()
        self._state = CacheState(ttl_seconds=ttl_seconds)
        self._state.validate()
        self._rules = RuleSet(rules=(), loaded_at=0.0)

        # Statistics
        self._loads = 0
        self._failed_loads = 0
        self._skipped_refreshes = 0

    @property
    def rules(self) -> RuleSet:
        """Current rule set snapshot."""
        return self._rules

    @property
    def refreshing(self) -> bool:
        """True while a refresh is in progress."""
        return self._state.refreshing

    @property
    def refreshing_here(self) -> bool:
        """True while the current thread is inside a refresh."""
        return self._state.refreshing_thread == threading.get_ident()

    @property
    def loaded_at(self) -> Optional[float]:
        return self._state.loaded_at

    @property
    def ttl_seconds(self) -> int:
        return self._state.ttl_seconds

    @ttl_seconds.setter
    def ttl_seconds(self, value: int) -> None:
        validate_cache_ttl(value)
        self._state.ttl_seconds = value

    def is_stale(self, now: Optional[float] = None) -> bool:
        """Check whether the rule set needs reloading.

        Args:
            now: Current time (defaults to the cache clock)

        Returns:
            True if never loaded or older than the TTL
        """
        return self._state.is_stale(self._clock() if now is None else now)

    def refresh(self) -> bool:
        """Reload rules from the store.

        Does nothing if a refresh is already running. Store failures are
        logged and leave an empty rule set; ``loaded_at`` advances either way
        so a failing store is not hit on every request.

        Returns:
            True if a reload was attempted, False if skipped as reentrant
        """
        if self._state.refreshing:
            self._skipped_refreshes += 1
            self._logger.debug("Rule refresh already in progress, skipping")
            return False

        self._state.refreshing_thread = threading.get_ident()
        try:
            rules = self._load()
            now = self._clock()
            self._rules = RuleSet(rules=tuple(rules), loaded_at=now)
            self._state.loaded_at = now
        finally:
            self._state.refreshing_thread = None

        return True

    def force_refresh(self) -> bool:
        """Reload rules now, regardless of staleness."""
        return self.refresh()

    def refresh_if_stale(self, now: Optional[float] = None) -> bool:
        """Reload rules only if the current set is stale.

        Returns:
            True if a reload was attempted
        """
        if not self.is_stale(now):
            return False
        return self.refresh()

    def _load(self) -> list:
        self._loads += 1

        if self.store is None:
            self._logger.debug("No rule store configured, using zero rules")
            return []

        try:
            rules = self.store.list_enabled_rules()
        except Exception as e:
            self._failed_loads += 1
            self._logger.warning(
                "Failed to load override rules, continuing without overrides",
                store=type(self.store).__name__,
                error=e,
            )
            return []

        if self.verbose:
            self._logger.info("Loaded override rules", count=len(rules))
        else:
            self._logger.debug("Loaded override rules", count=len(rules))

        return rules

    def invalidate(self) -> None:
        """Mark the cache stale; the current rules stay in use until reload."""
        self._state.loaded_at = None

    def clear(self) -> None:
        """Drop the current rule set and mark the cache stale."""
        self._rules = RuleSet(rules=(), loaded_at=0.0)
        self._state.loaded_at = None

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Cache statistics
        """
        loaded_at = self._state.loaded_at
        return {
            "rules": len(self._rules),
            "dead_rules": len(self._rules.dead_rules),
            "ttl_seconds": self._state.ttl_seconds,
            "loaded_at": loaded_at,
            "age_seconds": None if loaded_at is None else self._clock() - loaded_at,
            "stale": self.is_stale(),
            "loads": self._loads,
            "failed_loads": self._failed_loads,
            "skipped_refreshes": self._skipped_refreshes,
        }
