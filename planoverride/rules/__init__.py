"""planoverride Rules System.

This module provides override rules and their resolution:
- PatternMatcher: LIKE-style wildcard matching
- Rule, RuleSet: immutable rule records
- RuleStore: memory, YAML and SQL backed rule storage
- RuleCache: TTL-refreshed, reentrancy-guarded rule cache
- Matcher: identity-then-pattern rule resolution
"""

from .cache import CacheState, RuleCache
from .matcher import Matcher, MatchKind, MatchResult
from .models import Rule, RuleSet, normalize_settings, normalize_value
from .patterns import PatternMatcher, like_match
from .store import (
    MemoryRuleStore,
    RuleStore,
    RuleStoreError,
    SqlRuleStore,
    YamlRuleStore,
    create_store,
)

__all__ = [
    # Pattern matching
    "PatternMatcher",
    "like_match",
    # Models
    "Rule",
    "RuleSet",
    "normalize_settings",
    "normalize_value",
    # Stores
    "RuleStore",
    "RuleStoreError",
    "MemoryRuleStore",
    "YamlRuleStore",
    "SqlRuleStore",
    "create_store",
    # Cache and resolution
    "CacheState",
    "RuleCache",
    "Matcher",
    "MatchKind",
    "MatchResult",
]
