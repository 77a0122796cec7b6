#!/usr/bin/env python3
"""Two-pass rule resolution.

Pass 1 looks for an exact identity key match; pass 2, only when pass 1
found nothing, tries text patterns. Within each pass the first rule in the
store's priority order wins. Identity matches beat pattern matches no
matter how the rules' priorities compare.

Example:
    >>> matcher = Matcher(cache)
    >>> rule = matcher.resolve(identity_key=8861213, raw_text="SELECT 1")
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from planoverride.rules.cache import RuleCache
from planoverride.rules.models import Rule, RuleSet
from planoverride.rules.patterns import PatternMatcher


class MatchKind(Enum):
    """How a rule was selected."""

    IDENTITY = "identity"
    PATTERN = "pattern"
    NONE = "none"


@dataclass(frozen=True)
class MatchResult:
    """Outcome of a resolution, for diagnostics."""

    rule: Optional[Rule]
    kind: MatchKind
    position: Optional[int] = None  # index in the rule set

    @property
    def matched(self) -> bool:
        return self.rule is not None


class Matcher:
    """Resolve a request to at most one rule from a RuleCache."""

    def __init__(self, cache: RuleCache, pattern_matcher: Optional[PatternMatcher] = None):
        self.cache = cache
        self.pattern_matcher = pattern_matcher or PatternMatcher()

    def resolve(self, identity_key: Optional[int], raw_text: Optional[str]) -> Optional[Rule]:
        """Find the rule for a request.

        Args:
            identity_key: Request fingerprint; 0 or None if unavailable
            raw_text: Request text; None if unavailable

        Returns:
            Matching rule or None
        """
        return self.explain(identity_key, raw_text).rule

    def explain(self, identity_key: Optional[int], raw_text: Optional[str]) -> MatchResult:
        """Resolve a request and report which pass matched.

        Args:
            identity_key: Request fingerprint; 0 or None if unavailable
            raw_text: Request text; None if unavailable

        Returns:
            MatchResult with the rule, match kind and position
        """
        rules = self.cache.rules

        if identity_key:
            result = self._match_identity(rules, identity_key)
            if result.matched:
                return result

        if raw_text is not None:
            return self._match_pattern(rules, raw_text)

        return MatchResult(rule=None, kind=MatchKind.NONE)

    def _match_identity(self, rules: RuleSet, identity_key: int) -> MatchResult:
        for position, rule in enumerate(rules):
            if rule.identity_key and rule.identity_key == identity_key:
                return MatchResult(rule=rule, kind=MatchKind.IDENTITY, position=position)
        return MatchResult(rule=None, kind=MatchKind.NONE)

    def _match_pattern(self, rules: RuleSet, raw_text: str) -> MatchResult:
        for position, rule in enumerate(rules):
            if rule.text_pattern is not None and self.pattern_matcher.match(
                raw_text, rule.text_pattern
            ):
                return MatchResult(rule=rule, kind=MatchKind.PATTERN, position=position)
        return MatchResult(rule=None, kind=MatchKind.NONE)
