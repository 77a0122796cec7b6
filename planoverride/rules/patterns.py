#!/usr/bin/env python3
"""LIKE-style wildcard matching for request text.

This module provides the text matcher used by pattern rules:
- ``%`` matches any run of characters, including none
- ``_`` matches exactly one character
- Whole-string, case-sensitive matching
- No escape character: a literal ``%`` or ``_`` cannot be expressed

The scan keeps a single backtrack point (the last ``%`` seen) instead of
recursing, so cost is linear for typical patterns and bounded by
O(len(text) * len(pattern)).

Example:
    >>> matcher = PatternMatcher()
    >>> matcher.match("SELECT * FROM orders WHERE id = 1", "SELECT%FROM orders%")
    True
    >>> matcher.match("abbc", "a_c")
    False
"""

from typing import Any, Dict, Iterable, Optional

WILDCARD_ANY = "%"
WILDCARD_ONE = "_"


def like_match(text: str, pattern: str) -> bool:
    """Match text against a LIKE-style pattern.

    Args:
        text: Text to test
        pattern: Pattern using ``%`` and ``_`` wildcards

    Returns:
        True if the whole text matches the pattern
    """
    t = 0
    p = 0
    t_len = len(text)
    p_len = len(pattern)
    t_backtrack = -1
    p_backtrack = -1

    while t < t_len:
        if p < p_len and pattern[p] == WILDCARD_ANY:
            while p < p_len and pattern[p] == WILDCARD_ANY:
                p += 1
            if p == p_len:
                return True
            p_backtrack = p
            t_backtrack = t
        elif p < p_len and (pattern[p] == WILDCARD_ONE or pattern[p] == text[t]):
            p += 1
            t += 1
        elif p_backtrack >= 0:
            # Let the last % swallow one more character and retry
            t_backtrack += 1
            t = t_backtrack
            p = p_backtrack
        else:
            return False

    while p < p_len and pattern[p] == WILDCARD_ANY:
        p += 1

    return p == p_len


class PatternMatcher:
    """Stateless LIKE-style matcher with evaluation counters.

    The matcher holds no patterns itself; rules own their pattern text and
    the matcher is shared by every rule in a cache.
    """

    def __init__(self):
        """Initialize pattern matcher."""
        self._evaluations = 0
        self._hits = 0

    def match(self, text: str, pattern: str) -> bool:
        """Check if text matches pattern.

        Args:
            text: Raw request text
            pattern: LIKE-style pattern

        Returns:
            True if the whole text matches
        """
        self._evaluations += 1
        matched = like_match(text, pattern)
        if matched:
            self._hits += 1
        return matched

    def first_match(self, text: str, patterns: Iterable[str]) -> Optional[str]:
        """Return the first pattern in order that matches text.

        Args:
            text: Raw request text
            patterns: Candidate patterns in priority order

        Returns:
            Matching pattern or None
        """
        for pattern in patterns:
            if self.match(text, pattern):
                return pattern
        return None

    @staticmethod
    def has_wildcards(pattern: str) -> bool:
        """Check whether a pattern contains any wildcard characters."""
        return WILDCARD_ANY in pattern or WILDCARD_ONE in pattern

    def get_stats(self) -> Dict[str, Any]:
        """Get matcher statistics.

        Returns:
            Evaluation count, hit count and hit rate
        """
        hit_rate = self._hits / self._evaluations if self._evaluations else 0
        return {
            "evaluations": self._evaluations,
            "hits": self._hits,
            "hit_rate": hit_rate,
        }

    def reset_stats(self) -> None:
        """Reset evaluation counters."""
        self._evaluations = 0
        self._hits = 0
