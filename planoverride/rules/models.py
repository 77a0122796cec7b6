#!/usr/bin/env python3
"""Rule data model for setting overrides.

This module defines the immutable records the engine works with:
- Rule: identity key and/or text pattern mapped to ordered setting overrides
- RuleSet: an ordered, immutable snapshot of rules as delivered by a store
- normalize_settings: turn a raw settings payload into (name, value) pairs

Example:
    >>> rule = Rule.from_record({
    ...     "query_pattern": "SELECT%FROM orders%",
    ...     "gucs": {"enable_seqscan": False, "work_mem": "64MB"},
    ...     "priority": 10,
    ... })
    >>> rule.settings
    (('enable_seqscan', 'off'), ('work_mem', '64MB'))
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from planoverride.core.constants import ConfigKey, SettingPair
from planoverride.core.validators import ValidationError, validate_identity_key, validate_setting_name
from planoverride.infrastructure.logger import Logger, get_logger

RawSettings = Union[Mapping[str, Any], Sequence[Sequence[Any]], None]


def normalize_value(value: Any) -> Optional[str]:
    """Render a scalar setting value as text.

    Args:
        value: Raw value from the store payload

    Returns:
        Text value, or None when the value is not a supported scalar
    """
    # bool is an int subclass, check it first
    if isinstance(value, bool):
        return "on" if value else "off"
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    return None


def normalize_settings(raw: RawSettings, logger: Optional[Logger] = None) -> Tuple[SettingPair, ...]:
    """Normalize a settings payload into ordered (name, value) pairs.

    Accepts a mapping (insertion order kept) or a sequence of pairs
    (duplicates kept). Entries with an invalid name or a non-scalar value
    are dropped with a warning; the remaining entries are returned.

    Args:
        raw: Mapping or sequence of pairs
        logger: Logger for dropped entries

    Returns:
        Tuple of (name, value) string pairs
    """
    logger = logger or get_logger()

    if raw is None:
        return ()

    if isinstance(raw, Mapping):
        items: List[Any] = list(raw.items())
    elif isinstance(raw, (list, tuple)):
        items = list(raw)
    else:
        logger.warning("Skipping settings payload that is not an object", type=type(raw).__name__)
        return ()

    pairs: List[SettingPair] = []
    for item in items:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            logger.warning("Skipping malformed setting entry", entry=repr(item))
            continue

        name, value = item
        try:
            validate_setting_name(name)
        except ValidationError as e:
            logger.warning("Skipping setting with invalid name", name=repr(name), error=e)
            continue

        text = normalize_value(value)
        if text is None:
            logger.warning(
                "Skipping non-scalar setting value", name=name, type=type(value).__name__
            )
            continue

        pairs.append((name, text))

    return tuple(pairs)


@dataclass(frozen=True)
class Rule:
    """A declarative override rule.

    A rule with neither identity key nor pattern is legal but never matches.
    """

    identity_key: Optional[int] = None
    text_pattern: Optional[str] = None
    settings: Tuple[SettingPair, ...] = ()
    priority: int = 0
    enabled: bool = True
    rule_id: Optional[int] = None
    description: Optional[str] = None

    @classmethod
    def from_record(cls, record: Dict[str, Any], logger: Optional[Logger] = None) -> "Rule":
        """Build a rule from a store record.

        Args:
            record: Dict with query_id, query_pattern, gucs, priority, ...
            logger: Logger for dropped settings

        Returns:
            Rule instance

        Raises:
            ValidationError: If the identity key or priority has the wrong type
        """
        pattern = record.get(ConfigKey.RULE_PATTERN)
        if pattern is not None and not isinstance(pattern, str):
            raise ValidationError(f"Rule pattern must be string: {pattern!r}")

        priority = record.get(ConfigKey.RULE_PRIORITY)
        if priority is None:
            priority = 0
        elif isinstance(priority, bool) or not isinstance(priority, int):
            raise ValidationError(f"Rule priority must be integer: {priority!r}")

        return cls(
            identity_key=validate_identity_key(record.get(ConfigKey.RULE_IDENTITY_KEY)),
            text_pattern=pattern,
            settings=normalize_settings(record.get(ConfigKey.RULE_SETTINGS), logger),
            priority=priority,
            enabled=bool(record.get(ConfigKey.RULE_ENABLED, True)),
            rule_id=record.get(ConfigKey.RULE_ID),
            description=record.get(ConfigKey.RULE_DESCRIPTION),
        )

    def to_record(self) -> Dict[str, Any]:
        """Render the rule as a store record (settings as a list of pairs)."""
        return {
            ConfigKey.RULE_ID: self.rule_id,
            ConfigKey.RULE_IDENTITY_KEY: self.identity_key,
            ConfigKey.RULE_PATTERN: self.text_pattern,
            ConfigKey.RULE_SETTINGS: [list(pair) for pair in self.settings],
            ConfigKey.RULE_PRIORITY: self.priority,
            ConfigKey.RULE_ENABLED: self.enabled,
            ConfigKey.RULE_DESCRIPTION: self.description,
        }

    @property
    def has_identity_key(self) -> bool:
        return bool(self.identity_key)

    @property
    def has_pattern(self) -> bool:
        return self.text_pattern is not None

    @property
    def is_dead(self) -> bool:
        """True when the rule has no way to match anything."""
        return not self.has_identity_key and not self.has_pattern

    @property
    def setting_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.settings)


@dataclass(frozen=True)
class RuleSet:
    """Ordered rules as delivered by a store.

    Order is the store's descending-priority order and is never changed
    here. A new RuleSet replaces the old one on every refresh.
    """

    rules: Tuple[Rule, ...] = ()
    loaded_at: float = field(default_factory=time.time)

    def __iter__(self) -> Iterator[Rule]:
        return iter(self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __bool__(self) -> bool:
        return bool(self.rules)

    @property
    def dead_rules(self) -> Tuple[Rule, ...]:
        return tuple(rule for rule in self.rules if rule.is_dead)
