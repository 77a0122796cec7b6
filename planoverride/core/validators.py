"""
planoverride Core: Input Validators.

This module provides validation functions for engine configuration,
rule records, identity keys, setting names, and other user inputs.
"""
import re
from typing import Any, Dict, Optional, Union

from planoverride.core.constants import STORE_TYPES, ConfigKey, ErrorCode, Limits

# GUC-style setting names: identifier, optionally dotted for custom namespaces
_SETTING_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]*(\.[A-Za-z_][A-Za-z0-9_$]*)*$")


class ValidationError(Exception):
    """Base exception for validation errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.INVALID_INPUT):
        """Initialize ValidationError.

        Args:
            message: Error message
            error_code: Associated error code
        """
        super().__init__(message)
        self.error_code = error_code


def validate_config(config: Dict[str, Any]) -> bool:
    """Validate the ``planoverride`` configuration section.

    Args:
        config: Configuration dictionary (contents of the section)

    Returns:
        True if valid

    Raises:
        ValidationError: If configuration is invalid
    """
    if not isinstance(config, dict):
        raise ValidationError("Configuration must be a dictionary")

    if ConfigKey.ENABLED in config:
        enabled = config[ConfigKey.ENABLED]
        if not isinstance(enabled, bool):
            raise ValidationError(f"enabled must be boolean: {enabled}")

    if ConfigKey.VERBOSE in config:
        verbose = config[ConfigKey.VERBOSE]
        if not isinstance(verbose, bool):
            raise ValidationError(f"verbose must be boolean: {verbose}")

    if ConfigKey.CACHE_TTL in config:
        validate_cache_ttl(config[ConfigKey.CACHE_TTL])

    if config.get(ConfigKey.STORE) is not None:
        validate_store_config(config[ConfigKey.STORE])

    return True


def validate_cache_ttl(ttl: Any) -> bool:
    """Validate the rule cache refresh interval.

    Args:
        ttl: Interval in seconds

    Returns:
        True if valid

    Raises:
        ValidationError: If the interval is not an integer in range
    """
    if isinstance(ttl, bool) or not isinstance(ttl, int):
        raise ValidationError(f"cache_ttl must be integer, got {type(ttl).__name__}")

    if not Limits.MIN_CACHE_TTL <= ttl <= Limits.MAX_CACHE_TTL:
        raise ValidationError(
            f"cache_ttl must be in range {Limits.MIN_CACHE_TTL}-{Limits.MAX_CACHE_TTL}, got {ttl}"
        )

    return True


def validate_store_config(store: Dict[str, Any]) -> bool:
    """Validate rule store configuration.

    Args:
        store: Store configuration dictionary

    Returns:
        True if valid

    Raises:
        ValidationError: If store configuration is invalid
    """
    if not isinstance(store, dict):
        raise ValidationError("Store configuration must be a dictionary")

    store_type = store.get(ConfigKey.STORE_TYPE, "yaml")
    if store_type not in STORE_TYPES:
        raise ValidationError(f"Invalid store type: {store_type}. Must be one of {STORE_TYPES}")

    if store_type == "yaml" and store.get(ConfigKey.STORE_PATH) is not None:
        if not isinstance(store[ConfigKey.STORE_PATH], str):
            raise ValidationError("Store path must be a string")

    if store_type == "sql" and not store.get(ConfigKey.STORE_URL):
        raise ValidationError("SQL store requires a 'url' field")

    return True


def validate_identity_key(key: Any) -> Optional[int]:
    """Validate and normalize an identity key.

    ``None`` and ``0`` both mean "no identity key".

    Args:
        key: Candidate identity key

    Returns:
        The key as int, or None when unset

    Raises:
        ValidationError: If the key is not a signed 64-bit integer
    """
    if key is None:
        return None

    if isinstance(key, bool) or not isinstance(key, int):
        raise ValidationError(f"Identity key must be integer, got {type(key).__name__}")

    if not Limits.MIN_IDENTITY_KEY <= key <= Limits.MAX_IDENTITY_KEY:
        raise ValidationError(f"Identity key out of 64-bit range: {key}")

    return key or None


def validate_pattern(pattern: Optional[str]) -> bool:
    """Validate a LIKE-style text pattern.

    Args:
        pattern: Pattern to validate

    Returns:
        True if valid

    Raises:
        ValidationError: If pattern is invalid
    """
    if not isinstance(pattern, str):
        raise ValidationError(f"Pattern must be string, got {type(pattern).__name__}")

    if "\0" in pattern:
        raise ValidationError("Invalid pattern: contains null bytes")

    return True


def validate_setting_name(name: Any) -> bool:
    """Validate a setting name.

    Args:
        name: Setting name to validate

    Returns:
        True if valid

    Raises:
        ValidationError: If name is invalid
    """
    if not isinstance(name, str):
        raise ValidationError(f"Setting name must be string, got {type(name).__name__}")

    if not name:
        raise ValidationError("Setting name cannot be empty")

    if len(name) > Limits.MAX_SETTING_NAME_LENGTH:
        raise ValidationError(
            f"Setting name exceeds maximum length ({Limits.MAX_SETTING_NAME_LENGTH})"
        )

    if not _SETTING_NAME_RE.match(name):
        raise ValidationError(f"Invalid setting name: {name}")

    return True


def validate_rule_record(record: Dict[str, Any]) -> bool:
    """Validate a raw rule record before it is added to a store.

    A record must name at least one match method: an identity key or a
    pattern. Records already in a store that lack both are still loaded and
    simply never match.

    Args:
        record: Rule record dictionary

    Returns:
        True if valid

    Raises:
        ValidationError: If record is invalid
    """
    if not isinstance(record, dict):
        raise ValidationError("Rule must be a dictionary")

    identity_key = validate_identity_key(record.get(ConfigKey.RULE_IDENTITY_KEY))
    pattern = record.get(ConfigKey.RULE_PATTERN)

    if pattern is not None:
        validate_pattern(pattern)

    if identity_key is None and pattern is None:
        raise ValidationError("Rule must have 'query_id' or 'query_pattern' field")

    if ConfigKey.RULE_SETTINGS not in record:
        raise ValidationError("Rule must have 'gucs' field")

    priority = record.get(ConfigKey.RULE_PRIORITY, 0)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError(f"Rule priority must be integer: {priority}")

    return True


def validate_port(port: Union[int, str]) -> bool:
    """Validate network port number.

    Args:
        port: Port number to validate

    Returns:
        True if valid

    Raises:
        ValidationError: If port is invalid
    """
    try:
        port_num = int(port)
    except (TypeError, ValueError):
        raise ValidationError(f"Port must be numeric, got {type(port)}")

    if not 1 <= port_num <= 65535:
        raise ValidationError(f"Port must be in range 1-65535, got {port_num}")

    return True
