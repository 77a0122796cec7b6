"""
planoverride Core: Constants and Type Definitions

This module provides system-wide constants, error codes, and type definitions
shared by the rule, settings, and engine layers.
"""
from enum import IntEnum
from typing import Tuple, TypeAlias

# Version information
PLANOVERRIDE_VERSION = "1.0.0"


# Error codes
class ErrorCode(IntEnum):
    """Standardized error codes for planoverride operations."""

    SUCCESS = 0  # Operation completed successfully
    INVALID_INPUT = 1  # Bad rule, invalid configuration
    NOT_FOUND = 2  # Setting, file or table doesn't exist
    PERMISSION_DENIED = 3  # Setting cannot be changed
    CONFLICT = 4  # Resource conflict (refresh in progress)
    DEPENDENCY_ERROR = 5  # Rule store unavailable
    INTERNAL_ERROR = 6  # Bug in planoverride


# A setting override as (name, value) text
SettingPair: TypeAlias = Tuple[str, str]


class Limits:
    """Resource limits and default values."""

    # Rule cache refresh interval
    MIN_CACHE_TTL = 1  # seconds
    MAX_CACHE_TTL = 3600  # seconds
    DEFAULT_CACHE_TTL = 60  # seconds

    # Identity keys are signed 64-bit fingerprints
    MIN_IDENTITY_KEY = -(2**63)
    MAX_IDENTITY_KEY = 2**63 - 1

    # Setting names
    MAX_SETTING_NAME_LENGTH = 63

    # Control server
    DEFAULT_CONTROL_PORT = 8711


# Configuration keys
class ConfigKey:
    """Configuration key constants."""

    ROOT = "planoverride"

    ENABLED = "enabled"
    VERBOSE = "verbose"
    CACHE_TTL = "cache_ttl"
    STORE = "store"
    LOGGING = "logging"
    CONTROL = "control"

    # Store configuration
    STORE_TYPE = "type"
    STORE_PATH = "path"
    STORE_URL = "url"

    # Rule record fields
    RULE_ID = "id"
    RULE_IDENTITY_KEY = "query_id"
    RULE_PATTERN = "query_pattern"
    RULE_SETTINGS = "gucs"
    RULE_PRIORITY = "priority"
    RULE_ENABLED = "enabled"
    RULE_DESCRIPTION = "description"


# Supported rule store backends
STORE_TYPES = ("memory", "yaml", "sql")


# Default configuration values
DEFAULT_CONFIG = {
    ConfigKey.ENABLED: True,
    ConfigKey.VERBOSE: False,
    ConfigKey.CACHE_TTL: Limits.DEFAULT_CACHE_TTL,
    ConfigKey.STORE: {
        ConfigKey.STORE_TYPE: "yaml",
        ConfigKey.STORE_PATH: None,
        ConfigKey.STORE_URL: None,
    },
    ConfigKey.LOGGING: {
        "level": "INFO",
        "file": None,
    },
    ConfigKey.CONTROL: {
        "host": "127.0.0.1",
        "port": Limits.DEFAULT_CONTROL_PORT,
    },
}
