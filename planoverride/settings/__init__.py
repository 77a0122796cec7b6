"""planoverride Settings.

This module provides the ambient settings that overrides act on:
- SettingsNamespace: get/set/reset interface
- SettingsRegistry: typed settings with defaults
- EnvironmentSettings: environment variables
- OverrideSession: snapshot/apply/restore around a unit of work
"""

from .registry import (
    UNSET,
    EnvironmentSettings,
    SettingDefinition,
    SettingError,
    SettingsNamespace,
    SettingsRegistry,
    SettingType,
)
from .session import OverrideSession, OverrideSnapshot, RestoreError

__all__ = [
    # Namespaces
    "UNSET",
    "SettingsNamespace",
    "SettingsRegistry",
    "SettingDefinition",
    "SettingType",
    "SettingError",
    "EnvironmentSettings",
    # Sessions
    "OverrideSession",
    "OverrideSnapshot",
    "RestoreError",
]
