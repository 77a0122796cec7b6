#!/usr/bin/env python3
"""Ambient setting namespaces.

An override session reads and writes settings through a namespace:
- SettingsNamespace: abstract get/set/reset interface
- SettingsRegistry: typed, validated settings with defaults
- EnvironmentSettings: process environment variables

``get`` returns the explicitly set value or the ``UNSET`` sentinel, so a
setting that was never set can be returned to its default rather than
pinned to the default's current text.

Example:
    >>> registry = SettingsRegistry([
    ...     SettingDefinition("enable_seqscan", SettingType.BOOL, default="on"),
    ...     SettingDefinition("work_mem", SettingType.STRING, default="4MB"),
    ... ])
    >>> registry.set("enable_seqscan", "false")
    >>> registry.get("enable_seqscan")
    'off'
    >>> registry.get("work_mem")
    UNSET
"""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, MutableMapping, Optional, Tuple, Union

from planoverride.core.constants import ErrorCode


class _Unset:
    """Marker for a setting with no explicit value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()

SettingState = Union[str, _Unset]


class SettingError(Exception):
    """Error raised when a setting cannot be read or assigned."""

    def __init__(
        self, message: str, name: Optional[str] = None, error_code: ErrorCode = ErrorCode.INVALID_INPUT
    ):
        self.message = message
        self.name = name
        self.error_code = error_code
        super().__init__(message)


class SettingsNamespace(ABC):
    """Abstract base class for ambient configuration."""

    @abstractmethod
    def get(self, name: str) -> SettingState:
        """Return the explicit value of a setting, or UNSET.

        Must not fail for unknown names.
        """
        ...

    @abstractmethod
    def set(self, name: str, value: str) -> None:
        """Assign a setting.

        Raises:
            SettingError: If the name is unknown or the value is invalid
        """
        ...

    @abstractmethod
    def reset(self, name: str) -> None:
        """Clear an explicit value so the setting reverts to its default."""
        ...

    def is_defined(self, name: str) -> bool:
        """Check whether the namespace accepts this name."""
        return True


class SettingType(Enum):
    """Value type of a registered setting."""

    BOOL = "bool"
    INT = "int"
    REAL = "real"
    ENUM = "enum"
    STRING = "string"


_TRUE_WORDS = ("on", "true", "yes", "1")
_FALSE_WORDS = ("off", "false", "no", "0")


@dataclass(frozen=True)
class SettingDefinition:
    """A registered setting with its type, default and bounds."""

    name: str
    setting_type: SettingType = SettingType.STRING
    default: Optional[str] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    choices: Tuple[str, ...] = ()
    read_only: bool = False
    description: str = ""

    def canonicalize(self, value: str) -> str:
        """Validate a value and return its canonical text.

        Args:
            value: Raw text value

        Returns:
            Canonical text (``on``/``off`` for booleans)

        Raises:
            SettingError: If the value does not fit the definition
        """
        if not isinstance(value, str):
            raise SettingError(
                f"Value for {self.name} must be text, got {type(value).__name__}", self.name
            )

        text = value.strip()

        if self.setting_type == SettingType.BOOL:
            lowered = text.lower()
            if lowered in _TRUE_WORDS:
                return "on"
            if lowered in _FALSE_WORDS:
                return "off"
            raise SettingError(f"Parameter {self.name} requires a Boolean value", self.name)

        if self.setting_type in (SettingType.INT, SettingType.REAL):
            try:
                number: float = int(text) if self.setting_type == SettingType.INT else float(text)
            except ValueError:
                kind = "an integer" if self.setting_type == SettingType.INT else "a numeric"
                raise SettingError(f"Parameter {self.name} requires {kind} value", self.name)
            self._check_bounds(number)
            return str(number)

        if self.setting_type == SettingType.ENUM:
            for choice in self.choices:
                if choice.lower() == text.lower():
                    return choice
            raise SettingError(
                f"Invalid value for parameter {self.name}: {value!r} "
                f"(available values: {', '.join(self.choices)})",
                self.name,
            )

        return value

    def _check_bounds(self, number: float) -> None:
        if self.min_value is not None and number < self.min_value:
            raise SettingError(
                f"{number} is outside the valid range for parameter {self.name} "
                f"({self.min_value} .. {self.max_value})",
                self.name,
            )
        if self.max_value is not None and number > self.max_value:
            raise SettingError(
                f"{number} is outside the valid range for parameter {self.name} "
                f"({self.min_value} .. {self.max_value})",
                self.name,
            )


class SettingsRegistry(SettingsNamespace):
    """Typed settings with defaults and explicit values.

    Unknown names are rejected on ``set`` unless ``allow_custom`` is on and
    the name is qualified with a dot (``myapp.batch_size``); such custom
    settings are stored as plain text.
    """

    def __init__(
        self, definitions: Optional[Iterable[SettingDefinition]] = None, allow_custom: bool = True
    ):
        """Initialize registry.

        Args:
            definitions: Settings to register
            allow_custom: Accept dotted names that have no definition
        """
        self._definitions: Dict[str, SettingDefinition] = {}
        self._values: Dict[str, str] = {}
        self.allow_custom = allow_custom

        for definition in definitions or []:
            self.define(definition)

    def define(self, definition: SettingDefinition) -> None:
        """Register a setting.

        Raises:
            SettingError: If the name is already registered or the default is invalid
        """
        if definition.name in self._definitions:
            raise SettingError(
                f"Setting already defined: {definition.name}", definition.name, ErrorCode.CONFLICT
            )
        if definition.default is not None:
            definition.canonicalize(definition.default)
        self._definitions[definition.name] = definition

    def definition(self, name: str) -> Optional[SettingDefinition]:
        return self._definitions.get(name)

    def is_defined(self, name: str) -> bool:
        return name in self._definitions or (self.allow_custom and "." in name)

    def get(self, name: str) -> SettingState:
        return self._values.get(name, UNSET)

    def current(self, name: str) -> Optional[str]:
        """Return the effective value: explicit if set, else the default.

        Raises:
            SettingError: If the setting is unknown
        """
        if name in self._values:
            return self._values[name]
        definition = self._definitions.get(name)
        if definition is None:
            if self.is_defined(name):
                return None
            raise SettingError(
                f"Unrecognized configuration parameter: {name}", name, ErrorCode.NOT_FOUND
            )
        if definition.default is None:
            return None
        return definition.canonicalize(definition.default)

    def set(self, name: str, value: str) -> None:
        definition = self._definitions.get(name)

        if definition is None:
            if not self.is_defined(name):
                raise SettingError(
                    f"Unrecognized configuration parameter: {name}", name, ErrorCode.NOT_FOUND
                )
            if not isinstance(value, str):
                raise SettingError(f"Value for {name} must be text", name)
            self._values[name] = value
            return

        if definition.read_only:
            raise SettingError(
                f"Parameter {name} cannot be changed", name, ErrorCode.PERMISSION_DENIED
            )

        self._values[name] = definition.canonicalize(value)

    def reset(self, name: str) -> None:
        self._values.pop(name, None)

    def explicit_values(self) -> Dict[str, str]:
        """Return a copy of all explicitly set values."""
        return dict(self._values)

    def names(self) -> List[str]:
        return sorted(self._definitions)


class EnvironmentSettings(SettingsNamespace):
    """Environment variables as a settings namespace.

    Args:
        environ: Mapping to operate on (defaults to os.environ)
        prefix: Prefix prepended to every setting name
    """

    def __init__(self, environ: Optional[MutableMapping[str, str]] = None, prefix: str = ""):
        self._environ = os.environ if environ is None else environ
        self.prefix = prefix

    def _key(self, name: str) -> str:
        if not name or "=" in name or "\0" in name:
            raise SettingError(f"Invalid environment variable name: {name!r}", name)
        return self.prefix + name

    def get(self, name: str) -> SettingState:
        try:
            key = self._key(name)
        except SettingError:
            return UNSET
        value = self._environ.get(key)
        return UNSET if value is None else value

    def set(self, name: str, value: str) -> None:
        key = self._key(name)
        if not isinstance(value, str) or "\0" in value:
            raise SettingError(f"Invalid value for environment variable {key}", name)
        self._environ[key] = value

    def reset(self, name: str) -> None:
        self._environ.pop(self._key(name), None)

    def is_defined(self, name: str) -> bool:
        return bool(name) and "=" not in name and "\0" not in name
