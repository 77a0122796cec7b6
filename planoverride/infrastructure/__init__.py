"""planoverride Infrastructure Layer.

This layer provides services used by the rule, settings and engine layers:
- ConfigManager: Hierarchical YAML/environment configuration
- Logger: Structured logging system
"""

from .config_manager import ConfigError
from .config_manager import ConfigManager as Config
from .config_manager import (
    ConfigManager,
    ConfigSource,
    ConfigValue,
    get_config_manager,
    set_global_config,
)
from .logger import Logger, LogLevel, get_logger, set_global_logger

__all__ = [
    # Logger exports
    "Logger",
    "LogLevel",
    "get_logger",
    "set_global_logger",
    # ConfigManager exports
    "ConfigSource",
    "ConfigValue",
    "ConfigError",
    "Config",
    "ConfigManager",
    "get_config_manager",
    "set_global_config",
]
