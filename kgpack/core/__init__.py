"""Core package containing the configuration and logging managers."""

from kgpack.core.config_manager import ConfigManager, ConfigSchema, ReleaseEnvironment
from kgpack.core.logging_manager import LoggingManager

__all__ = [
    "ConfigManager",
    "ConfigSchema",
    "LoggingManager",
    "ReleaseEnvironment",
]
