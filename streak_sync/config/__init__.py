"""
streak_sync.config - Configuration management module

Contains configuration loading, validation, and default settings.
"""

from streak_sync.config.generator import generate_default_config, save_config_file
from streak_sync.config.loader import ConfigError, ConfigLoader, resolve_config_dir
from streak_sync.config.sync_config import SyncConfig, SyncConfigError, load_config

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "SyncConfig",
    "SyncConfigError",
    "generate_default_config",
    "load_config",
    "resolve_config_dir",
    "save_config_file",
]
