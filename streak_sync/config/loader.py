"""
Configuration loader module for streak-sync.

Provides YAML-based configuration file loading with support for:
- Resolving the configuration directory
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Validation of option types and ranges
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

DEFAULT_CONFIG_DIR = Path.home() / ".streak-sync"
CONFIG_DIR_ENV_VAR = "STREAK_SYNC_CONFIG_DIR"
DEFAULT_CONFIG_FILE = "config.yaml"

logger = logging.getLogger(__name__)

# Known options and their expected types
VALID_KEYS: dict[str, type[Any] | tuple[type[Any], ...]] = {
    # Remote service
    "api_key": str,
    "api_key_env": str,
    "api_base_url": str,
    "api_timeout": (int, float),
    "api_max_retries": int,
    "api_initial_retry_delay": (int, float),
    "api_max_retry_delay": (int, float),
    "concurrent_fetch": bool,
    # Pipelines
    "organization_pipeline_key": str,
    "member_pipeline_key": str,
    # Geocoding
    "geocoding_enabled": bool,
    "geocoder_url": str,
    "geocoder_user_agent": str,
    "geocoder_timeout": (int, float),
    # Storage
    "db_path": str,
    "lock_file": str,
    # Logging
    "verbose": bool,
    "log_dir": str,
    "log_retention_count": int,
}

POSITIVE_INT_KEYS = ("api_max_retries",)
NON_NEGATIVE_INT_KEYS = ("log_retention_count",)
POSITIVE_FLOAT_KEYS = (
    "api_timeout",
    "api_initial_retry_delay",
    "api_max_retry_delay",
    "geocoder_timeout",
)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Pick the configuration directory.

    An explicit directory wins, then $STREAK_SYNC_CONFIG_DIR, then
    ~/.streak-sync. Empty values count as unset.
    """
    chosen = config_dir or os.environ.get(CONFIG_DIR_ENV_VAR) or DEFAULT_CONFIG_DIR
    return Path(chosen).expanduser().resolve()


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str = DEFAULT_CONFIG_FILE
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.streak-sync/ or $STREAK_SYNC_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        """Full path to the configuration file."""
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Configuration dictionary, or empty dict if the file doesn't exist

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Args:
            path: Path to the configuration file

        Returns:
            Configuration dictionary, or empty dict if the file doesn't exist

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if config is None:
            logger.debug(f"Configuration file is empty: {path}")
            return {}

        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration types and values.

        Unknown keys are logged and otherwise ignored.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        for key, value in config.items():
            if key not in VALID_KEYS:
                logger.warning(f"Ignoring unknown configuration option '{key}'")
                continue

            expected_type = VALID_KEYS[key]
            # bool is an int subclass; reject it for numeric options
            if isinstance(value, bool) and expected_type is not bool:
                raise ConfigError(
                    f"Invalid type for '{key}': expected {_type_name(expected_type)}, "
                    "got bool"
                )
            if not isinstance(value, expected_type):
                raise ConfigError(
                    f"Invalid type for '{key}': expected {_type_name(expected_type)}, "
                    f"got {type(value).__name__}"
                )

        for key in POSITIVE_INT_KEYS:
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        for key in NON_NEGATIVE_INT_KEYS:
            if key in config and config[key] < 0:
                raise ConfigError(f"{key} must be >= 0, got {config[key]}")

        for key in POSITIVE_FLOAT_KEYS:
            if key in config and config[key] <= 0:
                raise ConfigError(f"{key} must be > 0, got {config[key]}")

        for key in ("organization_pipeline_key", "member_pipeline_key"):
            if key in config and not config[key].strip():
                raise ConfigError(f"{key} cannot be empty")

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Returns:
            Validated configuration dictionary

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config


def _type_name(expected_type: type[Any] | tuple[type[Any], ...]) -> str:
    if isinstance(expected_type, tuple):
        return " or ".join(t.__name__ for t in expected_type)
    return expected_type.__name__
