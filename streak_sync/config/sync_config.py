"""
Typed sync configuration.

The engine receives a SyncConfig at construction instead of reading
pipeline keys or secrets from ambient state. Configuration comes from the
YAML file (see ConfigLoader) with the API key optionally taken from an
environment variable.

Configuration file format (config.yaml):

    organization_pipeline_key: agxzfm1haWxmb29nYWVyLAsSDE9yZ2FuaXphdGlvbiIO
    member_pipeline_key: agxzfm1haWxmb29nYWVyMAsSDE9yZ2FuaXphdGlvbiIS
    api_key_env: STREAK_API_KEY
    api_timeout: 30
    geocoding_enabled: true
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from streak_sync.api.geocoder import DEFAULT_GEOCODER_TIMEOUT, DEFAULT_GEOCODER_URL
from streak_sync.api.streak_api import (
    DEFAULT_BASE_URL,
    DEFAULT_INITIAL_RETRY_DELAY,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_RETRY_DELAY,
    DEFAULT_TIMEOUT,
)
from streak_sync.config.loader import ConfigLoader, resolve_config_dir

logger = logging.getLogger(__name__)

# Environment variable holding the Streak API key by default
DEFAULT_API_KEY_ENV = "STREAK_API_KEY"

# File names inside the configuration directory
DEFAULT_DB_FILE = "streak_sync.db"
DEFAULT_LOCK_FILE = "sync.lock"


class SyncConfigError(Exception):
    """Raised when the sync configuration is incomplete or invalid."""

    pass


@dataclass
class SyncConfig:
    """
    Settings for one sync engine.

    Attributes:
        organization_pipeline_key: Pipeline holding organization boxes
        member_pipeline_key: Pipeline holding member boxes
        api_key: Streak API key (None until resolved)
        api_base_url: Streak API root URL
        api_timeout: Per-request timeout in seconds
        api_max_retries: Attempts per request
        api_initial_retry_delay: First backoff delay in seconds
        api_max_retry_delay: Backoff cap in seconds
        concurrent_fetch: Issue the four read requests in parallel
        geocoding_enabled: Recompute coordinates when addresses change
        geocoder_url: Nominatim compatible search endpoint
        geocoder_user_agent: User-Agent sent to the geocoder
        geocoder_timeout: Geocoder request timeout in seconds
        db_path: SQLite database path
        lock_file: Run lock file path
        log_dir: Directory for log files (None for default)
        log_retention_count: Number of daily log files to keep
    """

    organization_pipeline_key: Optional[str] = None
    member_pipeline_key: Optional[str] = None
    api_key: Optional[str] = None
    api_base_url: str = DEFAULT_BASE_URL
    api_timeout: float = DEFAULT_TIMEOUT
    api_max_retries: int = DEFAULT_MAX_RETRIES
    api_initial_retry_delay: float = DEFAULT_INITIAL_RETRY_DELAY
    api_max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY
    concurrent_fetch: bool = True
    geocoding_enabled: bool = True
    geocoder_url: str = DEFAULT_GEOCODER_URL
    geocoder_user_agent: Optional[str] = None
    geocoder_timeout: float = DEFAULT_GEOCODER_TIMEOUT
    db_path: Optional[str] = None
    lock_file: Optional[str] = None
    log_dir: Optional[str] = None
    log_retention_count: int = 10

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any] | None,
        config_dir: Path | None = None,
        environ: Optional[dict[str, str]] = None,
    ) -> SyncConfig:
        """
        Create a SyncConfig from a validated configuration dictionary.

        The API key is taken from ``api_key`` if present, otherwise from the
        environment variable named by ``api_key_env`` (default
        STREAK_API_KEY). Relative database and lock paths are resolved
        inside the configuration directory.

        Args:
            data: Configuration dictionary (see ConfigLoader.validate)
            config_dir: Configuration directory for default file locations
            environ: Environment mapping (defaults to os.environ)

        Returns:
            SyncConfig instance
        """
        data = dict(data or {})
        env = os.environ if environ is None else environ
        base_dir = resolve_config_dir(config_dir)

        api_key = data.get("api_key")
        if not api_key:
            api_key = env.get(data.get("api_key_env", DEFAULT_API_KEY_ENV)) or None

        return cls(
            organization_pipeline_key=data.get("organization_pipeline_key"),
            member_pipeline_key=data.get("member_pipeline_key"),
            api_key=api_key,
            api_base_url=data.get("api_base_url", DEFAULT_BASE_URL),
            api_timeout=float(data.get("api_timeout", DEFAULT_TIMEOUT)),
            api_max_retries=int(data.get("api_max_retries", DEFAULT_MAX_RETRIES)),
            api_initial_retry_delay=float(
                data.get("api_initial_retry_delay", DEFAULT_INITIAL_RETRY_DELAY)
            ),
            api_max_retry_delay=float(
                data.get("api_max_retry_delay", DEFAULT_MAX_RETRY_DELAY)
            ),
            concurrent_fetch=data.get("concurrent_fetch", True),
            geocoding_enabled=data.get("geocoding_enabled", True),
            geocoder_url=data.get("geocoder_url", DEFAULT_GEOCODER_URL),
            geocoder_user_agent=data.get("geocoder_user_agent"),
            geocoder_timeout=float(
                data.get("geocoder_timeout", DEFAULT_GEOCODER_TIMEOUT)
            ),
            db_path=str(_resolve(base_dir, data.get("db_path", DEFAULT_DB_FILE))),
            lock_file=str(
                _resolve(base_dir, data.get("lock_file", DEFAULT_LOCK_FILE))
            ),
            log_dir=data.get("log_dir"),
            log_retention_count=data.get("log_retention_count", 10),
        )

    def require_pipelines(self) -> tuple[str, str]:
        """
        Get both pipeline keys, failing if either is missing.

        Returns:
            (organization_pipeline_key, member_pipeline_key)

        Raises:
            SyncConfigError: If a pipeline key is not configured
        """
        missing = [
            name
            for name in ("organization_pipeline_key", "member_pipeline_key")
            if not getattr(self, name)
        ]
        if missing:
            raise SyncConfigError(
                f"Missing required configuration: {', '.join(missing)}"
            )
        return (
            self.organization_pipeline_key,
            self.member_pipeline_key,
        )

    def require_api_key(self) -> str:
        """
        Get the API key, failing if it is not configured.

        Raises:
            SyncConfigError: If no API key is available
        """
        if not self.api_key:
            raise SyncConfigError(
                "No Streak API key configured. Set api_key in the configuration "
                f"file or the {DEFAULT_API_KEY_ENV} environment variable."
            )
        return self.api_key

    def __repr__(self) -> str:
        # Never print the API key
        return (
            f"SyncConfig(organization_pipeline_key="
            f"{self.organization_pipeline_key!r}, "
            f"member_pipeline_key={self.member_pipeline_key!r}, "
            f"api_key={'***' if self.api_key else None}, "
            f"db_path={self.db_path!r})"
        )


def _resolve(base_dir: Path, value: str) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base_dir / path


def load_config(
    config_dir: Path | str | None = None, config_file: Path | str | None = None
) -> SyncConfig:
    """
    Load and validate the YAML configuration into a SyncConfig.

    Args:
        config_dir: Configuration directory (default: ~/.streak-sync or
            $STREAK_SYNC_CONFIG_DIR)
        config_file: Explicit configuration file (default: config.yaml in
            the configuration directory)

    Returns:
        SyncConfig instance (defaults if the file doesn't exist)

    Raises:
        ConfigError: If the file cannot be parsed or is invalid
    """
    loader = ConfigLoader(config_dir=Path(config_dir) if config_dir else None)
    path = Path(config_file) if config_file else loader.config_path
    data = loader.load_from_file(path)
    if data:
        loader.validate(data)
    return SyncConfig.from_dict(data, config_dir=loader.config_dir)
