"""
Configuration file generator for streak-sync.

Writes a commented default config.yaml documenting every option.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate default YAML configuration with all options documented.

    Every option is commented out and shows its default or an example.

    Returns:
        String containing YAML configuration with comments
    """
    return """# Streak Sync Configuration
# =========================
#
# Mirrors a Streak organization pipeline and member pipeline into a local
# SQLite database. CLI arguments override these values.
#
# To use this configuration:
#   1. Save as ~/.streak-sync/config.yaml (or $STREAK_SYNC_CONFIG_DIR)
#   2. Uncomment and fill in both pipeline keys
#   3. Export your API key: export STREAK_API_KEY=...
#   4. Run: streak-sync sync


# Pipelines (required)
# --------------------

# Pipeline keys appear in the Streak pipeline URL
# organization_pipeline_key: agxzfm1haWxmb29nYWVyLAsSDE9yZ2FuaXphdGlvbiIO
# member_pipeline_key: agxzfm1haWxmb29nYWVyMAsSDE9yZ2FuaXphdGlvbiIS


# Streak API
# ----------

# API key. Prefer the environment variable over storing it here.
# api_key: ""

# Environment variable read when api_key is not set
# Default: STREAK_API_KEY
# api_key_env: STREAK_API_KEY

# Default: https://www.streak.com/api/v1
# api_base_url: https://www.streak.com/api/v1

# Request timeout in seconds
# Default: 30
# api_timeout: 30

# Attempts per request for rate limits, 5xx errors and network failures
# Default: 5
# api_max_retries: 5

# Exponential backoff: first delay and cap, in seconds
# Default: 1.0 and 60.0
# api_initial_retry_delay: 1.0
# api_max_retry_delay: 60.0

# Fetch both pipelines and both box lists in parallel
# Default: true
# concurrent_fetch: true


# Geocoding
# ---------

# Recompute coordinates when an address changes
# Default: true
# geocoding_enabled: true

# Nominatim compatible search endpoint
# Default: https://nominatim.openstreetmap.org/search
# geocoder_url: https://nominatim.openstreetmap.org/search

# User-Agent sent to the geocoder (Nominatim requires one)
# geocoder_user_agent: streak-sync/0.1.0 (you@example.com)

# Default: 10
# geocoder_timeout: 10


# Storage
# -------

# Relative paths are resolved inside the configuration directory
# Default: streak_sync.db
# db_path: streak_sync.db

# Default: sync.lock
# lock_file: sync.lock


# Logging
# -------

# Default: false
# verbose: false

# Default: ~/.streak-sync/logs
# log_dir: /var/log/streak-sync

# Number of daily log files to keep
# Default: 10
# log_retention_count: 10
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Save default configuration file to specified path.

    Creates parent directories if they don't exist and saves
    the configuration with owner-only permissions.

    Args:
        config_path: Path where the config file should be saved
        overwrite: If True, overwrite existing file. If False, fail if file exists.

    Returns:
        Tuple of (success, error_message). error_message is None on success.
    """
    try:
        config_path = config_path.expanduser().resolve()

        if config_path.exists() and not overwrite:
            return (
                False,
                f"Configuration file already exists: {config_path}\n"
                "Use --force to overwrite.",
            )

        config_path.parent.mkdir(parents=True, mode=0o700, exist_ok=True)
        config_path.write_text(generate_default_config(), encoding="utf-8")
        # May hold an API key
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)
