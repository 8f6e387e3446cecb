"""
Command-line interface for streak_sync.

Provides CLI commands for running a sync, checking configuration and
inspecting the local store.

Usage:
    # Show help
    streak-sync --help

    # Create a configuration file, then fill in the pipeline keys
    streak-sync init-config

    # Verify the API key and pipeline keys
    streak-sync check-config

    # Run one sync pass
    streak-sync sync
    streak-sync sync --no-geocode --verbose

    # Inspect one synced record
    streak-sync show organization <box-key>
"""

import sys
from pathlib import Path
from typing import Any

import click

from streak_sync import __version__
from streak_sync.api.geocoder import NominatimGeocoder
from streak_sync.api.streak_api import StreakAPI, StreakAPIError
from streak_sync.cli.formatters import (
    show_entity,
    show_last_run,
    show_linked_members,
    show_run_states,
)
from streak_sync.config.generator import save_config_file
from streak_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
    resolve_config_dir,
)
from streak_sync.config.sync_config import SyncConfig, SyncConfigError
from streak_sync.storage.db import SyncDatabase
from streak_sync.sync.engine import (
    RunOutcome,
    SyncAlreadyRunningError,
    SyncEngine,
    SyncError,
)
from streak_sync.sync.entities import EntityKind
from streak_sync.utils.lock import RunLock
from streak_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging

# Exit status for a run that finished with failed records
EXIT_PARTIAL = 2


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: str | None) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file)
    return config_dir / DEFAULT_CONFIG_FILE


def build_sync_config(ctx: click.Context) -> SyncConfig:
    """Build the typed configuration from the loaded config file."""
    return SyncConfig.from_dict(ctx.obj["config"], config_dir=ctx.obj["config_dir"])


def open_database(sync_config: SyncConfig) -> SyncDatabase:
    """Open and initialize the local store, creating its directory."""
    db_path = Path(sync_config.db_path)  # type: ignore[arg-type]
    db_path.parent.mkdir(parents=True, exist_ok=True)
    database = SyncDatabase(str(db_path))
    database.initialize()
    return database


def build_api(sync_config: SyncConfig) -> StreakAPI:
    """
    Create the Streak API client.

    Raises:
        SyncConfigError: If no API key is configured
    """
    return StreakAPI(
        sync_config.require_api_key(),
        base_url=sync_config.api_base_url,
        timeout=sync_config.api_timeout,
        max_retries=sync_config.api_max_retries,
        initial_retry_delay=sync_config.api_initial_retry_delay,
        max_retry_delay=sync_config.api_max_retry_delay,
    )


def build_geocoder(sync_config: SyncConfig) -> NominatimGeocoder | None:
    """Create the geocoder, or None when geocoding is disabled."""
    if not sync_config.geocoding_enabled:
        return None
    return NominatimGeocoder(
        url=sync_config.geocoder_url,
        timeout=sync_config.geocoder_timeout,
        user_agent=sync_config.geocoder_user_agent,
    )


@click.group()
@click.version_option(version=__version__, prog_name="streak-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="STREAK_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.streak-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="STREAK_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    Streak pipeline sync.

    Mirrors an organization pipeline and a member pipeline from Streak into
    a local database, including the links between organizations and
    members. Nothing is ever written back to Streak.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Keep going so init-config and health still work
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    # CLI flag wins over the config file
    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = Path(config["log_dir"]) if config.get("log_dir") else None
    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.option(
    "--no-geocode",
    is_flag=True,
    help="Do not geocode changed addresses (coordinates are left as they are).",
)
@click.pass_context
def sync_command(ctx: click.Context, no_geocode: bool) -> None:
    """
    Run one sync pass.

    Fetches both pipelines, then creates, updates and deletes local
    organizations and members and rebuilds their links.

    Exit status is 0 on success, 1 if the run failed and 2 if it finished
    with some records skipped.

    Examples:

        streak-sync sync

        # Skip geocoding
        streak-sync sync --no-geocode
    """
    logger = get_logger(__name__)
    verbose = ctx.obj["verbose"]

    try:
        sync_config = build_sync_config(ctx)
        if no_geocode:
            sync_config.geocoding_enabled = False

        sync_config.require_pipelines()
        api = build_api(sync_config)
    except SyncConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        click.echo("Run 'streak-sync init-config' to create a configuration file.")
        sys.exit(1)

    try:
        database = open_database(sync_config)
        engine = SyncEngine(
            api,
            database,
            sync_config,
            geocode=build_geocoder(sync_config),
            run_lock=RunLock(Path(sync_config.lock_file)),  # type: ignore[arg-type]
        )

        click.echo("Synchronizing organizations and members...")
        result = engine.run_sync()
    except SyncAlreadyRunningError as e:
        click.echo(click.style(f"Sync already running: {e}", fg="yellow"), err=True)
        sys.exit(1)
    except SyncError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo("\n" + "=" * 50)
    click.echo(result.summary())
    click.echo("=" * 50)

    if verbose:
        show_run_states(result)

    if result.outcome == RunOutcome.FAILED:
        click.echo(click.style(f"\nSync failed: {result.error}", fg="red"), err=True)
        sys.exit(1)
    if result.outcome == RunOutcome.PARTIAL:
        click.echo(
            click.style(
                f"\nSync completed with {len(result.failures)} skipped records.",
                fg="yellow",
            )
        )
        sys.exit(EXIT_PARTIAL)

    click.echo(click.style("\nSync completed successfully!", fg="green"))


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show configuration and local store status.

    Example:

        streak-sync status
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    try:
        sync_config = build_sync_config(ctx)

        click.echo("=== Streak Sync Status ===\n")
        click.echo(f"Configuration directory: {ctx.obj['config_dir']}")
        click.echo(
            f"Configuration file: {config_file} "
            + ("" if config_file.exists() else click.style("(not found)", fg="red"))
        )
        click.echo(f"API key: {'Set' if sync_config.api_key else 'Not set'}")
        for label, value in (
            ("Organization pipeline", sync_config.organization_pipeline_key),
            ("Member pipeline", sync_config.member_pipeline_key),
        ):
            click.echo(
                f"{label}: " + (value or click.style("Not configured", fg="red"))
            )
        click.echo(
            f"Geocoding: {'Enabled' if sync_config.geocoding_enabled else 'Disabled'}"
        )
        click.echo()

        db_path = Path(sync_config.db_path)  # type: ignore[arg-type]
        if not db_path.exists():
            click.echo(f"Database: {db_path} (not created yet)")
            click.echo("Last sync: Never")
            return

        database = SyncDatabase(str(db_path))
        database.initialize()
        click.echo(f"Database: {db_path}")
        for kind in EntityKind:
            click.echo(
                f"  {kind.plural.capitalize()}: {database.get_entity_count(kind)}"
            )
        click.echo(f"  Links: {database.get_link_count()}")
        click.echo()
        show_last_run(database.get_last_run())

    except Exception as e:
        logger.exception(f"Error getting status: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Show Command
# =============================================================================


@cli.command("show")
@click.argument("kind", type=click.Choice([kind.value for kind in EntityKind]))
@click.argument("key")
@click.pass_context
def show_command(ctx: click.Context, kind: str, key: str) -> None:
    """
    Show one local record by its Streak box key.

    Organizations also list their linked members.

    Examples:

        streak-sync show organization agxzfm1haWxmb29nYWVy

        streak-sync show member agxzfm1haWxmb29nYWVz
    """
    logger = get_logger(__name__)
    entity_kind = EntityKind(kind)
    db_path = Path(build_sync_config(ctx).db_path)  # type: ignore[arg-type]

    if not db_path.exists():
        click.echo("No sync database found. Run 'streak-sync sync' first.")
        sys.exit(1)

    try:
        database = SyncDatabase(str(db_path))
        database.initialize()
        entity = database.get_entity_by_key(entity_kind, key)
        if entity is None:
            click.echo(click.style(f"No {kind} with key {key}", fg="red"), err=True)
            sys.exit(1)

        show_entity(entity)
        if entity_kind is EntityKind.ORGANIZATION:
            member_ids = set(database.get_member_ids_for_organization(entity.id))
            show_linked_members(
                [
                    member
                    for member in database.list_entities(EntityKind.MEMBER)
                    if member.id in member_ids
                ]
            )

    except Exception as e:
        logger.exception(f"Error showing {kind} {key}: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Check-Config Command
# =============================================================================


@cli.command("check-config")
@click.pass_context
def check_config_command(ctx: click.Context) -> None:
    """
    Verify the API key and both pipeline keys.

    Fetches the metadata of both configured pipelines without changing
    anything locally.

    Example:

        streak-sync check-config
    """
    logger = get_logger(__name__)

    try:
        sync_config = build_sync_config(ctx)
        pipelines = sync_config.require_pipelines()
        api = build_api(sync_config)
    except SyncConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    failed = False
    for label, pipeline_key in zip(("Organization", "Member"), pipelines):
        try:
            pipeline = api.fetch_pipeline(pipeline_key)
            click.echo(
                f"{label} pipeline: {pipeline.get('name', '(unnamed)')} "
                + click.style("OK", fg="green")
            )
        except StreakAPIError as e:
            failed = True
            logger.error(f"Pipeline check failed for {pipeline_key}: {e}")
            click.echo(
                f"{label} pipeline: {pipeline_key} " + click.style(str(e), fg="red"),
                err=True,
            )

    if failed:
        sys.exit(1)
    click.echo(click.style("\nConfiguration is valid.", fg="green"))


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Examples:

        # Create config file (fails if already exists)
        streak-sync init-config

        # Overwrite existing config file
        streak-sync init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Fill in organization_pipeline_key and member_pipeline_key")
        click.echo("2. Export STREAK_API_KEY")
        click.echo("3. Run 'streak-sync check-config'")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


# =============================================================================
# Reset Command
# =============================================================================


@cli.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def reset_command(ctx: click.Context, yes: bool) -> None:
    """
    Clear the local store.

    Removes all local organizations, members, links and run history.
    The next sync recreates everything from Streak.

    Example:

        streak-sync reset
    """
    logger = get_logger(__name__)
    db_path = Path(build_sync_config(ctx).db_path)  # type: ignore[arg-type]

    if not db_path.exists():
        click.echo("No sync database found. Nothing to reset.")
        return

    if not yes:
        click.confirm(
            "This will delete all local organizations, members and links.\n"
            "Continue?",
            abort=True,
        )

    try:
        database = SyncDatabase(str(db_path))
        database.initialize()
        database.clear_all_state()
        database.vacuum()

        click.echo(click.style("Local store has been reset.", fg="green"))
        logger.info("Local store reset completed")

    except Exception as e:
        logger.exception(f"Reset failed: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Health Command
# =============================================================================


@cli.command("health")
def health_command() -> None:
    """
    Check application health status.

    Example:

        streak-sync health
    """
    click.echo("healthy")


