"""CLI package for streak_sync."""

from streak_sync.cli.formatters import (
    show_entity,
    show_last_run,
    show_linked_members,
    show_run_states,
)
from streak_sync.cli.main import cli, get_config_dir, get_config_file

__all__ = [
    "cli",
    "get_config_dir",
    "get_config_file",
    "show_entity",
    "show_last_run",
    "show_linked_members",
    "show_run_states",
]
