"""
Entry point for running streak_sync as a module.

Usage:
    python -m streak_sync --help
    python -m streak_sync sync
"""

from streak_sync.cli import cli

if __name__ == "__main__":
    cli()
