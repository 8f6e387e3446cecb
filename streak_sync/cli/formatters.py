"""CLI output formatting functions.

This module contains functions for displaying run results and run history
on the command line.
"""

from typing import TYPE_CHECKING, Any

import click

if TYPE_CHECKING:
    from streak_sync.sync.engine import RunResult
    from streak_sync.sync.entities import Entity

OUTCOME_COLORS = {
    "success": "green",
    "partial": "yellow",
    "failed": "red",
}


def style_outcome(outcome: str) -> str:
    """Colour an outcome name for terminal output."""
    return click.style(outcome, fg=OUTCOME_COLORS.get(outcome, "white"))


def show_run_states(result: "RunResult") -> None:
    """
    Display the state transitions of a finished run.

    Args:
        result: The RunResult to display
    """
    click.echo("\n=== Run States ===")
    click.echo("  " + " -> ".join(state.value for state in result.states))


def show_last_run(run: dict[str, Any] | None) -> None:
    """
    Display the most recent recorded run.

    Args:
        run: Row from SyncDatabase.get_last_run(), or None
    """
    if run is None:
        click.echo("Last sync: Never")
        return

    click.echo(f"Last sync: {run['finished_at'] or run['started_at']}")
    click.echo(f"  Outcome: {style_outcome(run['outcome'])}")
    if run.get("error"):
        click.echo(f"  Error: {run['error']}")

    counts = run.get("counts") or {}
    for kind in ("organizations", "members"):
        kind_counts = counts.get(kind)
        if not kind_counts:
            continue
        click.echo(
            f"  {kind.capitalize()}: "
            + ", ".join(f"{value} {name}" for name, value in kind_counts.items())
        )
    if "links_created" in counts:
        click.echo(
            f"  Links: {counts['links_created']} created, "
            f"{counts.get('links_removed', 0)} removed"
        )
    if run.get("failure_count"):
        click.echo(
            click.style(f"  Failed records: {run['failure_count']}", fg="yellow")
        )


def show_entity(entity: "Entity") -> None:
    """
    Display one local organization or member.

    Args:
        entity: The entity to display; unset attributes are omitted
    """
    click.echo(f"{entity.kind.value.capitalize()}: {entity.name}")
    click.echo(f"  Key: {entity.external_key or '(none)'}")
    for attribute, value in entity.attributes().items():
        if value is not None:
            click.echo(f"  {attribute}: {value}")


def show_linked_members(members: list["Entity"]) -> None:
    """Display the members linked to an organization."""
    click.echo(f"\nMembers ({len(members)}):")
    for member in members:
        click.echo(f"  - {member.name} ({member.external_key or 'no key'})")
