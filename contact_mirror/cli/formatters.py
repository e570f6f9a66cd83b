"""CLI output formatting functions.

This module contains functions for displaying sync pass results and
per-account status to the command line.
"""

from typing import TYPE_CHECKING, Any, Optional

import click

from contact_mirror.sync.engine import SyncState

if TYPE_CHECKING:
    from contact_mirror.sync.engine import SyncStats

STATE_COLORS = {
    SyncState.DONE: "green",
    SyncState.CANCELLED: "yellow",
    SyncState.REJECTED: "red",
    SyncState.SECURITY_DENIED: "red",
}


def style_state(state: str) -> str:
    """Color a sync state name for terminal output."""
    try:
        color = STATE_COLORS.get(SyncState(state))
    except ValueError:
        color = None
    return click.style(state, fg=color) if color else state


def show_sync_stats(stats: "SyncStats", verbose: bool = False) -> None:
    """
    Display the result of one sync pass.

    Args:
        stats: Statistics returned by SyncEngine.run_sync
        verbose: Also show planned counts and local/remote sizes
    """
    label = click.style(stats.account, bold=True)
    click.echo(f"\n{label}: {style_state(stats.state.value)}")

    if verbose:
        click.echo(f"  Remote contacts: {stats.remote_contacts}")
        click.echo(f"  Local contacts:  {stats.local_contacts}")

    click.echo(f"  Inserted: {_applied(stats.inserted, stats.planned_inserts)}")
    click.echo(f"  Updated:  {_applied(stats.updated, stats.planned_updates)}")
    click.echo(f"  Deleted:  {_applied(stats.deleted, stats.planned_deletes)}")

    if stats.skipped_without_id:
        click.echo(
            click.style(
                f"  Skipped {stats.skipped_without_id} remote contacts without id",
                fg="yellow",
            )
        )
    if stats.failed_batches:
        click.echo(click.style(f"  Failed batches: {stats.failed_batches}", fg="red"))
    if stats.errors:
        click.echo(click.style(f"  Errors: {stats.errors}", fg="red"))


def _applied(done: int, planned: int) -> str:
    if done == planned:
        return str(done)
    return click.style(f"{done} of {planned}", fg="yellow")


def show_account_status(
    label: str,
    contact_count: int,
    sync_state: Optional[dict[str, Any]],
    ungrouped_visible: bool,
) -> None:
    """Display the stored state of one account for the status command."""
    click.echo(f"{click.style(label, bold=True)}")
    click.echo(f"  Local contacts: {contact_count}")
    click.echo(f"  Ungrouped visible: {'yes' if ungrouped_visible else 'no'}")

    if not sync_state:
        click.echo(f"  Last sync: {click.style('Never', fg='yellow')}")
        return

    click.echo(f"  Last sync: {sync_state['last_sync_at']}")
    click.echo(f"  Last state: {style_state(sync_state['last_state'])}")
    click.echo(
        f"  Last changes: inserted {sync_state['inserted']}, "
        f"updated {sync_state['updated']}, deleted {sync_state['deleted']}"
    )
    if sync_state["failed_batches"]:
        click.echo(
            click.style(
                f"  Failed batches: {sync_state['failed_batches']}", fg="yellow"
            )
        )
