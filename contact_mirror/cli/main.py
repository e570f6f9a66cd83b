"""
Command-line interface for contact_mirror.

Provides CLI commands for mirroring remote contacts into the local store,
checking status and running the periodic sync daemon.

Usage:
    # Show help
    contact-mirror --help

    # Create a configuration file
    contact-mirror init-config

    # Run a sync pass for every configured account
    contact-mirror sync
    contact-mirror sync --account me@example.com --expedited

    # Run every 6 hours, and ask the daemon for a pass now
    contact-mirror daemon start
    contact-mirror daemon trigger
"""

import sys
from pathlib import Path
from typing import Any, Optional

import click

from contact_mirror import __version__
from contact_mirror.cli.formatters import show_account_status, show_sync_stats
from contact_mirror.config import (
    ConfigError,
    ConfigLoader,
    save_config_file,
    with_defaults,
)
from contact_mirror.remote.source import RemoteSourceError, create_source
from contact_mirror.storage.db import ContactStore, StoreError
from contact_mirror.sync.accounts import AccountConfigError, ConfigAccountResolver
from contact_mirror.sync.contact import AccountIdentity
from contact_mirror.sync.engine import SyncEngine, SyncSecurityError, SyncStats
from contact_mirror.sync.photo import make_photo_processor
from contact_mirror.utils.logging import cleanup_old_logs, get_logger, setup_logging
from contact_mirror.utils.paths import (
    CONFIG_FILE_NAME,
    DB_FILE_NAME,
    EXPORT_DIR_NAME,
    LOG_DIR_NAME,
    PID_FILE_NAME,
    resolve_config_dir,
    resolve_data_path,
)


def get_config_dir(config_dir: Optional[str]) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_file: Optional[str], config_dir: Path) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / CONFIG_FILE_NAME


def get_pid_file(config: dict[str, Any], config_dir: Path) -> Path:
    return resolve_data_path(config.get("daemon_pid_file"), config_dir, PID_FILE_NAME)


# =============================================================================
# Sync Runtime
# =============================================================================


def open_store(config: dict[str, Any], config_dir: Path) -> ContactStore:
    """Open (and create if needed) the configured contact store."""
    db_path = resolve_data_path(config.get("db_path"), config_dir, DB_FILE_NAME)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    store = ContactStore(str(db_path))
    store.initialize()
    return store


def build_engine(
    config: dict[str, Any], config_dir: Path, store: ContactStore
) -> SyncEngine:
    """
    Build a sync engine from the configuration.

    Raises:
        AccountConfigError: If the accounts list is malformed
        RemoteSourceError: If the remote source is misconfigured
    """
    photo_processor = None
    if config["photo_processing"]:
        photo_processor = make_photo_processor(config["photo_max_dimension"])
    return SyncEngine(
        source=create_source(config, config_dir),
        store=store,
        resolver=ConfigAccountResolver.from_config(config),
        photo_processor=photo_processor,
    )


def target_identities(
    config: dict[str, Any], account: Optional[str] = None
) -> list[AccountIdentity]:
    """Host identities to sync: the named account, or every configured one."""
    account_type = config["account_type"]
    if account:
        return [AccountIdentity(account, account_type)]
    return [
        AccountIdentity(entry["login_identity"], account_type)
        for entry in config["accounts"]
    ]


def run_passes(
    engine: SyncEngine,
    store: ContactStore,
    identities: list[AccountIdentity],
    expedited: bool = False,
) -> list[SyncStats]:
    """
    Run one pass per identity and record each outcome in the store.

    A denied store ends that account's pass; the remaining accounts still run.
    """
    logger = get_logger(__name__)
    results = []
    for identity in identities:
        try:
            stats = engine.run_sync(identity, expedited=expedited)
        except SyncSecurityError as e:
            logger.error(f"Sync for {identity} stopped: {e}")
            stats = e.stats

        try:
            store.update_sync_state(
                identity,
                stats.state.value,
                inserted=stats.inserted,
                updated=stats.updated,
                deleted=stats.deleted,
                failed_batches=stats.failed_batches,
                last_sync_at=stats.finished_at,
            )
        except StoreError as e:
            logger.warning(f"Could not record sync state for {identity}: {e}")
        results.append(stats)
    return results


# =============================================================================
# CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="contact-mirror")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="CONTACT_MIRROR_CONFIG_DIR",
    help="Configuration directory path (default: ~/.contact-mirror).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="CONTACT_MIRROR_CONFIG_FILE",
    help="Configuration file path (default: <config dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: Optional[str],
    config_file: Optional[str],
) -> None:
    """
    One-way contact mirror.

    Mirrors remote contact collections into a local contact store. The
    remote side always wins: local copies are deleted and rebuilt from
    remote data on every pass.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(config_file, resolved_config_dir)
    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Commands still run on defaults
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    config = with_defaults(config)
    ctx.obj["config"] = config

    effective_verbose = verbose or config["verbose"]
    ctx.obj["verbose"] = effective_verbose

    log_dir = resolve_data_path(
        config.get("log_dir"), resolved_config_dir, LOG_DIR_NAME
    )
    ctx.obj["log_dir"] = log_dir
    setup_logging(verbose=effective_verbose, log_dir=log_dir)

    if config["log_retention_count"] > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=config["log_retention_count"])


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.option(
    "--account",
    "-a",
    default=None,
    help="Sync only this account (login identity or external account id).",
)
@click.option(
    "--expedited",
    "-e",
    is_flag=True,
    help="Mark the pass as requested ahead of schedule.",
)
@click.pass_context
def sync_command(ctx: click.Context, account: Optional[str], expedited: bool) -> None:
    """
    Mirror remote contacts into the local store.

    For each account, local contacts missing remotely are deleted, contacts
    present on both sides are rebuilt from remote data and new remote
    contacts are inserted. Local contacts without an external id are never
    touched.

    Examples:

        # Sync every configured account
        contact-mirror sync

        # Sync one account
        contact-mirror sync --account me@example.com
    """
    logger = get_logger(__name__)
    config = ctx.obj["config"]
    config_dir = ctx.obj["config_dir"]
    verbose = ctx.obj["verbose"]

    identities = target_identities(config, account)
    if not identities:
        click.echo(click.style("Error: No accounts configured.", fg="red"), err=True)
        click.echo("Add accounts to the configuration file or use --account.")
        sys.exit(1)

    try:
        store = open_store(config, config_dir)
        engine = build_engine(config, config_dir, store)
    except (AccountConfigError, RemoteSourceError, StoreError) as e:
        logger.error(f"Cannot start sync: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if verbose:
        click.echo("\nSync configuration:")
        click.echo(f"  Database: {store.db_path}")
        click.echo(f"  Source: {config['source_type']}")
        click.echo(f"  Expedited: {expedited}")

    click.echo(f"\nSynchronizing {len(identities)} account(s)...")

    try:
        results = run_passes(engine, store, identities, expedited=expedited)
    except Exception as e:
        logger.exception(f"Sync failed: {e}")
        click.echo(click.style(f"\nSync failed: {e}", fg="red"), err=True)
        sys.exit(1)

    for stats in results:
        show_sync_stats(stats, verbose=verbose)

    if all(stats.succeeded for stats in results):
        click.echo(click.style("\nSync completed successfully!", fg="green"))
    else:
        click.echo(
            click.style("\nSync completed with errors. See the log.", fg="yellow"),
            err=True,
        )
        sys.exit(1)


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show configuration and per-account sync status.

    Example:

        contact-mirror status
    """
    from contact_mirror.daemon import DaemonScheduler, PIDFileError

    config = ctx.obj["config"]
    config_dir = ctx.obj["config_dir"]
    config_file = ctx.obj["config_file"]

    click.echo("=== Contact Mirror Status ===\n")
    click.echo(f"Configuration directory: {config_dir}")
    config_state = (
        "Found" if config_file.exists() else click.style("Not found", fg="yellow")
    )
    click.echo(f"Configuration file: {config_file} ({config_state})")

    source = config["source_type"]
    if source == "http":
        click.echo(f"Remote source: http ({config.get('source_url')})")
    else:
        export_dir = resolve_data_path(
            config.get("source_path"), config_dir, EXPORT_DIR_NAME
        )
        click.echo(f"Remote source: file ({export_dir})")

    try:
        pid = DaemonScheduler.get_running_pid(get_pid_file(config, config_dir))
    except PIDFileError:
        pid = None
    daemon_state = (
        click.style(f"Running (PID {pid})", fg="green")
        if pid
        else click.style("Stopped", fg="yellow")
    )
    click.echo(f"Daemon: {daemon_state}")
    click.echo()

    identities = target_identities(config)
    if not identities:
        click.echo(click.style("No accounts configured.", fg="yellow"))
        click.echo("Run 'contact-mirror init-config' and add your accounts.")
        return

    db_path = resolve_data_path(config.get("db_path"), config_dir, DB_FILE_NAME)
    if not db_path.exists():
        click.echo(f"Database: {db_path} ({click.style('Not created', fg='yellow')})")
        click.echo("Run 'contact-mirror sync' to create it.")
        return

    click.echo(f"Database: {db_path}\n")
    try:
        store = open_store(config, config_dir)
        for identity in identities:
            show_account_status(
                str(identity),
                store.get_contact_count(identity),
                store.get_sync_state(identity),
                store.is_ungrouped_visible(identity),
            )
    except StoreError as e:
        click.echo(click.style(f"Error reading database: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Init Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with all available options documented
    and commented out.

    Examples:

        contact-mirror init-config
        contact-mirror init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Add your accounts under 'accounts'")
        click.echo("2. Point source_path or source_url at the remote contacts")
        click.echo("3. Run 'contact-mirror sync'")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


# =============================================================================
# Health Command
# =============================================================================


@cli.command("health")
@click.pass_context
def health_command(ctx: click.Context) -> None:
    """
    Check application health status.

    Prints 'healthy' when the configured contact store can be opened.
    Useful for container health checks and monitoring.
    """
    try:
        open_store(ctx.obj["config"], ctx.obj["config_dir"])
    except (StoreError, OSError) as e:
        click.echo(f"unhealthy: {e}")
        sys.exit(1)
    click.echo("healthy")


# =============================================================================
# Daemon Commands
# =============================================================================


@cli.group("daemon")
@click.pass_context
def daemon_group(ctx: click.Context) -> None:
    """
    Manage the periodic synchronization daemon.

    The daemon syncs every configured account at a fixed interval
    (default 6h). 'daemon trigger' asks it for an expedited pass.

    Examples:

        contact-mirror daemon start --interval 30m
        contact-mirror daemon trigger
        contact-mirror daemon status
        contact-mirror daemon stop
    """
    pass


@daemon_group.command("start")
@click.option(
    "--interval",
    "-i",
    default=None,
    help="Sync interval (e.g., '30m', '6h', '1d'). Defaults to config value or '6h'.",
)
@click.option(
    "--no-initial-sync",
    is_flag=True,
    help="Skip the initial sync on daemon startup.",
)
@click.pass_context
def daemon_start_command(
    ctx: click.Context, interval: Optional[str], no_initial_sync: bool
) -> None:
    """
    Start the synchronization daemon in the foreground.

    The daemon will:
    - Perform an initial sync on startup (unless --no-initial-sync)
    - Sync every account at the given interval
    - Run an expedited pass on SIGUSR1 ('daemon trigger')
    - Shut down gracefully on SIGTERM/SIGINT
    """
    from contact_mirror.daemon import (
        DaemonAlreadyRunningError,
        DaemonError,
        DaemonScheduler,
        parse_interval,
    )

    logger = get_logger(__name__)
    config = ctx.obj["config"]
    config_dir = ctx.obj["config_dir"]
    verbose = ctx.obj["verbose"]

    effective_interval = interval or config["daemon_interval"]
    try:
        interval_seconds = parse_interval(effective_interval)
    except ValueError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    identities = target_identities(config)
    if not identities:
        click.echo(click.style("Error: No accounts configured.", fg="red"), err=True)
        sys.exit(1)

    try:
        store = open_store(config, config_dir)
        engine = build_engine(config, config_dir, store)
    except (AccountConfigError, RemoteSourceError, StoreError) as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    setup_logging(verbose=verbose, log_dir=ctx.obj["log_dir"], daemon=True)

    click.echo(f"Starting daemon with {effective_interval} sync interval...")
    click.echo("Running in foreground mode (Ctrl+C to stop)")
    if verbose:
        click.echo(f"  Config directory: {config_dir}")
        click.echo(f"  Accounts: {', '.join(i.name for i in identities)}")
        click.echo(f"  Initial sync: {'No' if no_initial_sync else 'Yes'}")

    scheduler = DaemonScheduler(
        interval=interval_seconds,
        pid_file=get_pid_file(config, config_dir),
        run_immediately=not no_initial_sync,
    )

    def sync_callback(expedited: bool) -> bool:
        results = run_passes(engine, store, identities, expedited=expedited)
        return all(stats.succeeded for stats in results)

    scheduler.set_sync_callback(sync_callback)

    try:
        scheduler.run()
    except DaemonAlreadyRunningError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        click.echo("Use 'contact-mirror daemon stop' to stop the running daemon.")
        sys.exit(1)
    except DaemonError as e:
        logger.error(f"Daemon error: {e}")
        click.echo(click.style(f"Daemon error: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style("\nDaemon stopped gracefully.", fg="green"))


@daemon_group.command("stop")
@click.pass_context
def daemon_stop_command(ctx: click.Context) -> None:
    """
    Stop the running daemon.

    Sends SIGTERM; the daemon exits after the pass in progress, if any.
    """
    from contact_mirror.daemon import DaemonScheduler

    pid_file = get_pid_file(ctx.obj["config"], ctx.obj["config_dir"])
    pid = DaemonScheduler.get_running_pid(pid_file)
    if pid is None:
        click.echo("No daemon is currently running.")
        return

    click.echo(f"Stopping daemon (PID: {pid})...")
    if DaemonScheduler.stop_running_daemon(pid_file):
        click.echo(click.style("Stop signal sent successfully.", fg="green"))
    else:
        click.echo(
            click.style("Failed to send stop signal to daemon.", fg="red"), err=True
        )
        sys.exit(1)


@daemon_group.command("trigger")
@click.pass_context
def daemon_trigger_command(ctx: click.Context) -> None:
    """
    Ask the running daemon for an expedited sync.

    The daemon runs a pass within a second and restarts its interval.
    """
    from contact_mirror.daemon import DaemonError, DaemonScheduler

    pid_file = get_pid_file(ctx.obj["config"], ctx.obj["config_dir"])
    try:
        sent = DaemonScheduler.trigger_running_daemon(pid_file)
    except DaemonError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if not sent:
        click.echo(
            click.style("No daemon is currently running.", fg="yellow"), err=True
        )
        click.echo("Run 'contact-mirror sync --expedited' instead.")
        sys.exit(1)
    click.echo(click.style("Expedited sync requested.", fg="green"))


@daemon_group.command("status")
@click.pass_context
def daemon_status_command(ctx: click.Context) -> None:
    """Show whether the daemon is running."""
    from contact_mirror.daemon import DaemonScheduler, PIDFileError, PIDFileManager

    pid_file = get_pid_file(ctx.obj["config"], ctx.obj["config_dir"])

    click.echo("=== Daemon Status ===\n")
    try:
        pid = DaemonScheduler.get_running_pid(pid_file)
        stale_pid = None if pid else PIDFileManager(pid_file).read()
    except PIDFileError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    if pid is not None:
        click.echo(f"Status: {click.style('Running', fg='green')}")
        click.echo(f"Process ID: {pid}")
    else:
        click.echo(f"Status: {click.style('Stopped', fg='yellow')}")
        if stale_pid is not None:
            click.echo(f"Stale PID file exists (PID: {stale_pid})")
            click.echo("It will be cleaned up on next daemon start.")

    if ctx.obj["verbose"]:
        click.echo(f"\nPID file: {pid_file}")
