"""CLI package for contact_mirror."""

from contact_mirror.cli.formatters import show_account_status, show_sync_stats
from contact_mirror.cli.main import (
    build_engine,
    cli,
    get_config_dir,
    open_store,
    run_passes,
    target_identities,
)

__all__ = [
    "build_engine",
    "cli",
    "get_config_dir",
    "open_store",
    "run_passes",
    "show_account_status",
    "show_sync_stats",
    "target_identities",
]
