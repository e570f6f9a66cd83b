"""
Path utilities for the contact-mirror data directory.

All state (configuration, contact store, logs, PID file and the default
export directory) lives under one directory, resolved the same way by every
module.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default data directory
DEFAULT_CONFIG_DIR = Path.home() / ".contact-mirror"

# Environment variable for overriding the data directory
CONFIG_DIR_ENV_VAR = "CONTACT_MIRROR_CONFIG_DIR"

CONFIG_FILE_NAME = "config.yaml"
DB_FILE_NAME = "contacts.db"
PID_FILE_NAME = "daemon.pid"
EXPORT_DIR_NAME = "export"
LOG_DIR_NAME = "logs"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the data directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. CONTACT_MIRROR_CONFIG_DIR environment variable
        3. Default directory (~/.contact-mirror)

    Returns:
        Resolved Path (expanduser and resolve applied)
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def resolve_data_path(
    configured: Path | str | None, config_dir: Path, default_name: str
) -> Path:
    """
    Resolve a configured path relative to the data directory.

    Relative paths are taken relative to config_dir; an unset value falls
    back to config_dir / default_name.
    """
    if not configured:
        return config_dir / default_name
    path = Path(configured).expanduser()
    if not path.is_absolute():
        path = config_dir / path
    return path
