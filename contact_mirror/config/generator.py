"""
Configuration file generator for contact mirroring.

Generates the commented default configuration written by
``contact-mirror init-config``.
"""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def generate_default_config() -> str:
    """
    Generate the default YAML configuration with every option documented.

    Every option is commented out, so the generated file loads as an empty
    configuration until the user edits it.
    """
    return """# contact-mirror Configuration
# ============================
#
# Mirrors remote contact collections one way into a local contact store.
# The remote side always wins: local copies are deleted and rebuilt.
#
# CLI arguments override these values.


# Accounts
# --------

# Remote accounts to mirror. login_identity is matched against the
# --account name given to `contact-mirror sync`.
# accounts:
#   - external_account_id: acc-123
#     login_identity: me@example.com

# Account type recorded on local containers
# Default: contact-mirror
# account_type: contact-mirror


# Local Store
# -----------

# SQLite database path (relative paths are under the config directory)
# Default: contacts.db
# db_path: contacts.db


# Remote Source
# -------------

# Where decrypted remote contacts come from:
#   - file: <source_path>/<external_account_id>.json
#   - http: GET <source_url>/accounts/<external_account_id>/contacts
# Default: file
# source_type: file

# Export directory for the file source
# Default: export (under the config directory)
# source_path: export

# Base URL for the http source
# source_url: https://contacts.example.com/api

# Request timeout in seconds and attempts per fetch (http source)
# Default: 30 and 5
# source_timeout: 30
# source_max_retries: 5


# Photos
# ------

# Re-encode the contact photo as a bounded JPEG before storing it
# Default: true
# photo_processing: true

# Maximum photo width/height in pixels
# Default: 720
# photo_max_dimension: 720


# Daemon
# ------

# Time between scheduled passes (30s, 15m, 6h, 1d)
# Default: 6h
# daemon_interval: 6h

# PID file of the running daemon
# Default: daemon.pid (under the config directory)
# daemon_pid_file: daemon.pid


# Logging
# -------

# Directory for daily log files
# Default: logs (under the config directory)
# log_dir: logs

# Number of log files to keep (0 keeps all)
# Default: 10
# log_retention_count: 10

# Verbose console output
# Default: false
# verbose: false
"""


def save_config_file(
    config_path: Path, overwrite: bool = False
) -> tuple[bool, str | None]:
    """
    Write the default configuration file.

    Creates the parent directory (mode 0700) and the file (mode 0600).

    Args:
        config_path: Destination path
        overwrite: Replace an existing file

    Returns:
        (True, None) on success, (False, error_message) on failure
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
        config_path.chmod(0o600)

        logger.info(f"Created configuration file: {config_path}")
        return (True, None)

    except OSError as e:
        error_msg = f"Failed to create configuration file: {e}"
        logger.error(error_msg)
        return (False, error_msg)
