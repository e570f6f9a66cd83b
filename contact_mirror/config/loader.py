"""
Configuration loader module for contact mirroring.

Provides YAML-based configuration file loading with support for:
- Loading configuration from the data directory or a custom file
- Graceful handling of missing configuration files
- Validation of key types, enumerated values and numeric ranges
- Default values for every optional key
"""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml

from contact_mirror.daemon import parse_interval
from contact_mirror.utils.paths import CONFIG_FILE_NAME, resolve_config_dir

logger = logging.getLogger(__name__)

# Account type used for local containers when none is configured
DEFAULT_ACCOUNT_TYPE = "contact-mirror"

DEFAULTS: dict[str, Any] = {
    "accounts": [],
    "account_type": DEFAULT_ACCOUNT_TYPE,
    "source_type": "file",
    "source_timeout": 30.0,
    "source_max_retries": 5,
    "photo_processing": True,
    "photo_max_dimension": 720,
    "daemon_interval": "6h",
    "log_retention_count": 10,
    "verbose": False,
}

VALID_SOURCE_TYPES = ("file", "http")


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        config_file: str = CONFIG_FILE_NAME,
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.contact-mirror/ or $CONTACT_MIRROR_CONFIG_DIR
            config_file: Name of the configuration file (default: config.yaml)
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = config_file

    @property
    def config_path(self) -> Path:
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the default configuration file.

        Returns:
            Configuration values, or an empty dict if the file doesn't exist

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        return self.load_from_file(self.config_path)

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Args:
            path: Path to the configuration file

        Returns:
            Configuration values, or an empty dict if the file doesn't exist

        Raises:
            ConfigError: If the file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

        if config is None:
            logger.debug(f"Configuration file is empty: {path}")
            return {}

        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration file must contain a YAML dictionary, "
                f"got {type(config).__name__}"
            )

        logger.debug(f"Loaded configuration from {path}")
        return config

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Unknown keys are ignored with a debug message.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        valid_keys: dict[str, type[Any] | tuple[type[Any], ...]] = {
            # Accounts
            "accounts": list,
            "account_type": str,
            # Local store
            "db_path": str,
            # Remote source
            "source_type": str,
            "source_path": str,
            "source_url": str,
            "source_timeout": (int, float),
            "source_max_retries": int,
            # Photos
            "photo_processing": bool,
            "photo_max_dimension": int,
            # Daemon
            "daemon_interval": (str, int),
            "daemon_pid_file": str,
            # Logging
            "log_dir": str,
            "log_retention_count": int,
            "verbose": bool,
        }

        for key, value in config.items():
            if key not in valid_keys:
                logger.debug(f"Ignoring unknown configuration key '{key}'")
                continue
            expected_type = valid_keys[key]
            # bool is an int subclass; reject it for numeric keys
            is_bool_for_number = isinstance(value, bool) and expected_type is not bool
            if not isinstance(value, expected_type) or is_bool_for_number:
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        for index, entry in enumerate(config.get("accounts") or []):
            if not isinstance(entry, dict):
                raise ConfigError(f"accounts[{index}] must be a dictionary")
            for field in ("external_account_id", "login_identity"):
                if not entry.get(field):
                    raise ConfigError(f"accounts[{index}] is missing '{field}'")

        if "source_type" in config:
            if config["source_type"] not in VALID_SOURCE_TYPES:
                raise ConfigError(
                    f"Invalid source_type '{config['source_type']}'. "
                    f"Must be one of: {', '.join(VALID_SOURCE_TYPES)}"
                )
            if config["source_type"] == "http" and not config.get("source_url"):
                raise ConfigError("source_url is required when source_type is http")

        if "source_url" in config:
            if not config["source_url"].startswith(("http://", "https://")):
                raise ConfigError(
                    f"source_url must start with http:// or https://, "
                    f"got {config['source_url']}"
                )

        if "daemon_interval" in config:
            try:
                parse_interval(config["daemon_interval"])
            except ValueError as e:
                raise ConfigError(f"Invalid daemon_interval: {e}") from e

        # Positive integer values
        for key in ("source_max_retries", "photo_max_dimension"):
            if key in config and config[key] < 1:
                raise ConfigError(f"{key} must be >= 1, got {config[key]}")

        if "source_timeout" in config and config["source_timeout"] <= 0:
            raise ConfigError(
                f"source_timeout must be > 0, got {config['source_timeout']}"
            )

        # 0 disables log cleanup
        if "log_retention_count" in config and config["log_retention_count"] < 0:
            raise ConfigError(
                f"log_retention_count must be >= 0, "
                f"got {config['log_retention_count']}"
            )

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Returns:
            Validated configuration dictionary

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config


def with_defaults(config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of config with defaults filled in for missing keys."""
    merged = dict(DEFAULTS)
    merged.update({key: value for key, value in config.items() if value is not None})
    return merged
