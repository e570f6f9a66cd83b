"""
contact_mirror.config - Configuration management module

Contains configuration loading, validation, defaults and the default
configuration file generator.
"""

from contact_mirror.config.generator import generate_default_config, save_config_file
from contact_mirror.config.loader import (
    DEFAULT_ACCOUNT_TYPE,
    DEFAULTS,
    ConfigError,
    ConfigLoader,
    with_defaults,
)

__all__ = [
    "ConfigLoader",
    "ConfigError",
    "DEFAULTS",
    "DEFAULT_ACCOUNT_TYPE",
    "with_defaults",
    "generate_default_config",
    "save_config_file",
]
