"""
contact_mirror.utils - Utility module

Common utilities including logging configuration and path resolution.
"""

from contact_mirror.utils.paths import (
    DEFAULT_CONFIG_DIR,
    resolve_config_dir,
    resolve_data_path,
)

__all__ = ["resolve_config_dir", "resolve_data_path", "DEFAULT_CONFIG_DIR"]
