"""
contact_mirror.storage - Local contact store

SQLite-backed store with atomic batch application.
"""

from contact_mirror.storage.db import (
    BatchApplyError,
    ContactStore,
    StoreAccessDenied,
    StoreError,
)

__all__ = ["ContactStore", "StoreError", "BatchApplyError", "StoreAccessDenied"]
