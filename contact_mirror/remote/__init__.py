"""
contact_mirror.remote - Remote contact sources

Providers of the authoritative, already-decrypted contact collection.
"""

from contact_mirror.remote.source import (
    HttpRemoteSource,
    JsonExportSource,
    RemoteSource,
    RemoteSourceError,
    create_source,
)

__all__ = [
    "RemoteSource",
    "RemoteSourceError",
    "JsonExportSource",
    "HttpRemoteSource",
    "create_source",
]
