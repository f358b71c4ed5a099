"""
Storage backends for the fleetwatch event store.
"""

from fleetwatch.storage.backend import StorageBackend
from fleetwatch.storage.sqlite_backend import SQLiteBackend

__all__ = [
    "StorageBackend",
    "SQLiteBackend",
]
