"""
Storage abstraction layer for the fee splitter service.

Backends:
- JSON file (default)
- Memory (for testing)

Usage:
    from storage import get_storage_backend

    storage = get_storage_backend()
    storage.save_state(document)
    document = storage.load_state()
"""

import os

from storage.base import StorageBackend, StorageError, StorageReadError, StorageWriteError
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

__all__ = [
    "JSONFileStorage",
    "MemoryStorage",
    "StorageBackend",
    "StorageError",
    "StorageReadError",
    "StorageWriteError",
    "get_storage_backend",
]


def get_storage_backend() -> StorageBackend:
    """
    Build the backend selected by environment variables.

    Environment variables:
        STORAGE_BACKEND: "json" (default) or "memory"
        STATE_DATA_FILE: Path for JSON storage (default: splitter_state.json)

    Raises:
        StorageError: unknown backend type
    """
    backend_type = os.getenv("STORAGE_BACKEND", "json").lower()

    if backend_type == "json":
        return JSONFileStorage(os.getenv("STATE_DATA_FILE", "splitter_state.json"))
    if backend_type == "memory":
        return MemoryStorage()
    raise StorageError(f"Unknown storage backend: {backend_type}")
