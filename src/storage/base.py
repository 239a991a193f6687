"""
Abstract base class for storage backends.

A backend persists one document: the serialized splitter state together
with the local host state (block height and bank balances).
"""

from abc import ABC, abstractmethod
from typing import Any


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class StorageBackend(ABC):
    """Interface every storage backend implements."""

    @abstractmethod
    def load_state(self) -> dict[str, Any] | None:
        """
        Load the persisted state document.

        Returns:
            The state dictionary, or None if nothing was saved yet.

        Raises:
            StorageReadError: If reading fails
        """

    @abstractmethod
    def save_state(self, state: dict[str, Any]) -> None:
        """
        Replace the persisted state document.

        Raises:
            StorageWriteError: If writing fails
        """

    @abstractmethod
    def is_available(self) -> bool:
        """True if the backend can currently be read and written."""

    def get_info(self) -> dict[str, Any]:
        """Backend type, status and configuration."""
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }
