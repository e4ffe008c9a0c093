"""Storage backend contract.

A backend supplies the operation bodies that differ between stores (client
calls, wire format). Keys arriving here are already namespaced and
validated; policy and tiering live in CacheAdapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any

from tiercache.errors import KeyNotFoundError
from tiercache.options import CacheOptions


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    name: str = "abstract"

    def __init__(self, options: CacheOptions):
        self.options = options

    @property
    @abstractmethod
    def client(self) -> Any:
        """The underlying store client."""

    def open(self) -> None:
        """Acquire or validate the connection to the store."""

    def close(self) -> None:
        """Release store resources."""

    @abstractmethod
    def get(self, key: str) -> Any:
        """Get a value. Raises KeyNotFoundError on a miss."""

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Get several values. Missing keys are left out of the result."""
        found: dict[str, Any] = {}
        for key in keys:
            try:
                found[key] = self.get(key)
            except KeyNotFoundError:
                continue
        return found

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether a live key exists."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a value with the configured TTL."""

    def set_many(self, values: Mapping[str, Any]) -> list[str]:
        """Store several values. Returns the keys written."""
        written = []
        for key, value in values.items():
            self.set(key, value)
            written.append(key)
        return written

    @abstractmethod
    def replace(self, key: str, value: Any) -> bool:
        """Store a value only if the key already exists."""

    @abstractmethod
    def expire(self, key: str) -> bool:
        """Reset the TTL of a key. Returns False if the key is not live."""

    def expire_many(self, keys: Iterable[str]) -> list[str]:
        """Reset the TTL of several keys. Returns the keys refreshed."""
        return [key for key in keys if self.expire(key)]

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a key. Returns True if it existed."""

    def delete_many(self, keys: Iterable[str]) -> list[str]:
        """Delete several keys. Returns the keys removed."""
        return [key for key in keys if self.delete(key)]

    @abstractmethod
    def incr(self, key: str, delta: int) -> int:
        """Atomically add delta to a numeric value.

        Returns the new value as a signed 64-bit integer. Raises
        KeyNotFoundError on a miss and ValueConversionError when the stored
        value is not numeric.
        """
