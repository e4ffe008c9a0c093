"""Cache adapter: policy enforcement and tier chaining.

Every backend plugs into CacheAdapter, which applies the same rules to all
of them before any backend call is made:

1. readable/writable flag for the operation
2. namespacing and key validation
3. value kind against the allowed data types (writes)

After the local backend call, the chain protocol decides whether the next
tier is consulted or updated:

- reads (get, has): on a local miss the next tier is asked and a hit is
  promoted into the local tier
- writes (set, remove, touch): applied locally, then mirrored to the next
  tier best-effort
- conditional writes (check_and_set, increment, decrement): the local tier
  is authoritative when it holds the key and the result is mirrored; on a
  local miss the next tier answers and its result is promoted

Usage:
    from tiercache import new_memory_cache, new_redis_cache

    local = new_memory_cache("app:", ttl=60)
    local.chain(new_redis_cache("app:", "localhost", ttl=3600).open())

    local.set("user:1", "alice")
    value = local.get("user:1")
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from tiercache.backends.base import StorageBackend
from tiercache.datatypes import as_int64, classify
from tiercache.errors import (
    BackendError,
    CacheError,
    KeyInvalidError,
    KeyNotFoundError,
    NotReadableError,
    NotWritableError,
    UnsupportedDataTypeError,
)
from tiercache.options import CacheOptions

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BatchResult(Generic[T]):
    """Result of a multi-key operation.

    Partial results are kept even when some keys failed; error holds the
    most recent failure.
    """

    items: T
    error: CacheError | None = None

    def __bool__(self) -> bool:
        """True when every key succeeded."""
        return self.error is None

    def raise_for_error(self) -> T:
        """Return the items, or raise the recorded error."""
        if self.error is not None:
            raise self.error
        return self.items


class CacheAdapter:
    """A cache tier over one storage backend.

    Args:
        backend: Store-specific operation bodies
        options: Instance options (default: the backend's options)
    """

    def __init__(self, backend: StorageBackend, options: CacheOptions | None = None):
        self._backend = backend
        self._options = options if options is not None else backend.options
        self._chained: CacheAdapter | None = None

    def __repr__(self) -> str:
        return f"<CacheAdapter {self.name} namespace={self._options.namespace!r}>"

    @property
    def name(self) -> str:
        return self._backend.name

    @property
    def options(self) -> CacheOptions:
        return self._options

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    @property
    def client(self) -> Any:
        """The backend's store client."""
        return self._backend.client

    # ------------------------------------------------------------------
    # Chaining
    # ------------------------------------------------------------------
    def chain(self, adapter: CacheAdapter) -> CacheAdapter:
        """Attach the next tier. Returns self.

        Raises:
            ValueError: If the chain would loop back to this adapter
        """
        tier = adapter
        while tier is not None:
            if tier is self:
                raise ValueError(f"chaining {adapter!r} to {self!r} would create a cycle")
            tier = tier.chained
        self._chained = adapter
        logger.debug(f"Chained {adapter!r} after {self!r}")
        return self

    @property
    def chained(self) -> CacheAdapter | None:
        """The next tier, if any."""
        return self._chained

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def open(self) -> CacheAdapter:
        """Open the backend connection. Returns self."""
        self._backend.open()
        logger.info(f"Opened {self.name} cache")
        return self

    def close(self) -> None:
        """Close the backend connection."""
        self._backend.close()
        logger.info(f"Closed {self.name} cache")

    def __enter__(self) -> CacheAdapter:
        return self.open()

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Key utilities
    # ------------------------------------------------------------------
    def namespaced_key(self, key: str) -> str:
        """Prefix a key with the namespace."""
        return f"{self._options.namespace}{key}"

    def strip_namespace(self, key: str) -> str:
        """Remove the namespace from a key (first occurrence only)."""
        namespace = self._options.namespace
        if namespace:
            return key.replace(namespace, "", 1)
        return key

    def validate_key(self, key: str) -> bool:
        """Validate a namespaced key against the key pattern and length limit."""
        max_length = self._options.max_key_length
        if max_length and len(key) > max_length:
            return False
        pattern = self._options.key_pattern
        if not pattern:
            return True
        return re.search(pattern, key) is not None

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------
    def _check_readable(self, operation: str) -> None:
        if not self._options.readable:
            raise NotReadableError(operation)

    def _check_writable(self, operation: str) -> None:
        if not self._options.writable:
            raise NotWritableError(operation)

    def _prepare_key(self, key: str) -> str:
        ns_key = self.namespaced_key(key)
        if not self.validate_key(ns_key):
            raise KeyInvalidError(key, self._options.key_pattern or None)
        return ns_key

    def _check_data_type(self, key: str, value: Any) -> None:
        data_type = classify(value)
        if not self._options.accepts(data_type):
            raise UnsupportedDataTypeError(key, data_type.name, value)

    # ------------------------------------------------------------------
    # Chain protocol
    # ------------------------------------------------------------------
    def _read_through(self, key: str, ns_key: str) -> Any:
        """Read a key from the next tier and promote it locally."""
        try:
            value = self._chained.get(key)
        except CacheError as e:
            logger.debug(f"Chain miss for {key} below {self.name}: {e}")
            raise KeyNotFoundError(key) from e
        self._promote(key, ns_key, value)
        return value

    def _promote(self, key: str, ns_key: str, value: Any) -> None:
        """Write a value found further down the chain into this tier."""
        if not self._options.writable or not self._options.accepts(classify(value)):
            logger.debug(f"Not promoting {key} into {self.name}: tier does not accept it")
            return
        try:
            self._backend.set(ns_key, value)
        except CacheError as e:
            logger.warning(
                f"Failed to promote {key} into {self.name}: {e}",
                extra={"backend": self.name, "operation": "promote", "key": key},
            )
            return
        logger.debug(f"Promoted {key} into {self.name}")

    def _mirror(self, operation: str, key: Any, call: Callable[[CacheAdapter], Any]) -> None:
        """Apply an operation to the next tier, ignoring its failures."""
        if self._chained is None:
            return
        try:
            call(self._chained)
        except CacheError as e:
            logger.warning(
                f"Chained {operation} of {key} below {self.name} failed: {e}",
                extra={"backend": self._chained.name, "operation": operation, "key": key},
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get(self, key: str) -> Any:
        """Get the value for a key, consulting the chain on a local miss.

        Raises:
            NotReadableError: If the cache is not readable
            KeyInvalidError: If the key fails validation
            KeyNotFoundError: If no tier holds the key
            BackendError: If the backend failed and no chain is attached
        """
        self._check_readable("get")
        ns_key = self._prepare_key(key)
        try:
            value = self._backend.get(ns_key)
        except KeyNotFoundError:
            if self._chained is None:
                raise KeyNotFoundError(key) from None
        except BackendError as e:
            if self._chained is None:
                raise
            logger.warning(
                f"{self.name} get of {key} failed, trying chain: {e}",
                extra={"backend": self.name, "operation": "get", "key": key},
            )
        else:
            logger.debug(f"Cache hit: {self.name} {key}")
            return value

        return self._read_through(key, ns_key)

    def get_many(self, keys: Iterable[str]) -> BatchResult[dict[str, Any]]:
        """Get several keys. Each missing key is looked up down the chain."""
        self._check_readable("get_many")
        result: BatchResult[dict[str, Any]] = BatchResult(items={})

        wanted: dict[str, str] = {}
        for key in keys:
            try:
                wanted[self._prepare_key(key)] = key
            except KeyInvalidError as e:
                result.error = e

        try:
            found = self._backend.get_many(list(wanted))
        except BackendError as e:
            if self._chained is None:
                result.error = e
                return result
            logger.warning(
                f"{self.name} get_many failed, trying chain: {e}",
                extra={"backend": self.name, "operation": "get_many"},
            )
            found = {}

        for ns_key, key in wanted.items():
            if ns_key in found:
                result.items[key] = found[ns_key]
                continue
            if self._chained is None:
                result.error = KeyNotFoundError(key)
                continue
            try:
                result.items[key] = self._read_through(key, ns_key)
            except KeyNotFoundError as e:
                result.error = e

        return result

    def has(self, key: str) -> bool:
        """Check whether any tier holds a key; a chained hit is promoted."""
        self._check_readable("has")
        ns_key = self._prepare_key(key)
        try:
            if self._backend.exists(ns_key):
                return True
        except BackendError as e:
            if self._chained is None:
                raise
            logger.warning(
                f"{self.name} has of {key} failed, trying chain: {e}",
                extra={"backend": self.name, "operation": "has", "key": key},
            )

        if self._chained is None:
            return False
        try:
            self._read_through(key, ns_key)
        except KeyNotFoundError:
            return False
        return True

    def has_many(self, keys: Iterable[str]) -> dict[str, bool]:
        """Check several keys. Invalid keys are reported as absent."""
        self._check_readable("has_many")
        found = {}
        for key in keys:
            try:
                found[key] = self.has(key)
            except KeyInvalidError:
                found[key] = False
        return found

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def set(self, key: str, value: Any) -> bool:
        """Set a value locally and mirror it to the chain.

        Raises:
            NotWritableError: If the cache is not writable
            KeyInvalidError: If the key fails validation
            UnsupportedDataTypeError: If the value kind is not accepted
            BackendError: If the local backend failed
        """
        self._check_writable("set")
        ns_key = self._prepare_key(key)
        self._check_data_type(key, value)
        self._backend.set(ns_key, value)
        self._mirror("set", key, lambda tier: tier.set(key, value))
        return True

    def set_many(self, values: Mapping[str, Any]) -> BatchResult[list[str]]:
        """Set several values. Returns the keys written."""
        self._check_writable("set_many")
        result: BatchResult[list[str]] = BatchResult(items=[])

        accepted: dict[str, Any] = {}
        for key, value in values.items():
            try:
                ns_key = self._prepare_key(key)
                self._check_data_type(key, value)
            except (KeyInvalidError, UnsupportedDataTypeError) as e:
                result.error = e
                continue
            accepted[ns_key] = value

        try:
            written = self._backend.set_many(accepted)
        except BackendError as e:
            result.error = e
            return result

        result.items = [self.strip_namespace(ns_key) for ns_key in written]
        mirrored = {key: values[key] for key in result.items}
        self._mirror("set_many", result.items, lambda tier: tier.set_many(mirrored))
        return result

    def check_and_set(self, key: str, value: Any) -> bool:
        """Replace the value of an existing key.

        Raises:
            KeyNotFoundError: If no tier holds the key
        """
        self._check_writable("check_and_set")
        ns_key = self._prepare_key(key)
        self._check_data_type(key, value)

        if self._backend.replace(ns_key, value):
            self._mirror("check_and_set", key, lambda tier: tier.check_and_set(key, value))
            return True
        if self._chained is None:
            raise KeyNotFoundError(key)

        try:
            self._chained.check_and_set(key, value)
        except CacheError as e:
            raise KeyNotFoundError(key) from e
        self._promote(key, ns_key, value)
        return True

    def check_and_set_many(self, values: Mapping[str, Any]) -> BatchResult[list[str]]:
        """Replace several existing keys. Returns the keys replaced."""
        self._check_writable("check_and_set_many")
        result: BatchResult[list[str]] = BatchResult(items=[])
        for key, value in values.items():
            try:
                self.check_and_set(key, value)
            except CacheError as e:
                result.error = e
                continue
            result.items.append(key)
        return result

    def touch(self, key: str) -> bool:
        """Reset the TTL of a key. Returns whether a live key was refreshed."""
        self._check_readable("touch")
        self._check_writable("touch")
        ns_key = self._prepare_key(key)
        refreshed = self._backend.expire(ns_key)
        self._mirror("touch", key, lambda tier: tier.touch(key))
        return refreshed

    def touch_many(self, keys: Iterable[str]) -> list[str]:
        """Reset the TTL of several keys. Returns the keys refreshed."""
        self._check_readable("touch_many")
        self._check_writable("touch_many")
        keys = list(keys)
        ns_keys = [self._prepare_key(key) for key in keys]
        refreshed = [self.strip_namespace(ns_key) for ns_key in self._backend.expire_many(ns_keys)]
        self._mirror("touch_many", keys, lambda tier: tier.touch_many(keys))
        return refreshed

    def remove(self, key: str) -> bool:
        """Delete a key locally and from the chain. Returns the local result."""
        self._check_writable("remove")
        ns_key = self._prepare_key(key)
        removed = self._backend.delete(ns_key)
        self._mirror("remove", key, lambda tier: tier.remove(key))
        return removed

    def remove_many(self, keys: Iterable[str]) -> list[str]:
        """Delete several keys. Returns the keys removed locally."""
        self._check_writable("remove_many")
        keys = list(keys)
        ns_keys = [self._prepare_key(key) for key in keys]
        removed = [self.strip_namespace(ns_key) for ns_key in self._backend.delete_many(ns_keys)]
        self._mirror("remove_many", keys, lambda tier: tier.remove_many(keys))
        return removed

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------
    def increment(self, key: str, n: int = 1) -> int:
        """Add n to a numeric value. Returns the new value as a 64-bit int.

        Raises:
            KeyNotFoundError: If no tier holds the key
            ValueConversionError: If the value is not numeric
        """
        return self._apply_delta("increment", key, n)

    def decrement(self, key: str, n: int = 1) -> int:
        """Subtract n from a numeric value. Returns the new value as a 64-bit int."""
        return self._apply_delta("decrement", key, n)

    def _apply_delta(self, operation: str, key: str, n: int) -> int:
        self._check_writable(operation)
        ns_key = self._prepare_key(key)
        delta = n if operation == "increment" else -n

        try:
            value = self._backend.incr(ns_key, delta)
        except KeyNotFoundError:
            if self._chained is None:
                raise KeyNotFoundError(key) from None
            value = getattr(self._chained, operation)(key, n)
            self._promote(key, ns_key, value)
            return value

        self._mirror(operation, key, lambda tier: getattr(tier, operation)(key, n))
        return as_int64(value)
