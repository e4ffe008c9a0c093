"""Redis/Valkey cache backend.

Values are stored as text. With ``manage_types`` enabled the kind of each
value is kept in a type tag so reads return the value that was written;
otherwise reads return the stored text.

Usage:
    from tiercache.backends.redis import new_redis_cache

    cache = new_redis_cache("app:", "localhost", ttl=3600, manage_types=True).open()
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from contextlib import contextmanager
from datetime import timedelta
from typing import Any

import redis
from redis.exceptions import RedisError, ResponseError

from tiercache.adapter import CacheAdapter
from tiercache.backends.base import StorageBackend
from tiercache.backends.memory import TTLStore
from tiercache.datatypes import DataType, add_numeric, as_int64, from_text, to_text
from tiercache.errors import BackendError, KeyNotFoundError, ValueConversionError
from tiercache.options import RedisOptions
from tiercache.typetags import TypeTagChannel

logger = logging.getLogger(__name__)


class RedisBackend(StorageBackend):
    """Backend over a Redis or Valkey server.

    Args:
        options: Connection and cache options
        client: Existing redis.Redis client (must use decode_responses=True)
    """

    name = "redis"

    def __init__(self, options: RedisOptions, client: redis.Redis | None = None):
        super().__init__(options)
        self._client = client
        self._ttl_ms = int(options.ttl.total_seconds() * 1000) if options.ttl else None
        self._results: TTLStore | None = None
        if options.client_caching:
            self._results = TTLStore(
                default_ttl=options.client_caching_ttl.total_seconds() or None,
                purge_interval=max(options.client_caching_ttl.total_seconds(), 1.0),
            )
        self._tags: TypeTagChannel | None = None

    @property
    def client(self) -> redis.Redis:
        """Lazy-load the Redis client."""
        if self._client is None:
            opts = self.options
            if opts.url:
                self._client = redis.Redis.from_url(
                    opts.url, decode_responses=True, socket_timeout=opts.socket_timeout
                )
            else:
                self._client = redis.Redis(
                    host=opts.host,
                    port=opts.port,
                    db=opts.db,
                    password=opts.password,
                    socket_timeout=opts.socket_timeout,
                    decode_responses=True,
                )
        return self._client

    @property
    def tags(self) -> TypeTagChannel | None:
        """Type tag channel, or None when type management is off."""
        if not self.options.manage_types:
            return None
        if self._tags is None:
            self._tags = TypeTagChannel(self.client, self.options.ttl, self.options.datetime_format)
        return self._tags

    @contextmanager
    def _errors(self, operation: str, key: Any = None):
        """Translate redis errors into BackendError."""
        try:
            yield
        except RedisError as e:
            raise BackendError(
                f"redis {operation} failed: {e}",
                backend=self.name,
                operation=operation,
                key=key,
                cause=e,
            ) from e

    def _invalidate(self, keys: Iterable[str]) -> None:
        if self._results is not None:
            for key in keys:
                self._results.delete(key)

    def open(self) -> None:
        with self._errors("open"):
            self.client.ping()
        logger.debug(f"Connected to redis for namespace {self.options.namespace!r}")

    def close(self) -> None:
        # The client reconnects on next use, so it is kept
        if self._client is not None:
            with self._errors("close"):
                self._client.close()
        if self._results is not None:
            self._results.clear()

    def _decode(self, key: str, text: str) -> Any:
        if self.tags is None:
            return text
        return self.tags.restore(key, text)

    def get(self, key: str) -> Any:
        if self._results is not None:
            try:
                return self._results.get(key)
            except KeyError:
                pass

        with self._errors("get", key):
            text = self.client.get(key)
            if text is None:
                raise KeyNotFoundError(key)
            value = self._decode(key, text)

        if self._results is not None:
            self._results.set(key, value)
        return value

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        keys = list(keys)
        if not keys:
            return {}

        with self._errors("get_many", keys):
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.get(key)
            replies = pipe.execute(raise_on_error=False)

            texts: dict[str, str] = {}
            for key, reply in zip(keys, replies):
                if isinstance(reply, Exception):
                    logger.warning(
                        f"redis get of {key} failed in batch: {reply}",
                        extra={"backend": self.name, "operation": "get_many", "key": key},
                    )
                elif reply is not None:
                    texts[key] = reply

            if self.tags is None:
                return texts
            return self.tags.restore_many(texts)

    def exists(self, key: str) -> bool:
        with self._errors("exists", key):
            return self.client.exists(key) > 0

    def set(self, key: str, value: Any) -> None:
        text = to_text(value, self.options.datetime_format)
        with self._errors("set", key):
            self.client.set(key, text, px=self._ttl_ms)
            if self.tags is not None:
                self.tags.record(key, value)
        self._invalidate([key])

    def set_many(self, values: Mapping[str, Any]) -> list[str]:
        if not values:
            return []

        keys = list(values)
        with self._errors("set_many", keys):
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.set(key, to_text(values[key], self.options.datetime_format), px=self._ttl_ms)
            replies = pipe.execute(raise_on_error=False)

            written = []
            for key, reply in zip(keys, replies):
                if isinstance(reply, Exception):
                    logger.warning(
                        f"redis set of {key} failed in batch: {reply}",
                        extra={"backend": self.name, "operation": "set_many", "key": key},
                    )
                else:
                    written.append(key)

            if self.tags is not None and written:
                self.tags.record_many({key: values[key] for key in written})

        self._invalidate(keys)
        return written

    def replace(self, key: str, value: Any) -> bool:
        text = to_text(value, self.options.datetime_format)
        with self._errors("replace", key):
            replaced = bool(self.client.set(key, text, px=self._ttl_ms, xx=True))
            if replaced and self.tags is not None:
                self.tags.refresh(key)
        self._invalidate([key])
        return replaced

    def expire(self, key: str) -> bool:
        with self._errors("expire", key):
            if not self._ttl_ms:
                return self.client.exists(key) > 0
            refreshed = bool(self.client.pexpire(key, self._ttl_ms))
            if refreshed and self.tags is not None:
                self.tags.refresh(key)
        return refreshed

    def expire_many(self, keys: Iterable[str]) -> list[str]:
        keys = list(keys)
        if not keys:
            return []
        if not self._ttl_ms:
            return [key for key in keys if self.exists(key)]

        with self._errors("expire_many", keys):
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.pexpire(key, self._ttl_ms)
            replies = pipe.execute(raise_on_error=False)

            refreshed = [
                key for key, reply in zip(keys, replies) if not isinstance(reply, Exception) and reply
            ]
            if self.tags is not None and refreshed:
                self.tags.refresh_many(refreshed)
        return refreshed

    def delete(self, key: str) -> bool:
        with self._errors("delete", key):
            removed = self.client.delete(key) > 0
            if self.tags is not None:
                self.tags.forget([key])
        self._invalidate([key])
        return removed

    def delete_many(self, keys: Iterable[str]) -> list[str]:
        keys = list(keys)
        if not keys:
            return []

        with self._errors("delete_many", keys):
            pipe = self.client.pipeline(transaction=False)
            for key in keys:
                pipe.delete(key)
            replies = pipe.execute(raise_on_error=False)
            if self.tags is not None:
                self.tags.forget(keys)

        self._invalidate(keys)
        return [key for key, reply in zip(keys, replies) if not isinstance(reply, Exception) and reply]

    def incr(self, key: str, delta: int) -> int:
        with self._errors("incr", key):
            kind = self.tags.kind(key) if self.tags is not None else None
            if kind is not None:
                value = self._add_in_transaction(key, kind, delta)
            else:
                value = self._incrby(key, delta)

        self._invalidate([key])
        return as_int64(value)

    def _incrby(self, key: str, delta: int) -> Any:
        """Server-side arithmetic for keys with no recorded kind."""
        if not self.client.exists(key):
            raise KeyNotFoundError(key)
        try:
            return self.client.incrby(key, delta)
        except ResponseError:
            text = self.client.get(key)

        try:
            int(text)
        except (TypeError, ValueError):
            pass
        else:
            # INCRBY refuses to leave the INT64 range; wrap like the memory tier
            return self._add_in_transaction(key, DataType.INT64, delta)

        try:
            float(text)
        except (TypeError, ValueError):
            raise ValueConversionError("value is not an integer or integer like", text=text) from None
        return self.client.incrbyfloat(key, delta)

    def _add_in_transaction(self, key: str, kind: DataType, delta: int) -> Any:
        """Read, add and write back under WATCH so the result keeps its kind.

        Fixed-width integers wrap exactly as in the memory tier. The key's
        TTL is left as it is.
        """
        fmt = self.options.datetime_format

        def add(pipe):
            text = pipe.get(key)
            if text is None:
                raise KeyNotFoundError(key)
            value = add_numeric(from_text(kind, text, fmt), delta)
            pipe.multi()
            pipe.set(key, to_text(value, fmt), keepttl=True)
            return value

        return self.client.transaction(add, key, value_from_callable=True)


def new_redis_cache(
    namespace: str = "",
    host: str = "localhost",
    ttl: float | timedelta | None = None,
    client_caching: bool = False,
    client_caching_ttl: float | timedelta = 0,
    manage_types: bool = False,
    **options,
) -> CacheAdapter:
    """Create a Redis-backed cache.

    Args:
        namespace: Prefix applied to every key
        host: Server host name
        ttl: Time to live, seconds or timedelta (None = no expiry)
        client_caching: Keep read results in process
        client_caching_ttl: How long a cached read result is kept
        manage_types: Record value kinds so reads return the written kind
        **options: Any other RedisOptions field, plus ``client`` to reuse
            an existing redis.Redis client

    Returns:
        CacheAdapter over a RedisBackend (not yet opened)
    """
    client = options.pop("client", None)
    opts = RedisOptions(
        namespace=namespace,
        host=host,
        ttl=ttl,
        client_caching=client_caching,
        client_caching_ttl=client_caching_ttl,
        manage_types=manage_types,
        **options,
    )
    return CacheAdapter(RedisBackend(opts, client=client))
