"""Type tags for string-only stores.

A string-only store gives back text, so the kind of the value written is
kept in a companion key next to the data key:

    gcm:<namespaced key> -> "<DataType id>"

The prefix matches the layout other clients of the same store already
persist. The tag is written only if absent, so the first kind written
sticks until the key is removed. Its TTL is reset to the data key's on
every write and refresh, and it is deleted together with the data key.
When no tag exists the stored text is returned unmodified.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import timedelta
from typing import Any

from tiercache.datatypes import DataType, classify, from_text

logger = logging.getLogger(__name__)

TYPE_TAG_PREFIX = "gcm:"


def type_tag_key(key: str) -> str:
    """Companion key holding the kind of a data key."""
    return f"{TYPE_TAG_PREFIX}{key}"


class TypeTagChannel:
    """Reads and writes type tags through a Redis client.

    Args:
        client: redis.Redis client created with decode_responses=True
        ttl: TTL shared with the data keys (None = no expiry)
        datetime_format: strftime format used for TIME values
    """

    def __init__(self, client, ttl: timedelta | None = None, datetime_format: str | None = None):
        self._client = client
        self._ttl_ms = int(ttl.total_seconds() * 1000) if ttl else None
        self._datetime_format = datetime_format

    def record(self, key: str, value: Any) -> None:
        """Write the tag for a key unless one exists, then reset its TTL."""
        self.record_many({key: value})

    def record_many(self, values: Mapping[str, Any]) -> None:
        pipe = self._client.pipeline(transaction=False)
        for key, value in values.items():
            tag = type_tag_key(key)
            pipe.set(tag, int(classify(value)), px=self._ttl_ms, nx=True)
            # NX leaves an existing tag on its old TTL
            if self._ttl_ms:
                pipe.pexpire(tag, self._ttl_ms)
        pipe.execute()

    def kind(self, key: str) -> DataType | None:
        """Kind recorded for a key, or None when untagged or malformed."""
        tag = self._client.get(type_tag_key(key))
        return None if tag is None else self._parse(key, tag)

    def refresh(self, key: str) -> None:
        """Reset the TTL of a key's tag."""
        if self._ttl_ms:
            self._client.pexpire(type_tag_key(key), self._ttl_ms)

    def refresh_many(self, keys: Iterable[str]) -> None:
        if not self._ttl_ms:
            return
        pipe = self._client.pipeline(transaction=False)
        for key in keys:
            pipe.pexpire(type_tag_key(key), self._ttl_ms)
        pipe.execute()

    def forget(self, keys: Iterable[str]) -> None:
        """Delete the tags of the given keys."""
        tags = [type_tag_key(key) for key in keys]
        if tags:
            self._client.delete(*tags)

    def restore(self, key: str, text: str) -> Any:
        """Coerce stored text back to the kind recorded for the key."""
        return self._coerce(key, text, self._client.get(type_tag_key(key)))

    def restore_many(self, texts: Mapping[str, str]) -> dict[str, Any]:
        """Coerce several stored texts. Keys keep their order."""
        keys = list(texts)
        if not keys:
            return {}
        pipe = self._client.pipeline(transaction=False)
        for key in keys:
            pipe.get(type_tag_key(key))
        tags = pipe.execute()
        return {key: self._coerce(key, texts[key], tag) for key, tag in zip(keys, tags)}

    def _parse(self, key: str, tag: str) -> DataType | None:
        try:
            return DataType(int(tag))
        except ValueError:
            logger.warning(f"Ignoring malformed type tag {tag!r} for {key}")
            return None

    def _coerce(self, key: str, text: str, tag: str | None) -> Any:
        kind = None if tag is None else self._parse(key, tag)
        if kind is None:
            return text
        return from_text(kind, text, self._datetime_format)
