"""Per-instance cache options.

Options are immutable once constructed. To change a setting, build a new
options value (``options.model_copy(update={...})``) and a new cache.
"""

from __future__ import annotations

import re
from datetime import timedelta

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tiercache.datatypes import ALL_DATA_TYPES, KNOWN_DATA_TYPES, DataType

MIME_TYPE_JSON = "application/json"
MIME_TYPE_TEXT = "text/plain"


class CacheOptions(BaseModel):
    """Options shared by every backend."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    namespace: str = Field("", description="Prefix applied to every key")
    key_pattern: str = Field("", description="Regex keys must match (empty = accept all)")
    readable: bool = Field(True, description="Allow read operations")
    writable: bool = Field(True, description="Allow write operations")
    ttl: timedelta | None = Field(None, description="Time to live for writes (None = no expiry)")
    max_key_length: int = Field(0, ge=0, description="Maximum namespaced key length (0 = any)")
    data_types: frozenset[DataType] = Field(
        default=ALL_DATA_TYPES, description="Value kinds accepted on write"
    )

    @field_validator("key_pattern")
    @classmethod
    def _check_key_pattern(cls, value: str) -> str:
        if value:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid key pattern {value!r}: {e}") from e
        return value

    @field_validator("ttl")
    @classmethod
    def _check_ttl(cls, value: timedelta | None) -> timedelta | None:
        if value is not None and value < timedelta(0):
            raise ValueError("ttl must not be negative")
        return value

    @property
    def ttl_seconds(self) -> float | None:
        """TTL in seconds, or None when writes never expire."""
        if not self.ttl:
            return None
        return self.ttl.total_seconds()

    def accepts(self, data_type: DataType) -> bool:
        """Check whether a value kind may be written."""
        return data_type in self.data_types


class MemoryOptions(CacheOptions):
    """Options for the in-process TTL store."""

    purge_interval: timedelta = Field(
        default=timedelta(seconds=120), description="How often expired entries are purged"
    )
    max_size: int = Field(0, ge=0, description="Maximum number of entries (0 = unlimited)")


class RedisOptions(CacheOptions):
    """Options for a Redis or Valkey server."""

    data_types: frozenset[DataType] = Field(default=KNOWN_DATA_TYPES)

    host: str = Field("localhost", description="Server host name")
    port: int = Field(6379, description="Server port")
    db: int = Field(0, ge=0, description="Database number")
    url: str | None = Field(None, description="Connection URL, overrides host/port/db")
    password: str | None = Field(None, description="Server password")
    socket_timeout: float | None = Field(None, description="Socket timeout in seconds")
    client_caching: bool = Field(False, description="Keep read results in process")
    client_caching_ttl: timedelta = Field(
        default=timedelta(0), description="How long to keep a cached read result"
    )
    manage_types: bool = Field(False, description="Record value kinds in type tags")
    datetime_format: str | None = Field(
        None, description="strftime format for datetimes (None = ISO 8601)"
    )


class BucketOptions(CacheOptions):
    """Options for an S3 bucket."""

    data_types: frozenset[DataType] = Field(
        default=frozenset({DataType.STRING, DataType.BYTES})
    )

    bucket: str = Field(..., min_length=1, description="Bucket name")
    suffix: str = Field("", description="Object key suffix, e.g. '.json'")
    content_type: str = Field(MIME_TYPE_TEXT, description="Content type of written objects")
    region: str | None = Field(None, description="AWS region, e.g. 'eu-west-2'")
    endpoint_url: str | None = Field(None, description="Custom S3 endpoint")
