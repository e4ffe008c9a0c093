"""Tiered cache over pluggable backends.

Provides a uniform cache interface with:
- In-process TTL store (no dependencies)
- Redis/Valkey (type-preserving with type tags)
- S3 bucket (strings and bytes)
- Chaining: a tier falls back to the next on a miss and promotes hits

Usage:
    from tiercache import new_memory_cache, new_redis_cache

    cache = new_memory_cache("app:", ttl=60)
    cache.chain(new_redis_cache("app:", "localhost", ttl=3600, manage_types=True).open())

    cache.set("user:1", "alice")
    value = cache.get("user:1")
"""

__version__ = "0.1.0"

from .adapter import BatchResult, CacheAdapter
from .backends.base import StorageBackend
from .backends.bucket import BucketBackend, new_bucket_cache
from .backends.memory import MemoryBackend, TTLStore, new_memory_cache
from .backends.redis import RedisBackend, new_redis_cache
from .datatypes import (
    DataType,
    TypedValue,
    float32,
    int8,
    int16,
    int32,
    uint8,
    uint16,
    uint32,
    uint64,
)
from .errors import (
    BackendError,
    CacheError,
    DataTypeError,
    KeyInvalidError,
    KeyNotFoundError,
    NotReadableError,
    NotWritableError,
    OperationNotImplementedError,
    PolicyViolationError,
    UnsupportedDataTypeError,
    ValueConversionError,
)
from .factory import build_cache, get_cache, reset_cache
from .options import (
    MIME_TYPE_JSON,
    MIME_TYPE_TEXT,
    BucketOptions,
    CacheOptions,
    MemoryOptions,
    RedisOptions,
)

__all__ = [
    "BatchResult",
    "CacheAdapter",
    "StorageBackend",
    "BucketBackend",
    "MemoryBackend",
    "RedisBackend",
    "TTLStore",
    "new_bucket_cache",
    "new_memory_cache",
    "new_redis_cache",
    "build_cache",
    "get_cache",
    "reset_cache",
    "DataType",
    "TypedValue",
    "int8",
    "int16",
    "int32",
    "uint8",
    "uint16",
    "uint32",
    "uint64",
    "float32",
    "CacheOptions",
    "MemoryOptions",
    "RedisOptions",
    "BucketOptions",
    "MIME_TYPE_JSON",
    "MIME_TYPE_TEXT",
    "CacheError",
    "PolicyViolationError",
    "NotReadableError",
    "NotWritableError",
    "KeyInvalidError",
    "KeyNotFoundError",
    "DataTypeError",
    "UnsupportedDataTypeError",
    "ValueConversionError",
    "OperationNotImplementedError",
    "BackendError",
]
