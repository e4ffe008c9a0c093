"""Storage backends.

- memory: in-process TTL store
- redis: Redis/Valkey server
- bucket: S3 bucket
"""

from tiercache.backends.base import StorageBackend

__all__ = ["StorageBackend"]
