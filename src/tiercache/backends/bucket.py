"""S3 bucket cache backend.

Each key is one object: ``<namespace><key><suffix>``. Only strings and
bytes are stored. Objects with a ``text/*`` content type read back as str,
anything else as bytes.

Expiry is left to the bucket's lifecycle rules; the configured TTL is not
applied per object. Replace, TTL refresh and arithmetic are not supported.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from tiercache.adapter import CacheAdapter
from tiercache.backends.base import StorageBackend
from tiercache.datatypes import classify
from tiercache.errors import (
    BackendError,
    KeyNotFoundError,
    OperationNotImplementedError,
    UnsupportedDataTypeError,
)
from tiercache.options import MIME_TYPE_TEXT, BucketOptions

logger = logging.getLogger(__name__)

MIME_TYPE_BINARY = "application/octet-stream"

_MISSING_CODES = frozenset({"NoSuchKey", "404", "NotFound"})


def _is_missing(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in _MISSING_CODES


class BucketBackend(StorageBackend):
    """Backend over an S3 bucket.

    Args:
        options: Bucket and cache options
        client: Existing boto3 S3 client
    """

    name = "s3"

    def __init__(self, options: BucketOptions, client=None):
        super().__init__(options)
        self._client = client

    @property
    def client(self):
        """Lazy-load the S3 client."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name=self.options.region,
                endpoint_url=self.options.endpoint_url,
            )
        return self._client

    def _object_key(self, key: str) -> str:
        return f"{key}{self.options.suffix}"

    def _backend_error(self, operation: str, key: str | None, error: Exception) -> BackendError:
        return BackendError(
            f"s3 {operation} failed: {error}",
            backend=self.name,
            operation=operation,
            key=key,
            cause=error,
        )

    def open(self) -> None:
        try:
            self.client.head_bucket(Bucket=self.options.bucket)
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("open", None, e) from e
        logger.debug(f"Connected to bucket {self.options.bucket}")

    def get(self, key: str) -> Any:
        try:
            response = self.client.get_object(
                Bucket=self.options.bucket, Key=self._object_key(key)
            )
        except ClientError as e:
            if _is_missing(e):
                raise KeyNotFoundError(key) from None
            raise self._backend_error("get", key, e) from e
        except BotoCoreError as e:
            raise self._backend_error("get", key, e) from e

        body = response["Body"].read()
        if response.get("ContentType", "").startswith("text/"):
            return body.decode("utf-8")
        return body

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.options.bucket, Key=self._object_key(key))
        except ClientError as e:
            if _is_missing(e):
                return False
            raise self._backend_error("exists", key, e) from e
        except BotoCoreError as e:
            raise self._backend_error("exists", key, e) from e
        return True

    def set(self, key: str, value: Any) -> None:
        content_type = self.options.content_type
        if isinstance(value, str):
            body = value.encode("utf-8")
        elif isinstance(value, (bytes, bytearray, memoryview)):
            body = bytes(value)
            # Keep bytes as bytes on read
            if content_type.startswith("text/"):
                content_type = MIME_TYPE_BINARY
        else:
            raise UnsupportedDataTypeError(key, classify(value).name, value)

        try:
            self.client.put_object(
                Bucket=self.options.bucket,
                Key=self._object_key(key),
                Body=body,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("set", key, e) from e

    def replace(self, key: str, value: Any) -> bool:
        raise OperationNotImplementedError("check_and_set", self.name)

    def expire(self, key: str) -> bool:
        raise OperationNotImplementedError("touch", self.name)

    def delete(self, key: str) -> bool:
        if not self.exists(key):
            return False
        try:
            self.client.delete_object(Bucket=self.options.bucket, Key=self._object_key(key))
        except (ClientError, BotoCoreError) as e:
            raise self._backend_error("delete", key, e) from e
        return True

    def incr(self, key: str, delta: int) -> int:
        raise OperationNotImplementedError("increment", self.name)


def new_bucket_cache(
    bucket: str,
    prefix: str = "",
    suffix: str = "",
    content_type: str = MIME_TYPE_TEXT,
    region: str | None = None,
    ttl: float | timedelta | None = None,
    **options,
) -> CacheAdapter:
    """Create an S3-backed cache.

    Args:
        bucket: Bucket name
        prefix: Object key prefix, used as the namespace
        suffix: Object key suffix, e.g. '.json'
        content_type: Content type of written string objects
        region: AWS region
        ttl: Recorded in the options; expiry is owned by bucket lifecycle rules
        **options: Any other BucketOptions field, plus ``client`` to reuse
            an existing boto3 S3 client

    Returns:
        CacheAdapter over a BucketBackend (not yet opened)
    """
    client = options.pop("client", None)
    opts = BucketOptions(
        bucket=bucket,
        namespace=prefix,
        suffix=suffix,
        content_type=content_type,
        region=region,
        ttl=ttl,
        **options,
    )
    return CacheAdapter(BucketBackend(opts, client=client))
