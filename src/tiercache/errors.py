"""tiercache error hierarchy.

Structured exception types shared by every cache tier.
"""

from __future__ import annotations


class CacheError(Exception):
    """Base error for all tiercache exceptions."""

    code = "CACHE_ERROR"

    def __init__(self, message: str, details: dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


# Policy Errors
class PolicyViolationError(CacheError):
    """Operation disallowed by the instance configuration."""

    code = "POLICY_VIOLATION"

    def __init__(self, message: str, operation: str = None):
        super().__init__(message, {"operation": operation})
        self.operation = operation


class NotReadableError(PolicyViolationError):
    """Read attempted on a cache configured as not readable."""

    code = "NOT_READABLE"

    def __init__(self, operation: str = None):
        super().__init__("not readable", operation)


class NotWritableError(PolicyViolationError):
    """Write attempted on a cache configured as not writable."""

    code = "NOT_WRITABLE"

    def __init__(self, operation: str = None):
        super().__init__("not writable", operation)


# Key Errors
class KeyInvalidError(CacheError):
    """Key failed the configured validation pattern or length."""

    code = "KEY_INVALID"

    def __init__(self, key: str, pattern: str = None):
        super().__init__(f"key invalid: {key}", {"key": key, "pattern": pattern})
        self.key = key
        self.pattern = pattern


class KeyNotFoundError(CacheError, KeyError):
    """No tier, local or chained, holds the key."""

    code = "KEY_NOT_FOUND"

    def __init__(self, key: str):
        super().__init__(f"key not found: {key}", {"key": key})
        self.key = key

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return self.message


# Data Type Errors
class DataTypeError(CacheError):
    """Base error for value kind problems."""

    code = "DATA_TYPE_ERROR"


class UnsupportedDataTypeError(DataTypeError):
    """Value kind is excluded by the instance's allowed data types."""

    code = "UNSUPPORTED_DATA_TYPE"

    def __init__(self, key: str, data_type: str, value: object = None):
        super().__init__(
            f"unsupported data type: key: {key} type: {data_type}, value: {value!r}",
            {"key": key, "data_type": data_type},
        )
        self.key = key
        self.data_type = data_type


class ValueConversionError(DataTypeError, ValueError):
    """Stored text could not be coerced into the requested kind."""

    code = "VALUE_CONVERSION"

    def __init__(self, message: str, data_type: str = None, text: str = None):
        super().__init__(message, {"data_type": data_type, "text": text})
        self.data_type = data_type
        self.text = text


# Backend Errors
class OperationNotImplementedError(CacheError, NotImplementedError):
    """Operation is not supported by the backend."""

    code = "NOT_IMPLEMENTED"

    def __init__(self, operation: str, backend: str = None):
        super().__init__(
            f"{operation} is not implemented by the {backend} backend",
            {"operation": operation, "backend": backend},
        )
        self.operation = operation
        self.backend = backend


class BackendError(CacheError):
    """Transport or protocol failure reported by a backend."""

    code = "BACKEND_ERROR"

    def __init__(
        self,
        message: str,
        backend: str = None,
        operation: str = None,
        key: str = None,
        cause: Exception = None,
    ):
        details = {"backend": backend, "operation": operation, "key": key}
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.backend = backend
        self.operation = operation
        self.key = key
        self.cause = cause
