"""Value kinds supported by cache tiers.

Provides:
- DataType: the closed set of value kinds, with stable numeric identifiers
- TypedValue: tagged value for the explicitly sized numeric kinds
- classify / to_text / from_text: kind detection and text round-tripping
  for string-only stores
- add_numeric / as_int64: arithmetic used by increment and decrement

Python's own scalar types map directly onto the natural kinds:

    bool -> BOOLEAN, int -> INT64, float -> FLOAT64, str -> STRING,
    timedelta -> DURATION, datetime -> TIME, bytes -> BYTES

Sized kinds are built with the helper constructors:

    from tiercache.datatypes import uint8
    cache.set("key", uint8(8))
"""

from __future__ import annotations

import base64
import binascii
import re
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import IntEnum
from typing import Any

from tiercache.errors import ValueConversionError


class DataType(IntEnum):
    """Value kinds. The integer values are persisted by type tags."""

    UNKNOWN = 0
    BOOLEAN = 1
    INT8 = 2
    INT16 = 3
    INT32 = 4
    INT64 = 5
    UINT8 = 6
    UINT16 = 7
    UINT32 = 8
    UINT64 = 9
    FLOAT32 = 10
    FLOAT64 = 11
    STRING = 12
    DURATION = 13
    TIME = 14
    BYTES = 15


ALL_DATA_TYPES: frozenset[DataType] = frozenset(DataType)
KNOWN_DATA_TYPES: frozenset[DataType] = ALL_DATA_TYPES - {DataType.UNKNOWN}

INTEGER_RANGES: dict[DataType, tuple[int, int]] = {
    DataType.INT8: (-(2**7), 2**7 - 1),
    DataType.INT16: (-(2**15), 2**15 - 1),
    DataType.INT32: (-(2**31), 2**31 - 1),
    DataType.INT64: (-(2**63), 2**63 - 1),
    DataType.UINT8: (0, 2**8 - 1),
    DataType.UINT16: (0, 2**16 - 1),
    DataType.UINT32: (0, 2**32 - 1),
    DataType.UINT64: (0, 2**64 - 1),
}

# Kinds that need a TypedValue wrapper; INT64 and FLOAT64 are plain int/float
SIZED_KINDS: frozenset[DataType] = frozenset(
    {
        DataType.INT8,
        DataType.INT16,
        DataType.INT32,
        DataType.UINT8,
        DataType.UINT16,
        DataType.UINT32,
        DataType.UINT64,
        DataType.FLOAT32,
    }
)

_INTEGER_RE = re.compile(r"[+-]?\d+", re.ASCII)
_TRUE_TEXT = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE_TEXT = frozenset({"0", "f", "F", "FALSE", "false", "False"})


def _to_float32(value: float) -> float:
    """Round a float to single precision."""
    try:
        return struct.unpack("f", struct.pack("f", float(value)))[0]
    except (OverflowError, struct.error) as e:
        raise ValueConversionError(
            f"{value} is out of range for FLOAT32", DataType.FLOAT32.name, str(value)
        ) from e


def _wrap(kind: DataType, value: int) -> int:
    """Wrap an integer into the range of a fixed-width kind."""
    low, high = INTEGER_RANGES[kind]
    return (value - low) % (high - low + 1) + low


@dataclass(frozen=True)
class TypedValue:
    """A numeric value tagged with an explicit width.

    Integers are range checked on construction; FLOAT32 values are rounded
    to single precision so that equality survives a text round trip.
    """

    kind: DataType
    value: int | float

    def __post_init__(self) -> None:
        kind = DataType(self.kind)
        object.__setattr__(self, "kind", kind)
        if kind not in SIZED_KINDS:
            raise ValueError(f"{kind.name} is not a sized numeric kind")

        if kind == DataType.FLOAT32:
            if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
                raise TypeError(f"FLOAT32 requires a number, got {type(self.value).__name__}")
            object.__setattr__(self, "value", _to_float32(self.value))
            return

        if isinstance(self.value, bool) or not isinstance(self.value, int):
            raise TypeError(f"{kind.name} requires an int, got {type(self.value).__name__}")
        low, high = INTEGER_RANGES[kind]
        if not low <= self.value <= high:
            raise ValueConversionError(
                f"{self.value} is out of range for {kind.name}", kind.name, str(self.value)
            )

    def __int__(self) -> int:
        return int(self.value)

    def __float__(self) -> float:
        return float(self.value)

    def __str__(self) -> str:
        return to_text(self)


def int8(value: int) -> TypedValue:
    return TypedValue(DataType.INT8, value)


def int16(value: int) -> TypedValue:
    return TypedValue(DataType.INT16, value)


def int32(value: int) -> TypedValue:
    return TypedValue(DataType.INT32, value)


def uint8(value: int) -> TypedValue:
    return TypedValue(DataType.UINT8, value)


def uint16(value: int) -> TypedValue:
    return TypedValue(DataType.UINT16, value)


def uint32(value: int) -> TypedValue:
    return TypedValue(DataType.UINT32, value)


def uint64(value: int) -> TypedValue:
    return TypedValue(DataType.UINT64, value)


def float32(value: float) -> TypedValue:
    return TypedValue(DataType.FLOAT32, value)


def classify(value: Any) -> DataType:
    """Return the kind of a runtime value."""
    if isinstance(value, TypedValue):
        return value.kind
    # bool is an int subclass, check it first
    if isinstance(value, bool):
        return DataType.BOOLEAN
    if isinstance(value, int):
        low, high = INTEGER_RANGES[DataType.INT64]
        return DataType.INT64 if low <= value <= high else DataType.UNKNOWN
    if isinstance(value, float):
        return DataType.FLOAT64
    if isinstance(value, str):
        return DataType.STRING
    if isinstance(value, timedelta):
        return DataType.DURATION
    if isinstance(value, datetime):
        return DataType.TIME
    if isinstance(value, (bytes, bytearray, memoryview)):
        return DataType.BYTES
    return DataType.UNKNOWN


# Duration grammar: [-+]?(<number><unit>)+ or "0"
_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)", re.ASCII)
_UNIT_MICROSECONDS = {
    "ns": Decimal("0.001"),
    "us": Decimal(1),
    "µs": Decimal(1),
    "μs": Decimal(1),
    "ms": Decimal(1_000),
    "s": Decimal(1_000_000),
    "m": Decimal(60_000_000),
    "h": Decimal(3_600_000_000),
}


def parse_duration(text: str) -> timedelta:
    """Parse a compact duration such as ``"1h2m3s"`` or ``"-1.5ms"``.

    Resolution is one microsecond; smaller fractions are truncated.
    """
    s = text
    sign = 1
    if s and s[0] in "+-":
        sign = -1 if s[0] == "-" else 1
        s = s[1:]
    if s == "0":
        return timedelta(0)
    if not s:
        raise ValueConversionError(f"invalid duration {text!r}", DataType.DURATION.name, text)

    total = Decimal(0)
    pos = 0
    while pos < len(s):
        match = _DURATION_PART_RE.match(s, pos)
        if match is None:
            raise ValueConversionError(f"invalid duration {text!r}", DataType.DURATION.name, text)
        total += Decimal(match.group(1)) * _UNIT_MICROSECONDS[match.group(2)]
        pos = match.end()

    try:
        return timedelta(microseconds=sign * int(total))
    except OverflowError as e:
        raise ValueConversionError(
            f"duration {text!r} is out of range", DataType.DURATION.name, text
        ) from e


def _trim_fraction(amount: int, unit: int) -> str:
    whole, frac = divmod(amount, unit)
    if not frac:
        return str(whole)
    digits = len(str(unit)) - 1
    return f"{whole}.{frac:0{digits}d}".rstrip("0")


def format_duration(value: timedelta) -> str:
    """Format a timedelta in the grammar accepted by parse_duration."""
    total = (value.days * 86_400 + value.seconds) * 1_000_000 + value.microseconds
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    micros = abs(total)

    if micros < 1_000:
        return f"{sign}{micros}us"
    if micros < 1_000_000:
        return f"{sign}{_trim_fraction(micros, 1_000)}ms"

    hours, rest = divmod(micros, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    seconds = _trim_fraction(rest, 1_000_000)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


def to_text(value: Any, datetime_format: str | None = None) -> str:
    """Render a value as text for a string-only store.

    Args:
        value: Value to render
        datetime_format: strftime format for datetimes (None = ISO 8601)
    """
    if isinstance(value, TypedValue):
        if value.kind == DataType.FLOAT32:
            return repr(value.value)
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return value
    if isinstance(value, timedelta):
        return format_duration(value)
    if isinstance(value, datetime):
        return value.strftime(datetime_format) if datetime_format else value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return str(value)


def _parse_integer(kind: DataType, text: str) -> int:
    if not _INTEGER_RE.fullmatch(text):
        raise ValueConversionError(f"invalid {kind.name} value {text!r}", kind.name, text)
    number = int(text)
    low, high = INTEGER_RANGES[kind]
    if not low <= number <= high:
        raise ValueConversionError(f"{text} is out of range for {kind.name}", kind.name, text)
    return number


def from_text(kind: DataType | int, text: str, datetime_format: str | None = None) -> Any:
    """Coerce stored text back into a value of the given kind.

    Raises:
        ValueConversionError: If the text is not a valid value of the kind
    """
    try:
        kind = DataType(kind)
    except ValueError:
        kind = DataType.UNKNOWN

    if kind in (DataType.STRING, DataType.UNKNOWN):
        return text

    if kind in INTEGER_RANGES:
        number = _parse_integer(kind, text)
        return number if kind == DataType.INT64 else TypedValue(kind, number)

    if kind in (DataType.FLOAT32, DataType.FLOAT64):
        try:
            number = float(text)
        except ValueError as e:
            raise ValueConversionError(f"invalid {kind.name} value {text!r}", kind.name, text) from e
        return number if kind == DataType.FLOAT64 else TypedValue(kind, number)

    if kind == DataType.BOOLEAN:
        if text in _TRUE_TEXT:
            return True
        if text in _FALSE_TEXT:
            return False
        raise ValueConversionError(f"invalid BOOLEAN value {text!r}", kind.name, text)

    if kind == DataType.DURATION:
        return parse_duration(text)

    if kind == DataType.TIME:
        try:
            if datetime_format:
                return datetime.strptime(text, datetime_format)
            return datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueConversionError(f"invalid TIME value {text!r}", kind.name, text) from e

    # DataType.BYTES
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueConversionError(f"invalid BYTES value {text!r}", kind.name, text) from e


def add_numeric(value: Any, delta: int) -> Any:
    """Add delta to a numeric value, keeping its kind.

    Fixed-width integers wrap around on overflow.

    Raises:
        ValueConversionError: If the value is not numeric
    """
    if isinstance(value, TypedValue):
        if value.kind == DataType.FLOAT32:
            return TypedValue(DataType.FLOAT32, value.value + delta)
        return TypedValue(value.kind, _wrap(value.kind, value.value + delta))
    if isinstance(value, bool):
        raise ValueConversionError("value is not an integer or integer like", DataType.BOOLEAN.name)
    if isinstance(value, int):
        return _wrap(DataType.INT64, value + delta)
    if isinstance(value, float):
        return value + delta
    raise ValueConversionError(
        "value is not an integer or integer like", classify(value).name, str(value)
    )


def as_int64(value: Any) -> int:
    """Normalize a numeric value to a signed 64-bit integer.

    Floats are truncated; wider integers wrap.
    """
    if isinstance(value, TypedValue):
        value = value.value
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ValueConversionError(
            "value is not an integer or integer like", classify(value).name, str(value)
        )
    try:
        return _wrap(DataType.INT64, int(value))
    except (OverflowError, ValueError, InvalidOperation) as e:
        raise ValueConversionError(
            f"{value} cannot be represented as INT64", DataType.INT64.name, str(value)
        ) from e
