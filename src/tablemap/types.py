"""
Consolidated type handling for mapped records.

This module provides:
- TypeConverter: Convert Python values to database-compatible formats
- encode_value: Convert a record member into a bindable argument
- decode_value: Coerce an untyped result column into a field's static type
- zero_value: The value used for NULL or missing non-nullable members
"""
import datetime
import decimal
import enum
import json
import logging
import math
import sqlite3
import types as pytypes
import typing
from typing import Any

import dateutil.parser
import numpy as np
import pandas as pd
from tablemap.exceptions import FatalMappingError

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'
DATE_FORMAT = '%Y-%m-%d'

TRUE_STRINGS: set[str] = {'1', 'true', 't', 'yes', 'y', 'on'}
FALSE_STRINGS: set[str] = {'0', 'false', 'f', 'no', 'n', 'off', ''}
NUMPY_FLOAT_TYPES = (np.floating,)
NUMPY_INT_TYPES = (np.integer, np.unsignedinteger)

NoneType = type(None)


# Type Converter - Handles Python -> Database value conversion

def _convert_numpy_value(val: Any) -> float | int | datetime.datetime | None:
    """Convert NumPy value to Python type."""
    if isinstance(val, np.floating) and np.isnan(val):
        return None

    if isinstance(val, np.datetime64) and np.isnat(val):
        return None

    if isinstance(val, (np.floating, np.integer | np.unsignedinteger, np.bool_)):
        return val.item()

    if isinstance(val, np.datetime64):
        return pd.Timestamp(val).to_pydatetime()

    return val


class TypeConverter:
    """Universal type conversion for database parameters.

    Handles NumPy and Pandas scalars that find their way into records.
    """

    @staticmethod
    def convert_value(value: Any) -> Any:
        """Convert a single value to a database-compatible format."""
        if value is None:
            return None

        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None

        if isinstance(value, type(pd.NaT)):
            return None

        if isinstance(value, (*NUMPY_FLOAT_TYPES, *NUMPY_INT_TYPES, np.bool_, np.datetime64)):
            return _convert_numpy_value(value)

        if isinstance(value, pd.Timestamp):
            return value.to_pydatetime()

        return value

    @staticmethod
    def convert_params(params: Any) -> Any:
        """Convert a collection of parameters for database operations."""
        if params is None:
            return None

        if isinstance(params, dict):
            return {k: TypeConverter.convert_value(v) for k, v in params.items()}

        if isinstance(params, list | tuple):
            return type(params)(TypeConverter.convert_value(v) for v in params)

        return TypeConverter.convert_value(params)


def format_timestamp(value: datetime.datetime) -> str:
    """Render a datetime in the fixed textual format.

    Microseconds are kept only when non-zero so that second-precision
    columns round-trip unchanged.
    """
    if value.microsecond:
        return value.strftime(TIMESTAMP_FORMAT + '.%f')
    return value.strftime(TIMESTAMP_FORMAT)


def encode_value(value: Any) -> Any:
    """Convert a record member into a value the store can bind.
    """
    value = TypeConverter.convert_value(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict | list):
        return json.dumps(value)
    if isinstance(value, datetime.datetime):
        return format_timestamp(value)
    if isinstance(value, datetime.date):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, decimal.Decimal):
        return str(value)
    return value


# Type Resolution - annotation -> (structural type, nullable)

def resolve_annotation(annotation: Any) -> tuple[Any, bool]:
    """Unwrap ``Optional[X]`` / ``X | None`` to ``(X, True)``.

    Unions of several concrete types and bare ``Any`` resolve to ``Any``
    (opaque passthrough). Parametrized generics resolve to their origin.
    """
    if annotation is Any:
        return Any, True

    origin = typing.get_origin(annotation)
    if origin in {typing.Union, pytypes.UnionType}:
        members = [a for a in typing.get_args(annotation) if a is not NoneType]
        nullable = len(members) != len(typing.get_args(annotation))
        if len(members) == 1:
            resolved, _ = resolve_annotation(members[0])
            return resolved, nullable
        return Any, True

    if origin is typing.Literal:
        return Any, False

    if origin is not None:
        return origin, False

    return annotation, False


def zero_value(target: Any) -> Any:
    """Zero value for a structural type, used for NULL in non-nullable fields.
    """
    if target is bool:
        return False
    if target is int:
        return 0
    if target is float:
        return 0.0
    if target is decimal.Decimal:
        return decimal.Decimal(0)
    if target is str:
        return ''
    if target is bytes:
        return b''
    return None


# Decoding - untyped column value -> field type

def _mismatch(value: Any, target: Any, column: str | None) -> FatalMappingError:
    where = f' for column {column!r}' if column else ''
    name = getattr(target, '__name__', repr(target))
    return FatalMappingError(
        f'Cannot convert {type(value).__name__} value {value!r} to {name}{where}')


def _text(value: bytes | bytearray | memoryview | str) -> str:
    if isinstance(value, str):
        return value
    return bytes(value).decode('utf-8')


def _is_zero_date(text: str) -> bool:
    return text.startswith('0000-00-00')


def parse_datetime(text: str) -> datetime.datetime:
    """Parse the fixed textual timestamp, falling back to ISO 8601.
    """
    text = text.strip()
    for fmt in (TIMESTAMP_FORMAT, TIMESTAMP_FORMAT + '.%f', DATE_FORMAT):
        try:
            return datetime.datetime.strptime(text, fmt)
        except ValueError:
            continue
    return dateutil.parser.isoparse(text)


def _decode_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float | decimal.Decimal):
        integral = int(value)
        if integral != value:
            raise ValueError(f'{value} is not integral')
        return integral
    if isinstance(value, str | bytes | bytearray | memoryview):
        text = _text(value).strip()
        try:
            return int(text)
        except ValueError:
            return _decode_int(decimal.Decimal(text))
    raise TypeError(value)


def _decode_float(value: Any) -> float:
    if isinstance(value, int | float | decimal.Decimal):
        return float(value)
    if isinstance(value, str | bytes | bytearray | memoryview):
        return float(_text(value))
    raise TypeError(value)


def _decode_decimal(value: Any) -> decimal.Decimal:
    if isinstance(value, bool):
        raise TypeError(value)
    if isinstance(value, decimal.Decimal):
        return value
    if isinstance(value, int | float):
        return decimal.Decimal(str(value))
    if isinstance(value, str | bytes | bytearray | memoryview):
        return decimal.Decimal(_text(value).strip())
    raise TypeError(value)


def _decode_str(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, bytes | bytearray | memoryview):
        return _text(value)
    if isinstance(value, datetime.datetime):
        return format_timestamp(value)
    if isinstance(value, datetime.date):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, int | float | decimal.Decimal):
        return str(value)
    raise TypeError(value)


def _decode_bytes(value: Any) -> bytes:
    if isinstance(value, bytes | bytearray | memoryview):
        return bytes(value)
    if isinstance(value, str):
        return value.encode('utf-8')
    raise TypeError(value)


def _decode_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int | decimal.Decimal):
        return value != 0
    if isinstance(value, str | bytes | bytearray | memoryview):
        text = _text(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ValueError(value)
    raise TypeError(value)


def _decode_datetime(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return value
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(value, datetime.time())
    if isinstance(value, str | bytes | bytearray | memoryview):
        return parse_datetime(_text(value))
    raise TypeError(value)


def _decode_date(value: Any) -> datetime.date:
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if isinstance(value, str | bytes | bytearray | memoryview):
        return parse_datetime(_text(value)).date()
    raise TypeError(value)


def _decode_json(value: Any, target: type) -> Any:
    if isinstance(value, target):
        return value
    if isinstance(value, str | bytes | bytearray | memoryview):
        decoded = json.loads(_text(value))
        if isinstance(decoded, target):
            return decoded
    raise TypeError(value)


_DECODERS = {
    bool: _decode_bool,
    int: _decode_int,
    float: _decode_float,
    decimal.Decimal: _decode_decimal,
    str: _decode_str,
    bytes: _decode_bytes,
    datetime.datetime: _decode_datetime,
    datetime.date: _decode_date,
}


def decode_value(value: Any, target: Any, nullable: bool = False,
                 column: str | None = None) -> Any:
    """Coerce an untyped column value into the destination field's type.

    NULL becomes None for nullable fields and the zero value otherwise.
    Irreconcilable mismatches raise FatalMappingError.
    """
    value = TypeConverter.convert_value(value)

    if isinstance(value, str | bytes) and target in {datetime.datetime, datetime.date}:
        if _is_zero_date(_text(value)):
            value = None

    if value is None:
        return None if nullable else zero_value(target)

    if target is Any or not isinstance(target, type):
        return value

    try:
        decoder = _DECODERS.get(target)
        if decoder is not None:
            return decoder(value)
        if issubclass(target, enum.Enum):
            return value if isinstance(value, target) else target(value)
        if target in {dict, list}:
            return _decode_json(value, target)
    except (TypeError, ValueError, ArithmeticError) as exc:
        raise _mismatch(value, target, column) from exc

    return value


def convert_date(val: bytes) -> datetime.date:
    """Convert ISO 8601 date string to date object."""
    return dateutil.parser.isoparse(val.decode()).date()


def convert_datetime(val: bytes) -> datetime.datetime:
    """Convert ISO 8601 datetime string to datetime object."""
    return dateutil.parser.isoparse(val.decode())


class AdapterRegistry:
    """Registry for database-specific type adapters."""

    def sqlite(self, connection: sqlite3.Connection) -> None:
        """Register SQLite converters for a connection."""
        connection.execute('SELECT 1')
        sqlite3.register_converter('date', convert_date)
        sqlite3.register_converter('datetime', convert_datetime)


def get_adapter_registry() -> AdapterRegistry:
    """Get the adapter registry."""
    return AdapterRegistry()
