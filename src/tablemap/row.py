"""
Row materialization: result rows -> record instances.

Result columns are matched to field descriptors by name; unmatched columns
are ignored. Each value is decoded into its field's static type and records
are built bottom-up, so embedded members are constructed before their owner.
"""
import dataclasses
import functools
import logging
import typing
from collections.abc import Iterable, Sequence
from dataclasses import MISSING
from typing import Any, NamedTuple

from tablemap.exceptions import FatalMappingError
from tablemap.schema import COLUMN_METADATA_KEY, SKIP_COLUMN, Schema
from tablemap.types import decode_value, resolve_annotation, zero_value

logger = logging.getLogger(__name__)


class _Member(NamedTuple):
    name: str
    init: bool
    has_default: bool
    embedded: type | None
    zero: Any


@functools.lru_cache(maxsize=256)
def _layout(record_type: type) -> tuple[_Member, ...]:
    """Construction plan for one dataclass level."""
    hints = typing.get_type_hints(record_type)
    members = []
    for member in dataclasses.fields(record_type):
        target, nullable = resolve_annotation(hints.get(member.name, member.type))
        column_name = member.metadata.get(COLUMN_METADATA_KEY)
        embedded = None
        if column_name is None and isinstance(target, type) and dataclasses.is_dataclass(target):
            embedded = target
        has_default = member.default is not MISSING or member.default_factory is not MISSING
        zero = None if nullable or column_name == SKIP_COLUMN else zero_value(target)
        members.append(_Member(member.name, member.init, has_default, embedded, zero))
    return tuple(members)


def _build(record_type: type, prefix: tuple[int, ...], values: dict[tuple[int, ...], Any]) -> Any:
    kwargs, late = {}, {}
    for index, member in enumerate(_layout(record_type)):
        path = (*prefix, index)
        if path in values:
            value = values[path]
        elif member.embedded is not None:
            value = _build(member.embedded, path, values)
        elif member.has_default:
            continue
        else:
            value = member.zero
        if member.init:
            kwargs[member.name] = value
        else:
            late[member.name] = value
    try:
        record = record_type(**kwargs)
    except TypeError as exc:
        raise FatalMappingError(f'Cannot construct {record_type.__name__}: {exc}') from exc
    for name, value in late.items():
        object.__setattr__(record, name, value)
    return record


class RowMaterializer:
    """Decode result rows of one statement into records of the schema's type.

    The column -> descriptor lookup is resolved once per result set.
    """

    def __init__(self, schema: Schema, columns: Sequence[str]) -> None:
        self.schema = schema
        self._targets = []
        for position, name in enumerate(columns):
            descriptor = schema.columns.by_column(name)
            if descriptor is None:
                logger.debug(f'Ignoring unmapped column {schema.table}.{name}')
                continue
            self._targets.append((position, descriptor))

    def materialize(self, row: Sequence[Any]) -> Any:
        values = {
            d.path: decode_value(row[position], d.type, d.nullable, column=d.column)
            for position, d in self._targets
        }
        return _build(self.schema.record_type, (), values)

    def materialize_all(self, rows: Iterable[Sequence[Any]]) -> list[Any]:
        return [self.materialize(row) for row in rows]


def materialize_rows(schema: Schema, columns: Sequence[str],
                     rows: Iterable[Sequence[Any]]) -> list[Any]:
    """Convenience wrapper: decode every row into a record."""
    return RowMaterializer(schema, columns).materialize_all(rows)
