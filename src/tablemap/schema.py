"""
Schema derivation for mapped tables.

A record type is a dataclass. Its fields are flattened once per type into
`FieldDescriptor` objects; a dataclass-typed member without an explicit
column name is embedded, contributing its own members under a multi-level
path. The per-table `Schema` combines those descriptors with the primary key
and autoincrement metadata reported by the store.

    >>> @dataclass
    ... class Audit:
    ...     created: str = ''
    >>> @dataclass
    ... class User:
    ...     id: int = 0
    ...     name: str = column('user_name', default='')
    ...     audit: Audit = field(default_factory=Audit)
    >>> [(d.column, d.path) for d in derive_fields(User)]
    [('id', (0,)), ('user_name', (1,)), ('created', (2, 0))]
"""
import dataclasses
import functools
import logging
import threading
import typing
from collections.abc import Callable, Iterator, Sequence
from dataclasses import MISSING, dataclass, field
from typing import Any

from tablemap.exceptions import FatalMappingError, ValidationError
from tablemap.types import encode_value, resolve_annotation
from tablemap.utils import get_path

logger = logging.getLogger(__name__)

KEY_SEP = '-'
SKIP_COLUMN = '-'
COLUMN_METADATA_KEY = 'column'


def column(name: str | None = None, *, skip: bool = False, default: Any = MISSING,
           default_factory: Any = MISSING, **kwargs: Any) -> Any:
    """Declare a dataclass field with an explicit column mapping.

    Args:
        name: Column name; defaults to the field name
        skip: Exclude the field from the mapping entirely
        default: Field default, as for `dataclasses.field`
        default_factory: Field default factory, as for `dataclasses.field`
    """
    metadata = dict(kwargs.pop('metadata', None) or {})
    metadata[COLUMN_METADATA_KEY] = SKIP_COLUMN if skip else name
    return field(default=default, default_factory=default_factory,
                 metadata=metadata, **kwargs)


@dataclass(frozen=True, slots=True)
class FieldDescriptor:
    """One mapped column: where it lives in the record and its static type."""
    column: str
    name: str
    path: tuple[int, ...]
    type: Any
    nullable: bool = False


class ColumnMap:
    """Ordered descriptors indexed by column name and by field name.

    The first registration of a field name wins; later duplicates are ignored.
    """

    def __init__(self, descriptors: Sequence[FieldDescriptor] = ()) -> None:
        self._descriptors: list[FieldDescriptor] = []
        self._by_field: dict[str, FieldDescriptor] = {}
        self._by_column: dict[str, FieldDescriptor] = {}
        for descriptor in descriptors:
            self.add(descriptor)

    def add(self, descriptor: FieldDescriptor) -> bool:
        """Register a descriptor; returns False for a duplicate field name."""
        if self.exists(descriptor.name):
            logger.debug(f'Ignoring duplicate field {descriptor.name!r}')
            return False
        self._descriptors.append(descriptor)
        self._by_field[descriptor.name] = descriptor
        if descriptor.column:
            self._by_column.setdefault(descriptor.column, descriptor)
        return True

    def exists(self, field_name: str) -> bool:
        return field_name in self._by_field

    def by_column(self, column_name: str) -> FieldDescriptor | None:
        return self._by_column.get(column_name)

    def by_field(self, field_name: str) -> FieldDescriptor | None:
        return self._by_field.get(field_name)

    @property
    def columns(self) -> list[str]:
        return [d.column for d in self._descriptors if d.column]

    @property
    def fields(self) -> list[str]:
        return [d.name for d in self._descriptors]

    def __iter__(self) -> Iterator[FieldDescriptor]:
        return iter(self._descriptors)

    def __len__(self) -> int:
        return len(self._descriptors)


def _record_class(shape: Any) -> type:
    """Accept a dataclass type or instance; anything else is fatal."""
    record_type = shape if isinstance(shape, type) else type(shape)
    if not dataclasses.is_dataclass(record_type):
        raise FatalMappingError(
            f'Record shape must be a dataclass type or instance, got {record_type.__name__}')
    return record_type


def _walk(record_type: type, prefix: tuple[int, ...], seen: frozenset) -> Iterator[FieldDescriptor]:
    if record_type in seen:
        raise FatalMappingError(f'Recursive embedding of {record_type.__name__}')
    try:
        hints = typing.get_type_hints(record_type)
    except Exception as exc:
        raise FatalMappingError(
            f'Cannot resolve annotations of {record_type.__name__}: {exc}') from exc

    for index, member in enumerate(dataclasses.fields(record_type)):
        column_name = member.metadata.get(COLUMN_METADATA_KEY)
        if column_name == SKIP_COLUMN:
            continue
        target, nullable = resolve_annotation(hints.get(member.name, member.type))
        path = (*prefix, index)
        if column_name is None and isinstance(target, type) and dataclasses.is_dataclass(target):
            yield from _walk(target, path, seen | {record_type})
            continue
        yield FieldDescriptor(column=column_name or member.name, name=member.name,
                              path=path, type=target, nullable=nullable)


@functools.lru_cache(maxsize=256)
def derive_fields(record_type: type) -> tuple[FieldDescriptor, ...]:
    """Flatten a dataclass into field descriptors, once per type.
    """
    return tuple(_walk(_record_class(record_type), (), frozenset()))


def composite_key(values: Sequence[Any]) -> str:
    """Serialize ordered primary-key values into the cache index string.

    Separators and backslashes inside a value are escaped, so distinct
    tuples never collide.

    >>> composite_key((7, 'a'))
    '7-a'
    >>> composite_key(('a-b',)) != composite_key(('a', 'b'))
    True
    """
    parts = []
    for value in values:
        text = ('true' if value else 'false') if isinstance(value, bool) else str(value)
        parts.append(text.replace('\\', '\\\\').replace(KEY_SEP, '\\' + KEY_SEP))
    return KEY_SEP.join(parts)


@dataclass(frozen=True)
class TableInfo:
    """Primary key and autoincrement metadata reported by the store."""
    primary_keys: tuple[str, ...] = ()
    autoincrement: str | None = None


@dataclass
class Schema:
    """Per-table mapping between a record type and its columns."""
    table: str
    record_type: type
    columns: ColumnMap
    primary_keys: tuple[str, ...] = ()
    primary_key_paths: tuple[tuple[int, ...], ...] = ()
    autoincrement: str | None = None
    enable_cache: bool = False

    @classmethod
    def build(cls, table: str, record_type: type, info: TableInfo) -> 'Schema':
        columns = ColumnMap(derive_fields(record_type))
        paths = []
        for name in info.primary_keys:
            descriptor = columns.by_column(name)
            if descriptor is None:
                raise FatalMappingError(
                    f'Primary key column {table}.{name} is not mapped by {record_type.__name__}')
            paths.append(descriptor.path)
        if info.autoincrement and columns.by_column(info.autoincrement) is None:
            logger.warning(f'Autoincrement column {table}.{info.autoincrement} is not mapped')
        return cls(table=table, record_type=record_type, columns=columns,
                   primary_keys=tuple(info.primary_keys), primary_key_paths=tuple(paths),
                   autoincrement=info.autoincrement)

    @classmethod
    def unbound(cls, table: str) -> 'Schema':
        """Placeholder for raw reads and aggregates on a table with no record type."""
        return cls(table=table, record_type=object, columns=ColumnMap())

    @property
    def autoincrement_field(self) -> FieldDescriptor | None:
        if not self.autoincrement:
            return None
        return self.columns.by_column(self.autoincrement)

    def primary_values(self, record: Any) -> list[Any]:
        return [get_path(record, path) for path in self.primary_key_paths]

    def key_of(self, record: Any) -> str:
        """Composite primary-key string of a record."""
        return composite_key(self.primary_values(record))

    def column_values(self, record: Any, columns: Sequence[str]) -> list[Any]:
        """Encoded values of `columns` read from `record`, in order."""
        return [encode_value(get_path(record, self.columns.by_column(c).path)) for c in columns]

    def check_record(self, record: Any) -> None:
        if not isinstance(record, self.record_type):
            raise ValidationError(
                f'Expected {self.record_type.__name__} record for table {self.table}, '
                f'got {type(record).__name__}')


class SchemaRegistry:
    """Derives and caches one Schema per table.

    `describe` is the metadata collaborator: table name -> TableInfo.
    """

    def __init__(self, describe: Callable[[str], TableInfo]) -> None:
        self._describe = describe
        self._schemas: dict[str, Schema] = {}
        self._lock = threading.RLock()

    def resolve(self, table: str, record_type: Any, enable_cache: bool | None = None) -> Schema:
        """Return the table's Schema, building it on first reference.
        """
        with self._lock:
            schema = self._schemas.get(table)
            if schema is None:
                record_class = _record_class(record_type)
                schema = Schema.build(table, record_class, self._describe(table))
                self._schemas[table] = schema
                logger.debug(f'Bound table {table} to {record_class.__name__} '
                             f'(primary key {schema.primary_keys}, autoincrement {schema.autoincrement})')
            if enable_cache is not None:
                schema.enable_cache = enable_cache
            return schema

    def get(self, table: str) -> Schema | None:
        return self._schemas.get(table)

    def require(self, table: str) -> Schema:
        schema = self._schemas.get(table)
        if schema is None:
            raise ValidationError(f'Table {table} is not bound to a record type')
        return schema

    def tables(self) -> list[str]:
        with self._lock:
            return list(self._schemas)

    def reset(self) -> None:
        with self._lock:
            self._schemas.clear()
