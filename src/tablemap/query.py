"""
Fluent queries on one table.

A `Query` accumulates clauses into a `QuerySpec` and runs exactly one
action. Reads may be answered from the record cache; writes keep the cache
in step after the store accepts them. In read-only mode every mutation
returns 0 without touching the store or the cache.

    >>> db.table('users').where('age > ?', 30).sort('name').limit(10).all()  # doctest: +SKIP
"""
import dataclasses
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import pandas as pd
from sqlalchemy import exc as sa_exc
from tablemap.compiler import Action, QuerySpec, compile_sql
from tablemap.exceptions import FatalMappingError, NoRowsError, is_duplicate_error
from tablemap.mapper import operation_boundary
from tablemap.row import RowMaterializer, materialize_rows
from tablemap.schema import Schema, composite_key
from tablemap.types import decode_value
from tablemap.utils import get_path, set_path

if TYPE_CHECKING:
    from tablemap.mapper import Mapper

logger = logging.getLogger(__name__)


class Query:
    """Builder and executor for one statement against `table_name`.
    """

    def __init__(self, mapper: 'Mapper', table_name: str) -> None:
        self.mapper = mapper
        self.table_name = table_name
        self.spec = QuerySpec()

    def __repr__(self) -> str:
        return f'Query({self.table_name!r}, {self.spec!r})'

    # Builders

    def fields(self, *names: str) -> 'Query':
        """Select only these column expressions (default ``*``)."""
        self.spec.select(*names)
        return self

    def where(self, expr: str, *args: Any) -> 'Query':
        """AND a raw predicate; `%s` or `?` placeholders bind `args` in order."""
        self.spec.add_where(expr, args, 'AND')
        return self

    def and_where(self, expr: str, *args: Any) -> 'Query':
        return self.where(expr, *args)

    def or_where(self, expr: str, *args: Any) -> 'Query':
        """OR a raw predicate onto the existing one."""
        self.spec.add_where(expr, args, 'OR')
        return self

    def where_map(self, mapping: Mapping[str, Any] | Iterable[tuple[str, Any]] = (),
                  **columns: Any) -> 'Query':
        """AND ``column = value`` for each pair, in order."""
        self.spec.add_where_map(mapping)
        self.spec.add_where_map(columns)
        return self

    def where_pk(self, *values: Any) -> 'Query':
        """Filter by primary key; overrides every other filter."""
        self.spec.set_primary_key(*values)
        return self

    def sort(self, column: str, direction: Any = 1) -> 'Query':
        """Order by `column`; ``-1`` or ``'desc'`` sorts descending."""
        self.spec.add_sort(column, direction)
        return self

    def sort_map(self, mapping: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> 'Query':
        items = mapping.items() if isinstance(mapping, Mapping) else mapping
        for column, direction in items:
            self.spec.add_sort(column, direction)
        return self

    def limit(self, first: int, second: int | None = None) -> 'Query':
        """``limit(count)`` or ``limit(offset, count)``."""
        self.spec.set_limit(first, second)
        return self

    def bind(self, record_type: type, enable_cache: bool = False) -> 'Query':
        self.mapper.bind(self.table_name, record_type, enable_cache=enable_cache)
        return self

    # Helpers

    def _schema(self, shape: Any = None) -> Schema:
        if shape is None:
            return self.mapper.schemas.require(self.table_name)
        schema = self.mapper.schemas.resolve(self.table_name, shape)
        record_type = shape if isinstance(shape, type) else type(shape)
        if record_type is not schema.record_type:
            raise FatalMappingError(
                f'Table {self.table_name} is bound to {schema.record_type.__name__}, '
                f'not {record_type.__name__}')
        return schema

    def _schema_or_unbound(self, shape: Any = None) -> Schema:
        if shape is not None:
            return self._schema(shape)
        return self.mapper.schemas.get(self.table_name) or Schema.unbound(self.table_name)

    def _compile(self, schema: Schema, action: Action, record: Any = None,
                 spec: QuerySpec | None = None) -> tuple[str, list[Any]]:
        return compile_sql(schema, spec or self.spec, action, self.mapper.strategy, record)

    def _cache_active(self, schema: Schema) -> bool:
        return self.mapper.cache.is_active(schema)

    def _table_cache(self, schema: Schema):
        return self.mapper.cache.table(schema.table)

    def _matching_keys(self, schema: Schema) -> list[str]:
        """Composite keys of the rows the current filter selects."""
        if self.spec.by_primary_key:
            return [self.spec.pk_key]
        strategy = self.mapper.strategy
        key_spec = dataclasses.replace(
            self.spec, fields=[strategy.quote_identifier(c) for c in schema.primary_keys],
            order_by=[])
        key_spec.offset = None
        if not strategy.capabilities.limit_on_update_delete:
            key_spec.count = None
        sql, args = self._compile(schema, Action.READ_ALL, spec=key_spec)
        _, rows = self.mapper.store.query(sql, args)
        descriptors = [schema.columns.by_column(c) for c in schema.primary_keys]
        return [
            composite_key([decode_value(v, d.type, d.nullable, column=d.column)
                           for v, d in zip(row, descriptors)])
            for row in rows
        ]

    def _check_backfill(self, schema: Schema, record: Any) -> None:
        """Refuse, before any store effect, a record that cannot take its generated id."""
        descriptor = schema.autoincrement_field
        if descriptor is None or get_path(record, descriptor.path):
            return
        owner = get_path(record, descriptor.path[:-1])
        params = getattr(type(owner), '__dataclass_params__', None)
        if params is not None and params.frozen:
            raise FatalMappingError(
                f'Cannot store generated id in frozen {type(owner).__name__}')

    def _backfill(self, schema: Schema, record: Any, lastrowid: int | None) -> None:
        descriptor = schema.autoincrement_field
        if descriptor is None or not lastrowid or get_path(record, descriptor.path):
            return
        value = decode_value(lastrowid, descriptor.type, descriptor.nullable, column=descriptor.column)
        set_path(record, descriptor.path, value)

    def _aggregate(self, action: Action, column: str | None, record_type: type | None) -> Any:
        schema = self._schema_or_unbound(record_type)
        spec = dataclasses.replace(self.spec, aggregate=column)
        sql, args = self._compile(schema, action, spec=spec)
        _, rows = self.mapper.store.query(sql, args)
        return rows[0][0] if rows else None

    # Reads

    @operation_boundary
    def one(self, record_type: type | None = None) -> Any:
        """Return the first matching record.

        A primary-key read of a cached table is answered by the cache alone.

        Raises
            NoRowsError: Nothing matched
        """
        schema = self._schema(record_type)
        sql, args = self._compile(schema, Action.READ_ONE)
        if self.spec.by_primary_key and self._cache_active(schema):
            record = self._table_cache(schema).get(self.spec.pk_key)
            if record is None:
                raise NoRowsError(f'No {self.table_name} record with key {self.spec.pk_key}')
            return record
        columns, rows = self.mapper.store.query(sql, args)
        if not rows:
            raise NoRowsError(f'No {self.table_name} record matched')
        return RowMaterializer(schema, columns).materialize(rows[0])

    def one_or_none(self, record_type: type | None = None) -> Any | None:
        try:
            return self.one(record_type)
        except NoRowsError:
            return None

    @operation_boundary
    def all(self, record_type: type | None = None) -> list[Any]:
        """Return every matching record, honoring sort and limit."""
        schema = self._schema(record_type)
        sql, args = self._compile(schema, Action.READ_ALL)
        columns, rows = self.mapper.store.query(sql, args)
        return materialize_rows(schema, columns, rows)

    @operation_boundary
    def frame(self) -> pd.DataFrame:
        """Return the matching rows as a DataFrame of raw column values.

        Works on unbound tables; no record type is involved.
        """
        schema = self._schema_or_unbound()
        sql, args = self._compile(schema, Action.READ_ALL)
        columns, rows = self.mapper.store.query(sql, args)
        return pd.DataFrame.from_records(rows, columns=columns)

    # Aggregates

    @operation_boundary
    def count(self, record_type: type | None = None) -> int:
        """Number of matching rows; unfiltered counts of cached tables skip the store."""
        schema = self._schema_or_unbound(record_type)
        if not self.spec.has_filter and self._cache_active(schema):
            return len(self._table_cache(schema))
        return int(self._aggregate(Action.COUNT, None, record_type) or 0)

    @operation_boundary
    def sum(self, column: str, record_type: type | None = None) -> Any:
        """SUM of `column` over matching rows; 0 when there are none."""
        value = self._aggregate(Action.SUM, column, record_type)
        return 0 if value is None else value

    @operation_boundary
    def max(self, column: str, record_type: type | None = None) -> Any | None:
        return self._aggregate(Action.MAX, column, record_type)

    @operation_boundary
    def min(self, column: str, record_type: type | None = None) -> Any | None:
        return self._aggregate(Action.MIN, column, record_type)

    # Writes

    def _insert(self, record: Any, action: Action) -> int:
        schema = self._schema(record)
        self._check_backfill(schema, record)
        sql, args = self._compile(schema, action, record)
        try:
            result = self.mapper.store.run(sql, args)
        except sa_exc.IntegrityError as err:
            if action is Action.INSERT_IGNORE and is_duplicate_error(err):
                logger.debug(f'Ignored duplicate insert into {self.table_name}')
                return 0
            raise
        if result.rowcount < 1:
            return 0
        self._backfill(schema, record, result.lastrowid)
        if self._cache_active(schema):
            self._table_cache(schema).put(schema.key_of(record), record)
        return result.lastrowid or 0

    @operation_boundary
    def insert(self, record: Any) -> int:
        """Insert `record`, storing any generated id back into it.

        Returns
            The last inserted row id
        """
        if self.mapper.read_only:
            return 0
        return self._insert(record, Action.INSERT)

    @operation_boundary
    def insert_ignore(self, record: Any) -> int:
        """Insert `record` unless it collides with an existing key.

        Returns
            The last inserted row id, or 0 when the row was ignored
        """
        if self.mapper.read_only:
            return 0
        return self._insert(record, Action.INSERT_IGNORE)

    @operation_boundary
    def replace(self, record: Any) -> int:
        """Insert `record`, replacing any row with the same key."""
        if self.mapper.read_only:
            return 0
        schema = self._schema(record)
        self._check_backfill(schema, record)
        sql, args = self._compile(schema, Action.REPLACE, record)
        result = self.mapper.store.run(sql, args)
        self._backfill(schema, record, result.lastrowid)
        if self._cache_active(schema):
            self._table_cache(schema).put(schema.key_of(record), record)
        return result.lastrowid or 0

    @operation_boundary
    def update(self, record: Any) -> int:
        """Write every non-key column of `record`.

        Without a filter the record's own primary key selects the row. The
        cache entry under the record's key is replaced whatever the filter
        matched.

        Returns
            Number of rows affected
        """
        if self.mapper.read_only:
            return 0
        schema = self._schema(record)
        sql, args = self._compile(schema, Action.UPDATE_RECORD, record)
        rowcount = self.mapper.store.run(sql, args).rowcount
        if self._cache_active(schema):
            self._table_cache(schema).put(schema.key_of(record), record)
        return rowcount

    @operation_boundary
    def update_fields(self, mapping: Mapping[str, Any] | Iterable[tuple[str, Any]] = (),
                      **columns: Any) -> int:
        """Set the given columns on every matching row.

        Primary-key columns are dropped with a warning. Cached records of the
        matching rows are patched after the store accepts the update; rows
        missing from the cache are skipped.

        Returns
            Number of rows affected
        """
        if self.mapper.read_only:
            return 0
        schema = self._schema()
        pairs = list(mapping.items()) if isinstance(mapping, Mapping) else list(mapping)
        self.spec.set_pairs = pairs + list(columns.items())
        sql, args = self._compile(schema, Action.UPDATE_FIELDS)
        keys = self._matching_keys(schema) if self._cache_active(schema) else []
        rowcount = self.mapper.store.run(sql, args).rowcount
        if keys:
            changes = []
            for column, value in self.spec.set_pairs:
                descriptor = schema.columns.by_column(column)
                if descriptor is None or column in schema.primary_keys:
                    continue
                changes.append((descriptor.path, decode_value(
                    value, descriptor.type, descriptor.nullable, column=column)))

            def apply(record: Any) -> None:
                for path, value in changes:
                    set_path(record, path, value)

            cache = self._table_cache(schema)
            for key in keys:
                cache.patch(key, apply)
        return rowcount

    @operation_boundary
    def delete(self) -> int:
        """Delete every matching row (all rows when unfiltered).

        Returns
            Number of rows affected
        """
        if self.mapper.read_only:
            return 0
        schema = self._schema()
        sql, args = self._compile(schema, Action.DELETE)
        active = self._cache_active(schema)
        keys = self._matching_keys(schema) if active and self.spec.has_filter else []
        rowcount = self.mapper.store.run(sql, args).rowcount
        if active:
            if not self.spec.has_filter:
                self.mapper.cache.reload(schema)
            else:
                cache = self._table_cache(schema)
                for key in keys:
                    cache.delete(key)
        return rowcount

    @operation_boundary
    def truncate(self) -> int:
        """Remove every row; the cached table is emptied first."""
        if self.mapper.read_only:
            return 0
        schema = self.mapper.schemas.get(self.table_name)
        if self._cache_active(schema):
            self._table_cache(schema).clear()
        return self.mapper.store.clear_table(self.table_name)

    # Cache

    @operation_boundary
    def load_cache(self) -> int:
        """Reload this table's cache from the store; returns the record count."""
        return self.mapper.cache.reload(self._schema())

    def cached(self) -> dict[str, Any]:
        """Snapshot of this table's cache, keyed by composite primary key."""
        return self._table_cache(self._schema()).snapshot()
