"""
Statement compilation.

`QuerySpec` accumulates the clauses of one query; `compile_sql` turns a spec
plus a table `Schema` into parametrized statement text for one `Action`. The
compiler is pure: it never touches the store or the record cache, and every
value is bound positionally.

Filter precedence is: a primary-key filter (exclusive), else the free-form
predicate combined with the column=value pairs, else nothing.

Caller-supplied `fields`, `where` and `sort` fragments are inserted verbatim
apart from placeholder standardization. They are not sanitized.
"""
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from tablemap.exceptions import ValidationError
from tablemap.schema import Schema, composite_key
from tablemap.types import encode_value

if TYPE_CHECKING:
    from tablemap.strategy import DatabaseStrategy

logger = logging.getLogger(__name__)

ASC = 'ASC'
DESC = 'DESC'


class Action(Enum):
    """Statement kinds the compiler produces."""
    READ_ONE = 'read_one'
    READ_ALL = 'read_all'
    UPDATE_RECORD = 'update_record'
    UPDATE_FIELDS = 'update_fields'
    DELETE = 'delete'
    INSERT = 'insert'
    INSERT_IGNORE = 'insert_ignore'
    REPLACE = 'replace'
    COUNT = 'count'
    SUM = 'sum'
    MAX = 'max'
    MIN = 'min'


AGGREGATES = {Action.COUNT, Action.SUM, Action.MAX, Action.MIN}


def sort_direction(direction: Any) -> str:
    """Normalize a sort direction; anything unrecognized sorts ascending.

    >>> sort_direction(-1), sort_direction('desc'), sort_direction('sideways')
    ('DESC', 'DESC', 'ASC')
    """
    if isinstance(direction, str):
        return DESC if direction.strip().lower() == 'desc' else ASC
    if isinstance(direction, int) and not isinstance(direction, bool) and direction == -1:
        return DESC
    return ASC


def _pairs(mapping: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> list[tuple[str, Any]]:
    if isinstance(mapping, Mapping):
        return list(mapping.items())
    return [(key, value) for key, value in mapping]


@dataclass
class QuerySpec:
    """Clauses accumulated for a single query.

    Built fresh per query and discarded once the action has run.
    """
    fields: list[str] = field(default_factory=list)
    where: str = ''
    where_args: list[Any] = field(default_factory=list)
    where_pairs: list[tuple[str, Any]] = field(default_factory=list)
    pk_values: tuple[Any, ...] = ()
    pk_key: str | None = None
    order_by: list[tuple[str, str]] = field(default_factory=list)
    offset: int | None = None
    count: int | None = None
    set_pairs: list[tuple[str, Any]] = field(default_factory=list)
    aggregate: str | None = None

    def select(self, *fields: str) -> 'QuerySpec':
        self.fields.extend(fields)
        return self

    def add_where(self, expr: str, args: Iterable[Any] = (), joiner: str = 'AND') -> 'QuerySpec':
        """Append a predicate, joined to the existing one with `joiner`."""
        self.where = f'{self.where} {joiner} {expr}' if self.where else expr
        self.where_args.extend(args)
        return self

    def add_where_map(self, mapping: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> 'QuerySpec':
        self.where_pairs.extend(_pairs(mapping))
        return self

    def set_primary_key(self, *values: Any) -> 'QuerySpec':
        if not values:
            raise ValidationError('Primary key filter requires at least one value')
        self.pk_values = tuple(values)
        self.pk_key = composite_key(values)
        return self

    def add_sort(self, column: str, direction: Any = 1) -> 'QuerySpec':
        self.order_by.append((column, sort_direction(direction)))
        return self

    def set_limit(self, first: int, second: int | None = None) -> 'QuerySpec':
        """``set_limit(count)`` or ``set_limit(offset, count)``."""
        if second is None:
            self.offset, self.count = None, first
        else:
            self.offset, self.count = first, second
        return self

    @property
    def by_primary_key(self) -> bool:
        return self.pk_key is not None

    @property
    def has_filter(self) -> bool:
        return self.by_primary_key or bool(self.where or self.where_pairs)


def _assignments(strategy: 'DatabaseStrategy', columns: Iterable[str]) -> str:
    marker = strategy.capabilities.placeholder
    return ', '.join(f'{strategy.quote_identifier(c)} = {marker}' for c in columns)


def _filter(schema: Schema, spec: QuerySpec, strategy: 'DatabaseStrategy') -> tuple[str, list[Any]]:
    """WHERE clause (with leading space) and its arguments.
    """
    marker = strategy.capabilities.placeholder
    if spec.by_primary_key:
        if not schema.primary_keys:
            raise ValidationError(f'Table {schema.table} has no primary key')
        if len(spec.pk_values) != len(schema.primary_keys):
            raise ValidationError(
                f'Table {schema.table} primary key {schema.primary_keys} expects '
                f'{len(schema.primary_keys)} value(s), got {len(spec.pk_values)}')
        clause = ' AND '.join(f'{strategy.quote_identifier(c)} = {marker}' for c in schema.primary_keys)
        return f' WHERE {clause}', [encode_value(v) for v in spec.pk_values]

    parts, args = [], []
    if spec.where:
        predicate = strategy.standardize_sql(spec.where)
        parts.append(f'({predicate})' if spec.where_pairs else predicate)
        args.extend(encode_value(v) for v in spec.where_args)
    for column, value in spec.where_pairs:
        parts.append(f'{strategy.quote_identifier(column)} = {marker}')
        args.append(encode_value(value))
    if not parts:
        return '', []
    return ' WHERE ' + ' AND '.join(parts), args


def _order_by(spec: QuerySpec) -> str:
    if not spec.order_by:
        return ''
    return ' ORDER BY ' + ', '.join(f'{column} {direction}' for column, direction in spec.order_by)


def _limit(spec: QuerySpec) -> str:
    if spec.count is None:
        return ''
    if spec.offset:
        return f' LIMIT {int(spec.count)} OFFSET {int(spec.offset)}'
    return f' LIMIT {int(spec.count)}'


def _write_limit(spec: QuerySpec, strategy: 'DatabaseStrategy') -> str:
    if spec.count is None or not strategy.capabilities.limit_on_update_delete:
        return ''
    return f' LIMIT {int(spec.count)}'


def _insert_columns(schema: Schema, record: Any, include_autoincrement: bool) -> list[str]:
    columns = schema.columns.columns
    if include_autoincrement or not schema.autoincrement:
        return columns
    # an explicit id is kept; only a falsy one is left to the store
    if schema.column_values(record, [schema.autoincrement])[0]:
        return columns
    return [c for c in columns if c != schema.autoincrement]


def _aggregate_target(schema: Schema, spec: QuerySpec, strategy: 'DatabaseStrategy') -> str:
    if not spec.aggregate:
        raise ValidationError(f'Aggregate on {schema.table} requires a column')
    if schema.columns.by_column(spec.aggregate) is not None:
        return strategy.quote_identifier(spec.aggregate)
    return spec.aggregate


def compile_sql(schema: Schema, spec: QuerySpec, action: Action,
                strategy: 'DatabaseStrategy', record: Any = None) -> tuple[str, list[Any]]:
    """Compile `spec` against `schema` into ``(sql, args)`` for `action`.

    Args:
        schema: Schema of the target table
        spec: Accumulated query clauses
        action: Statement kind to produce
        strategy: Dialect strategy; its capabilities decide LIMIT support and
            the conflict-clause spelling
        record: Source record for insert, replace and update-by-record

    Returns
        Statement text using the dialect placeholder, and its positional args

    Raises
        ValidationError: Wrong primary-key arity, empty SET list, missing record
    """
    table = strategy.quote_identifier(schema.table)
    caps = strategy.capabilities

    if action in {Action.INSERT, Action.INSERT_IGNORE, Action.REPLACE, Action.UPDATE_RECORD}:
        if record is None:
            raise ValidationError(f'{action.value} on {schema.table} requires a record')
        schema.check_record(record)

    if action in {Action.INSERT, Action.INSERT_IGNORE, Action.REPLACE}:
        columns = _insert_columns(schema, record, include_autoincrement=action is Action.REPLACE)
        verb = {Action.INSERT: 'INSERT INTO',
                Action.INSERT_IGNORE: caps.insert_ignore,
                Action.REPLACE: caps.replace}[action]
        column_list = ', '.join(strategy.quote_identifier(c) for c in columns)
        sql = f'{verb} {table} ({column_list}) VALUES ({strategy.make_placeholders(len(columns))})'
        args = schema.column_values(record, columns)
        if schema.autoincrement in columns:
            # a falsy id is sent as NULL so the store generates one
            position = columns.index(schema.autoincrement)
            args[position] = args[position] or None
        return sql, args

    where, where_args = _filter(schema, spec, strategy)

    if action is Action.READ_ONE or action is Action.READ_ALL:
        fields = ', '.join(spec.fields) or '*'
        limit = ' LIMIT 1' if action is Action.READ_ONE else _limit(spec)
        return f'SELECT {fields} FROM {table}{where}{_order_by(spec)}{limit}', where_args

    if action in AGGREGATES:
        target = '*' if action is Action.COUNT else _aggregate_target(schema, spec, strategy)
        return f'SELECT {action.name}({target}) FROM {table}{where} LIMIT 1', where_args

    if action is Action.UPDATE_RECORD:
        columns = [c for c in schema.columns.columns if c not in schema.primary_keys]
        if not columns:
            raise ValidationError(f'Table {schema.table} has no non-key columns to update')
        if not where:
            if not schema.primary_keys:
                raise ValidationError(
                    f'Refusing to update every row of {schema.table}: no filter and no primary key')
            marker = caps.placeholder
            clause = ' AND '.join(f'{strategy.quote_identifier(c)} = {marker}' for c in schema.primary_keys)
            where = f' WHERE {clause}'
            where_args = [encode_value(v) for v in schema.primary_values(record)]
        limit = ' LIMIT 1' if caps.limit_on_update_delete else ''
        sql = f'UPDATE {table} SET {_assignments(strategy, columns)}{where}{limit}'
        return sql, schema.column_values(record, columns) + where_args

    if action is Action.UPDATE_FIELDS:
        pairs = [(c, v) for c, v in spec.set_pairs if c not in schema.primary_keys]
        dropped = [c for c, _ in spec.set_pairs if c in schema.primary_keys]
        if dropped:
            logger.warning(f'Ignoring primary key column(s) {dropped} in update of {schema.table}')
        if not pairs:
            raise ValidationError(f'Update of {schema.table} has no fields to set')
        set_sql = _assignments(strategy, [c for c, _ in pairs])
        sql = f'UPDATE {table} SET {set_sql}{where}{_write_limit(spec, strategy)}'
        return sql, [encode_value(v) for _, v in pairs] + where_args

    if action is Action.DELETE:
        return f'DELETE FROM {table}{where}{_write_limit(spec, strategy)}', where_args

    raise ValueError(f'Unsupported action: {action}')
