"""
The coordinating object: one store, one schema registry, one record cache.

    >>> from tablemap import connect
    >>> db = connect(drivername='sqlite', database=':memory:')  # doctest: +SKIP
    >>> db.bind('users', User, enable_cache=True)               # doctest: +SKIP
    >>> db.enable_cache()                                        # doctest: +SKIP
    >>> db.table('users').where_pk(1).one()                      # doctest: +SKIP
"""
import logging
from collections.abc import Callable, Sequence
from functools import wraps
from typing import TYPE_CHECKING, Any, TypeVar

from sqlalchemy import exc as sa_exc
from tablemap.cache import Cache, RecordCache
from tablemap.compiler import Action, QuerySpec, compile_sql
from tablemap.connection import Store
from tablemap.exceptions import FatalMappingError, MappingError, NoRowsError
from tablemap.exceptions import StoreError, ValidationError
from tablemap.options import MapperOptions
from tablemap.row import materialize_rows
from tablemap.schema import Schema, SchemaRegistry
from tablemap.sql import render_sql
from tablemap.strategy import DatabaseStrategy

if TYPE_CHECKING:
    from tablemap.query import Query

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _statement_of(err: sa_exc.SQLAlchemyError) -> tuple[str | None, tuple]:
    sql = getattr(err, 'statement', None)
    params = getattr(err, 'params', None)
    if not isinstance(params, Sequence) or isinstance(params, str):
        params = ()
    return sql, tuple(params)


def operation_boundary(func: Callable[..., T]) -> Callable[..., T]:
    """Normalize failures escaping a public query operation.

    Tagged `MappingError`s pass through unchanged. SQLAlchemy errors become
    `StoreError` carrying the statement and the driver exception. Anything
    else is a programming error: it is logged with its traceback and raised
    as `FatalMappingError`.
    """
    @wraps(func)
    def inner(self, *args: Any, **kwargs: Any) -> T:
        try:
            return func(self, *args, **kwargs)
        except NoRowsError:
            raise
        except MappingError as err:
            self.mapper.log_error(f'{func.__name__} on {self.table_name} failed: {err}')
            raise
        except sa_exc.SQLAlchemyError as err:
            sql, params = _statement_of(err)
            orig = getattr(err, 'orig', None) or err
            self.mapper.log_error(f'{func.__name__} on {self.table_name} failed: {orig}', sql, params)
            raise StoreError(str(orig), sql, params, orig=err) from err
        except Exception as err:
            logger.exception(f'Unexpected failure in {func.__name__} on {self.table_name}')
            raise FatalMappingError(f'{func.__name__} on {self.table_name}: {err}') from err

    return inner


class Mapper:
    """Maps dataclass records to tables of one store.

    Args:
        store: Store executing the statements
        options: Behavior flags (read-only, cache, logging); defaults to
            the store's own options
    """

    def __init__(self, store: Store, options: MapperOptions | None = None) -> None:
        self.store = store
        self.options = options or store.options
        self.read_only = bool(self.options and self.options.read_only)
        self.log_errors = self.options.log_errors if self.options else True
        self.schemas = SchemaRegistry(store.describe_table)
        self.cache = RecordCache(self.schemas, self._load_records)
        if self.options and self.options.enable_cache:
            self.cache.enable(True)

    @property
    def strategy(self) -> DatabaseStrategy:
        return self.store.strategy

    def log_error(self, message: str, sql: str | None = None, args: Sequence[Any] = ()) -> None:
        if not self.log_errors:
            return
        if sql:
            message = f'{message}\n{render_sql(sql, args)}'
        logger.error(message)

    def _load_records(self, schema: Schema) -> list[Any]:
        sql, args = compile_sql(schema, QuerySpec(), Action.READ_ALL, self.strategy)
        columns, rows = self.store.query(sql, args)
        return materialize_rows(schema, columns, rows)

    def bind(self, table: str, record_type: type, enable_cache: bool = False) -> Schema:
        """Associate `table` with a record type.

        The first binding of a table wins; a later binding can only change
        its cache flag. Binding a cache-enabled table while the record cache
        is on loads the table immediately.
        """
        schema = self.schemas.resolve(table, record_type)
        if schema.record_type is not record_type:
            logger.warning(f'Table {table} is already bound to {schema.record_type.__name__}; '
                           f'ignoring {getattr(record_type, "__name__", record_type)}')
        if enable_cache and not schema.primary_keys:
            raise ValidationError(f'Table {table} has no primary key and cannot be cached')
        schema.enable_cache = enable_cache
        if self.cache.is_active(schema):
            self.cache.reload(schema)
        return schema

    def table(self, name: str) -> 'Query':
        """Start a query on `name`."""
        from tablemap.query import Query
        return Query(self, name)

    def enable_cache(self, flag: bool = True) -> None:
        """Turn the record cache on (reloading every cached table) or off."""
        self.cache.enable(flag)

    def load_cache(self, table: str | None = None) -> int:
        """Reload one table's mirror, or every enabled table when `table` is None.

        Returns the number of records loaded.
        """
        if table is None:
            return sum(self.cache.reload(self.schemas.get(name)) for name in self.schemas.tables())
        return self.cache.reload(self.schemas.require(table))

    def set_read_only(self, flag: bool = True) -> None:
        """While set, every mutation is a no-op returning 0."""
        self.read_only = flag
        logger.info(f"Mapper is {'read-only' if flag else 'writable'}")

    def dump_cache(self) -> None:
        self.cache.dump()

    def reset(self) -> None:
        """Forget every binding and cached record."""
        for table in self.schemas.tables():
            Cache.get_instance().clear_for_table(table)
        self.cache.reset()
        self.schemas.reset()

    def close(self) -> None:
        self.reset()
        self.store.close()

    def __enter__(self) -> 'Mapper':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
