"""
Store access with SQLAlchemy.

This module provides:
1. The `connect()` function for creating a `Mapper` from options
2. The `Store` class that executes parametrized statements for the mapper
3. Engine creation and management through a thread-safe registry
4. The `check_connection` retry decorator

Each statement runs on its own pooled connection; writes commit as soon as
they succeed. Concurrency limits are those of the engine's pool.
"""
import atexit
import logging
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import fields
from functools import wraps
from typing import TYPE_CHECKING, Any, NamedTuple, TypeVar

import sqlalchemy as sa
from sqlalchemy.engine import Engine
from sqlalchemy.pool import NullPool
from tablemap.exceptions import DbConnectionError, is_retryable_error
from tablemap.options import MapperOptions
from tablemap.sql import prepare_statement, render_sql
from tablemap.strategy import DatabaseStrategy, get_db_strategy, get_strategy
from tablemap.strategy.sqlite import is_memory_database
from tablemap.types import TypeConverter

from libb import load_options

if TYPE_CHECKING:
    from tablemap.mapper import Mapper

__all__ = [
    'Store',
    'ExecResult',
    'connect',
    'check_connection',
    'get_engine_for_options',
    'dispose_all_engines',
]

logger = logging.getLogger(__name__)
sql_logger = logging.getLogger('tablemap.sql')

T = TypeVar('T')
_engine_registry: dict[str, Engine] = {}
_engine_registry_lock = threading.RLock()

_LASTROWID_VERBS = ('INSERT', 'REPLACE')


def check_connection(func: Callable[..., T] | None = None, *, max_retries: int = 3,
                     retry_delay: float = 1, retry_errors: type | tuple[type, ...] | None = None,
                     retry_backoff: float = 1.5,
                     sleep_func: Callable[[float], None] = time.sleep) -> Callable[..., T]:
    """Connection retry decorator with backoff.

    Retries the operation when it raises one of `retry_errors` (connection
    errors by default) whose message looks transient. Anything else is
    raised immediately.

    Supports both @check_connection and @check_connection() syntax.
    """
    def decorator(f: Callable[..., T]) -> Callable[..., T]:
        @wraps(f)
        def inner(*args: Any, **kwargs: Any) -> T:
            error_types = retry_errors if retry_errors is not None else DbConnectionError

            tries = 0
            delay = retry_delay
            while tries < max_retries:
                try:
                    return f(*args, **kwargs)
                except error_types as err:
                    if not is_retryable_error(err):
                        raise
                    tries += 1
                    if tries >= max_retries:
                        logger.error(f'Maximum retries ({max_retries}) exceeded: {err}')
                        raise
                    logger.warning(f'Connection error (attempt {tries}/{max_retries}): {err}')
                    sleep_func(delay)
                    delay *= retry_backoff

        return inner

    if func is None:
        return decorator
    return decorator(func)


def _attach_connection_setup(engine: Engine, strategy: DatabaseStrategy) -> None:
    @sa.event.listens_for(engine, 'connect')
    def on_connect(dbapi_connection, connection_record):
        strategy.configure_connection(dbapi_connection)


def _create_engine(options: MapperOptions, strategy: DatabaseStrategy,
                   engine_factory: Callable[..., Engine], **kwargs: Any) -> Engine:
    engine_kwargs: dict[str, Any] = {'echo': False}
    engine_kwargs.update(strategy.get_engine_kwargs(options))
    engine_kwargs.update(kwargs)
    engine = engine_factory(strategy.build_connection_url(options), **engine_kwargs)
    _attach_connection_setup(engine, strategy)
    return engine


def get_engine_for_options(options: MapperOptions, use_pool: bool = False,
                           pool_size: int = 5, pool_recycle: int = 300,
                           pool_timeout: int = 30,
                           engine_factory: Callable[..., Engine] = sa.create_engine,
                           **kwargs: Any) -> Engine:
    """Get or create a SQLAlchemy engine for the given options.

    In-memory SQLite databases get a private engine each time; it is never
    shared through the registry.
    """
    strategy = get_strategy(options.drivername)

    if is_memory_database(options):
        logger.debug('Created private engine for in-memory sqlite database')
        return _create_engine(options, strategy, engine_factory, **kwargs)

    key = f'{str(options)}_{use_pool}_{pool_size}_{pool_recycle}_{pool_timeout}'

    with _engine_registry_lock:
        if key in _engine_registry:
            logger.debug(f'Using existing engine for {options.drivername}')
            return _engine_registry[key]

        pool_kwargs: dict[str, Any] = {}
        if not use_pool:
            pool_kwargs['poolclass'] = NullPool
        else:
            pool_kwargs['pool_size'] = pool_size
            pool_kwargs['pool_recycle'] = pool_recycle
            pool_kwargs['pool_timeout'] = pool_timeout
            pool_kwargs['max_overflow'] = 10
            pool_kwargs['pool_pre_ping'] = True
            pool_kwargs['pool_reset_on_return'] = 'rollback'
        pool_kwargs.update(kwargs)

        engine = _create_engine(options, strategy, engine_factory, **pool_kwargs)

        _engine_registry[key] = engine
        logger.debug(f'Created new engine for {options.drivername}')

        return engine


def dispose_all_engines() -> None:
    """Dispose all engines in the registry.
    """
    with _engine_registry_lock:
        for key, engine in list(_engine_registry.items()):
            engine.dispose()
        _engine_registry.clear()
        logger.debug('All database engines disposed')


atexit.register(dispose_all_engines)


class ExecResult(NamedTuple):
    """Outcome of a write statement."""
    lastrowid: int | None
    rowcount: int


def _statement_verb(sql: str) -> str:
    words = sql.lstrip().split(None, 1)
    return words[0].upper() if words else ''


class Store:
    """Executes parametrized statements against one SQLAlchemy engine.

    Arguments are positional and may use either `%s` or `?` markers; they are
    standardized to the engine's dialect before execution.
    """

    def __init__(self, engine: Engine, options: MapperOptions | None = None) -> None:
        self.engine = engine
        self.options = options
        self.strategy = get_db_strategy(engine)
        self.calls = 0
        self.time = 0.0

    @property
    def dialect(self) -> str:
        return self.strategy.dialect_name

    @property
    def is_pooled(self) -> bool:
        """Check if this store is using SQLAlchemy's connection pooling
        """
        return not isinstance(self.engine.pool, NullPool)

    def _log(self, sql: str, args: Sequence[Any]) -> None:
        if self.options is not None and self.options.log_sql:
            sql_logger.info(render_sql(sql, args))

    def _prepare(self, sql: str, args: Sequence[Any]) -> tuple[str, tuple]:
        args = tuple(TypeConverter.convert_params(list(args or ())))
        return prepare_statement(sql, args, self.dialect), args

    def addcall(self, elapsed: float) -> None:
        """Track execution statistics
        """
        self.time += elapsed
        self.calls += 1

    @contextmanager
    def statement(self, sql: str, args: Sequence[Any] = (), write: bool = False) -> Iterator[Any]:
        """Prepare a statement, execute it and yield its cursor result.

        The underlying connection is released when the block exits; writes
        commit on a clean exit and roll back otherwise.
        """
        processed_sql, processed_args = self._prepare(sql, args)
        self._log(processed_sql, processed_args)
        start = time.time()
        scope = self.engine.begin() if write else self.engine.connect()
        with scope as conn:
            try:
                yield conn.exec_driver_sql(processed_sql, processed_args or None)
            finally:
                self.addcall(time.time() - start)

    @check_connection
    def query(self, sql: str, args: Sequence[Any] = ()) -> tuple[list[str], list[tuple]]:
        """Execute a SELECT and return its column names and rows.
        """
        with self.statement(sql, args) as result:
            columns = list(result.keys())
            rows = [tuple(row) for row in result.fetchall()]
        logger.debug(f'Query returned {len(rows)} row(s)')
        return columns, rows

    @check_connection
    def run(self, sql: str, args: Sequence[Any] = ()) -> ExecResult:
        """Execute a write statement and return its last row id and row count.
        """
        with self.statement(sql, args, write=True) as result:
            lastrowid = getattr(result, 'lastrowid', None)
            rowcount = result.rowcount
        logger.debug(f'Executed statement with {len(args)} parameters, {rowcount} row(s) affected')
        return ExecResult(lastrowid, rowcount)

    def execute(self, sql: str, args: Sequence[Any] = ()) -> int:
        """Execute a write statement.

        Returns the last inserted id for INSERT/REPLACE statements and the
        affected row count otherwise.
        """
        result = self.run(sql, args)
        if _statement_verb(sql) in _LASTROWID_VERBS:
            return result.lastrowid or 0
        return result.rowcount

    def clear_table(self, table: str) -> int:
        """Remove every row of `table`."""
        return self.run(self.strategy.clear_table_sql(table)).rowcount

    def describe_table(self, table: str, bypass_cache: bool = False):
        """Primary key and autoincrement metadata for `table`."""
        return self.strategy.describe_table(self, table, bypass_cache=bypass_cache)

    def close(self) -> None:
        """Release pooled connections; registry engines stay available.
        """
        if self.is_pooled:
            self.engine.dispose()
        logger.debug(f'Store closed: {self.calls} statements in {self.time:.2f}s '
                     f'(avg: {self.time/max(1,self.calls):.3f}s per statement)')


@load_options(cls=MapperOptions)
def connect(options: MapperOptions | dict[str, Any] | str,
            config: Any | None = None, **kw: Any) -> 'Mapper':
    """Create a Mapper on a store built from options.

    Args:
        options: Can be:
                - MapperOptions object
                - String path to configuration
                - Dictionary of options
                - Options specified as keyword arguments
        config: Configuration object (for loading from config files)
        **kw: Additional keyword arguments to override options

    Connection pooling options:
        use_pool: Whether to use connection pooling (default: False)
        pool_max_connections: Maximum connections in pool (default: 5)
        pool_max_idle_time: Maximum seconds a connection can be idle (default: 300)
        pool_wait_timeout: Maximum seconds to wait for a connection (default: 30)

    Returns
        Mapper bound to the new store
    """
    from tablemap.mapper import Mapper

    if isinstance(options, MapperOptions):
        for field in fields(options):
            kw.pop(field.name, None)
    else:
        options_func = load_options(cls=MapperOptions)(lambda o, c: o)
        options = options_func(options, config, **kw)

    engine = get_engine_for_options(options, use_pool=options.use_pool,
                                    pool_size=options.pool_max_connections,
                                    pool_recycle=options.pool_max_idle_time,
                                    pool_timeout=options.pool_wait_timeout)

    return Mapper(Store(engine, options), options)
