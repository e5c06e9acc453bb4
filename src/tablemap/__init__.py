"""
Table mapping for MySQL and SQLite with a write-through record cache.

Records are plain dataclasses bound to tables:

    >>> db = connect(drivername='sqlite', database='app.db')   # doctest: +SKIP
    >>> db.bind('users', User, enable_cache=True)              # doctest: +SKIP
    >>> db.table('users').insert(User(name='ann'))             # doctest: +SKIP

Every query action is also available as a module function taking the
mapper first, e.g. ``tablemap.one(db, 'users', 1)``.
"""
__version__ = '0.1.0'

from typing import Any

from tablemap.compiler import Action, QuerySpec, compile_sql
from tablemap.connection import Store, connect, dispose_all_engines
from tablemap.exceptions import DatabaseError, ErrorKind
from tablemap.exceptions import DbConnectionError, FatalMappingError
from tablemap.exceptions import MappingError, NoRowsError, StoreError
from tablemap.exceptions import ValidationError, is_duplicate_error
from tablemap.mapper import Mapper
from tablemap.options import MapperOptions
from tablemap.query import Query
from tablemap.schema import Schema, column, composite_key
from tablemap.types import get_adapter_registry

adapter_registry = get_adapter_registry()


def one(mapper: Mapper, table: str, *pk: Any) -> Any:
    """Fetch one record of a bound table by primary key.

    Raises NoRowsError when the key does not exist.
    """
    return mapper.table(table).where_pk(*pk).one()


def insert(mapper: Mapper, table: str, record: Any) -> int:
    """Insert a record and return its generated id.
    """
    return mapper.table(table).insert(record)


def update(mapper: Mapper, table: str, record: Any) -> int:
    """Update a record by its own primary key.
    """
    return mapper.table(table).update(record)


def delete(mapper: Mapper, table: str, *pk: Any) -> int:
    """Delete one record by primary key.
    """
    return mapper.table(table).where_pk(*pk).delete()


__all__ = [
    'Action',
    'DatabaseError',
    'DbConnectionError',
    'ErrorKind',
    'FatalMappingError',
    'Mapper',
    'MapperOptions',
    'MappingError',
    'NoRowsError',
    'Query',
    'QuerySpec',
    'Schema',
    'Store',
    'StoreError',
    'ValidationError',
    'adapter_registry',
    'column',
    'compile_sql',
    'composite_key',
    'connect',
    'delete',
    'dispose_all_engines',
    'insert',
    'is_duplicate_error',
    'one',
    'update',
]
