"""
SQLite-specific strategy implementation.

SQLite has no LIMIT on UPDATE/DELETE in default builds, spells its conflict
clauses as `INSERT OR IGNORE` / `INSERT OR REPLACE`, and has no TRUNCATE.
Metadata comes from the `pragma_table_info` table-valued function.
"""
import json
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from tablemap.sql import quote_identifier
from tablemap.strategy.base import Capabilities, DatabaseStrategy
from tablemap.strategy.base import register_strategy
from tablemap.types import get_adapter_registry

if TYPE_CHECKING:
    from tablemap.connection import Store
    from tablemap.options import MapperOptions

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ':memory:'


@register_strategy('sqlite')
class SQLiteStrategy(DatabaseStrategy):
    """SQLite-specific operations.
    """

    capabilities = Capabilities(
        placeholder='?',
        limit_on_update_delete=False,
        insert_ignore='INSERT OR IGNORE INTO',
        replace='INSERT OR REPLACE INTO',
        clear_table='DELETE FROM {table}',
    )

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for SQLite."""
        return 'sqlite'

    def build_connection_url(self, options: 'MapperOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for SQLite."""
        return sa.URL.create(drivername='sqlite', database=options.database)

    def get_engine_kwargs(self, options: 'MapperOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for SQLite.

        In-memory databases live and die with their connection, so they get a
        single shared connection usable from any thread.
        """
        connect_args: dict[str, Any] = {
            'detect_types': sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES
        }
        if options.timeout:
            connect_args['timeout'] = options.timeout
        kwargs: dict[str, Any] = {'connect_args': connect_args}
        if is_memory_database(options):
            connect_args['check_same_thread'] = False
            kwargs['poolclass'] = sa.pool.StaticPool
        return kwargs

    def configure_connection(self, conn: Any) -> None:
        """Configure connection settings for SQLite.
        """
        sqlite_conn = conn
        if hasattr(conn, 'dbapi_connection'):
            sqlite_conn = conn.dbapi_connection

        sqlite3.register_adapter(dict, json.dumps)
        sqlite3.register_adapter(list, json.dumps)
        get_adapter_registry().sqlite(sqlite_conn)
        sqlite_conn.execute('PRAGMA foreign_keys = ON')

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for SQLite connections."""
        return ['database']

    def get_primary_keys(self, store: 'Store', table: str) -> list[str]:
        """Get primary key columns for a table, in key order.
        """
        quoted_table = quote_identifier(table, 'sqlite')
        sql = f"""
select l.name as column from pragma_table_info({quoted_table}) as l where l.pk <> 0 order by l.pk
"""
        return self._select_column_raw(store, sql)

    def get_autoincrement_column(self, store: 'Store', table: str) -> str | None:
        """A lone INTEGER PRIMARY KEY column aliases the rowid.
        """
        quoted_table = quote_identifier(table, 'sqlite')
        sql = f"""
select l.name as column, l.type as type from pragma_table_info({quoted_table}) as l where l.pk <> 0
"""
        rows = self._select_raw(store, sql)
        if len(rows) == 1 and (rows[0]['type'] or '').upper() == 'INTEGER':
            return rows[0]['column']
        return None


def is_memory_database(options: 'MapperOptions') -> bool:
    return options.drivername == 'sqlite' and options.database in {MEMORY_DATABASE, '', None}
