"""
MySQL-specific strategy implementation.

MySQL accepts LIMIT on single-table UPDATE and DELETE, spells its conflict
clauses as `INSERT IGNORE` / `REPLACE`, and clears tables with TRUNCATE.
Primary keys come from the SQLAlchemy inspector, the autoincrement column
from `information_schema`.
"""
import logging
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from sqlalchemy import inspect
from tablemap.strategy.base import Capabilities, DatabaseStrategy
from tablemap.strategy.base import register_strategy

if TYPE_CHECKING:
    from tablemap.connection import Store
    from tablemap.options import MapperOptions

logger = logging.getLogger(__name__)


@register_strategy('mysql')
class MySQLStrategy(DatabaseStrategy):
    """MySQL-specific operations.
    """

    capabilities = Capabilities(
        placeholder='%s',
        limit_on_update_delete=True,
        insert_ignore='INSERT IGNORE INTO',
        replace='REPLACE INTO',
        clear_table='TRUNCATE TABLE {table}',
    )

    @property
    def dialect_name(self) -> str:
        """Return the dialect identifier for MySQL."""
        return 'mysql'

    def build_connection_url(self, options: 'MapperOptions') -> sa.URL:
        """Build the SQLAlchemy connection URL for MySQL."""
        query = {'charset': 'utf8mb4'}
        if options.timeout:
            query['connect_timeout'] = str(options.timeout)

        return sa.URL.create(
            drivername='mysql+mysqlconnector',
            username=options.username,
            password=options.password,
            host=options.hostname,
            port=options.port,
            database=options.database,
            query=query,
        )

    def get_engine_kwargs(self, options: 'MapperOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for MySQL."""
        return {}

    def configure_connection(self, conn: Any) -> None:
        """Make every session reject invalid values instead of truncating them.
        """
        cursor = conn.cursor()
        try:
            cursor.execute("SET SESSION sql_mode = CONCAT(@@sql_mode, ',STRICT_ALL_TABLES')")
        finally:
            cursor.close()

    @classmethod
    def get_required_options(cls) -> list[str]:
        """Return required options for MySQL connections."""
        return ['hostname', 'username', 'password', 'database', 'port']

    def get_primary_keys(self, store: 'Store', table: str) -> list[str]:
        """Get primary key columns for a table using SQLAlchemy Inspector.
        """
        with store.engine.connect() as conn:
            pk_constraint = inspect(conn).get_pk_constraint(table)
        return list(pk_constraint.get('constrained_columns', []))

    def get_autoincrement_column(self, store: 'Store', table: str) -> str | None:
        """Get the column flagged auto_increment, if any.
        """
        sql = """
select c.COLUMN_NAME
from information_schema.COLUMNS c
where c.TABLE_SCHEMA = database()
  and c.TABLE_NAME = %s
  and c.EXTRA like '%auto_increment%'
"""
        columns = self._select_column_raw(store, sql, (table,))
        return columns[0] if columns else None
