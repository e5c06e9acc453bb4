"""
Base strategy interface for dialect-specific behavior.

Each supported SQL dialect is described by a `DatabaseStrategy` subclass.
The compiler consults the strategy's `Capabilities` once per compilation;
everything else here deals with the store: connection URLs, engine
arguments, connection setup and table metadata.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import sqlalchemy as sa
from tablemap.cache import cacheable_strategy
from tablemap.schema import TableInfo
from tablemap.sql import make_placeholders, quote_identifier
from tablemap.sql import standardize_placeholders

if TYPE_CHECKING:
    from tablemap.connection import Store
    from tablemap.options import MapperOptions

# Registry of dialect name -> strategy class
_STRATEGY_REGISTRY: dict[str, type['DatabaseStrategy']] = {}


def register_strategy(dialect: str):
    """Decorator to register a strategy class for a dialect.

    Usage:
        @register_strategy('mysql')
        class MySQLStrategy(DatabaseStrategy):
            ...
    """
    def decorator(cls: type['DatabaseStrategy']) -> type['DatabaseStrategy']:
        _STRATEGY_REGISTRY[dialect] = cls
        return cls
    return decorator


@dataclass(frozen=True)
class Capabilities:
    """Statement-shape differences between dialects.

    `clear_table` is a format string with a ``{table}`` field.
    """
    placeholder: str
    limit_on_update_delete: bool
    insert_ignore: str
    replace: str
    clear_table: str


class DatabaseStrategy(ABC):
    """Base class for dialect-specific operations.
    """

    capabilities: Capabilities

    def _select_raw(self, store: 'Store', sql: str,
                    params: tuple | None = None) -> list[dict]:
        """Execute SQL and return results as list of dicts.

        Used internally by strategy methods for metadata queries.
        """
        columns, rows = store.query(sql, params or ())
        return [dict(zip(columns, row)) for row in rows]

    def _select_column_raw(self, store: 'Store', sql: str,
                           params: tuple | None = None) -> list:
        """Execute SQL and return first column as list.
        """
        _, rows = store.query(sql, params or ())
        return [row[0] for row in rows]

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the dialect identifier (e.g., 'mysql', 'sqlite')."""

    @abstractmethod
    def build_connection_url(self, options: 'MapperOptions') -> str | sa.URL:
        """Build the SQLAlchemy connection URL for this dialect.

        Args:
            options: MapperOptions with connection parameters

        Returns
            SQLAlchemy connection URL
        """

    @abstractmethod
    def get_engine_kwargs(self, options: 'MapperOptions') -> dict[str, Any]:
        """Return SQLAlchemy create_engine kwargs for this dialect.

        Args:
            options: MapperOptions with connection parameters

        Returns
            Dict of kwargs to pass to create_engine
        """

    @abstractmethod
    def configure_connection(self, conn: Any) -> None:
        """Apply per-connection settings when the pool opens a connection.
        """

    @classmethod
    @abstractmethod
    def get_required_options(cls) -> list[str]:
        """Return list of required option field names for this dialect.

        Returns
            List of field names that must be non-None
        """

    @classmethod
    def validate_options(cls, options: 'MapperOptions') -> None:
        """Validate options for this dialect.

        Raises
            ValueError: If any required field is None or 0
        """
        for field in cls.get_required_options():
            if not getattr(options, field):
                raise ValueError(f'field {field} cannot be None or 0')

    @abstractmethod
    def get_primary_keys(self, store: 'Store', table: str) -> list[str]:
        """Get primary key columns for a table, in key order.

        Args:
            store: Store to query
            table: Table name

        Returns
            List of primary key column names
        """

    @abstractmethod
    def get_autoincrement_column(self, store: 'Store', table: str) -> str | None:
        """Get the table's autoincrement column, if it has one.
        """

    @cacheable_strategy('table_info', ttl=300, maxsize=50)
    def describe_table(self, store: 'Store', table: str) -> TableInfo:
        """Primary key and autoincrement metadata for a table.

        Args:
            store: Store to query
            table: Table name
            bypass_cache: If True, skip cache and query store directly

        Returns
            TableInfo with primary key columns in key order
        """
        return TableInfo(primary_keys=tuple(self.get_primary_keys(store, table)),
                         autoincrement=self.get_autoincrement_column(store, table))

    def quote_identifier(self, identifier: str) -> str:
        """Quote a table or column name for this dialect.
        """
        return quote_identifier(identifier, self.dialect_name)

    def make_placeholders(self, count: int) -> str:
        return make_placeholders(count, self.dialect_name)

    def standardize_sql(self, sql: str) -> str:
        """Convert positional placeholders to this dialect's marker.
        """
        return standardize_placeholders(sql, dialect=self.dialect_name)

    def clear_table_sql(self, table: str) -> str:
        """Statement that removes every row of `table`."""
        return self.capabilities.clear_table.format(table=self.quote_identifier(table))
