"""
SQLite mapper fixtures.

Each fixture gets a fresh in-memory database holding the `users`,
`accounts` and `order_lines` tables.
"""
import pytest
import tablemap
from tablemap.connection import Store
from tests.fixtures.records import ACCOUNTS_DDL, ORDER_LINES_DDL, USERS_DDL


def create_tables(store: Store) -> None:
    for ddl in (USERS_DDL, ACCOUNTS_DDL, ORDER_LINES_DDL):
        store.run(ddl)


@pytest.fixture
def sl_mapper():
    """In-memory SQLite mapper with the test tables created."""
    mapper = tablemap.connect({
        'drivername': 'sqlite',
        'database': ':memory:',
    })
    create_tables(mapper.store)

    yield mapper
    mapper.close()


@pytest.fixture
def sl_users(sl_mapper):
    """Mapper with `users` bound, cached, and the record cache on."""
    from tests.fixtures.records import User

    sl_mapper.bind('users', User, enable_cache=True)
    sl_mapper.enable_cache()
    return sl_mapper
