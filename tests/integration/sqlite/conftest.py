"""
Fixtures for SQLite-specific integration tests.
"""
import config
import pytest
import tablemap
from tests.fixtures.sqlite import create_tables


@pytest.fixture
def sqlite_file_mapper(tmp_path):
    """File-based SQLite mapper for testing persistence across connections."""
    db_file = tmp_path / config.sqlite.database

    mapper = tablemap.connect('sqlite', config=config, database=str(db_file))
    create_tables(mapper.store)

    yield mapper

    mapper.close()


@pytest.fixture
def sl_logged():
    """In-memory mapper that logs every statement it runs."""
    mapper = tablemap.connect({
        'drivername': 'sqlite',
        'database': ':memory:',
        'log_sql': True,
    })
    create_tables(mapper.store)

    yield mapper

    mapper.close()
