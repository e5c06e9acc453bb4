"""
Mock store handles for dialect detection tests.

Usage:
    def test_detection(create_simple_mock_connection):
        my_conn = create_simple_mock_connection('mysql')
        sl_conn = create_simple_mock_connection('sqlite')
"""
import pytest


def _create_simple_mock_connection(connection_type='mysql'):
    """
    Create an object whose class looks like a driver connection of the given type.

    Args:
        connection_type: Database type ('mysql', 'sqlite', 'unknown')

    Returns
        Object that passes (or fails, for 'unknown') type-name detection
    """
    modules = {
        'mysql': 'mysql.connector.connection_cext',
        'sqlite': 'sqlite3',
        'unknown': 'unknown_db',
    }
    cls = type('Connection', (), {'__module__': modules[connection_type]})
    return cls()


@pytest.fixture
def create_simple_mock_connection():
    """
    Fixture that provides a factory function to create simple mock connections.

    Returns
        Factory function that creates mock connections of specified type
    """
    return _create_simple_mock_connection


@pytest.fixture
def mock_store(mocker):
    """Store double for metadata and cache-key tests."""
    store = mocker.Mock()
    store.engine = mocker.Mock()
    store.query.return_value = (['column'], [])
    return store
