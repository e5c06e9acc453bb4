"""Unit tests for error tagging and driver error classification."""
import sqlite3

import pytest
from sqlalchemy import exc as sa_exc
from tablemap.exceptions import DatabaseError, ErrorKind, FatalMappingError
from tablemap.exceptions import MappingError, NoRowsError, StoreError
from tablemap.exceptions import ValidationError, is_duplicate_error
from tablemap.exceptions import is_retryable_error


class FakeMySQLError(Exception):
    """Looks like a mysql.connector error: carries an errno."""

    def __init__(self, errno, msg):
        super().__init__(msg)
        self.errno = errno


@pytest.mark.parametrize(('error_cls', 'kind'), [
    (NoRowsError, ErrorKind.NOT_FOUND),
    (ValidationError, ErrorKind.VALIDATION),
    (FatalMappingError, ErrorKind.FATAL),
    (StoreError, ErrorKind.STORE),
])
def test_error_kinds(error_cls, kind):
    err = error_cls('boom')
    assert isinstance(err, MappingError)
    assert isinstance(err, DatabaseError)
    assert err.kind is kind


def test_store_error_carries_statement():
    orig = sqlite3.OperationalError('no such column: nope')
    err = StoreError(str(orig), 'SELECT nope FROM t WHERE id = ?', [1], orig=orig)
    assert err.sql == 'SELECT nope FROM t WHERE id = ?'
    assert err.params == (1,)
    assert err.orig is orig
    assert not err.is_duplicate


class TestIsDuplicateError:

    def test_mysql_errno(self):
        assert is_duplicate_error(FakeMySQLError(1062, "Duplicate entry '1' for key 'PRIMARY'"))
        assert is_duplicate_error(FakeMySQLError(1586, 'Duplicate entry for key'))

    def test_mysql_other_errno_ignores_text(self):
        """A structured code wins over a misleading message."""
        assert not is_duplicate_error(FakeMySQLError(1048, "Column 'unique_code' cannot be null"))

    def test_sqlite_error_name(self):
        err = sqlite3.IntegrityError('UNIQUE constraint failed: users.id')
        err.sqlite_errorname = 'SQLITE_CONSTRAINT_PRIMARYKEY'
        assert is_duplicate_error(err)
        err = sqlite3.IntegrityError('NOT NULL constraint failed: users.name')
        err.sqlite_errorname = 'SQLITE_CONSTRAINT_NOTNULL'
        assert not is_duplicate_error(err)

    def test_text_fallback(self):
        assert is_duplicate_error(Exception('UNIQUE constraint failed: users.id'))
        assert not is_duplicate_error(Exception('no such table: users'))
        assert not is_duplicate_error(None)

    def test_unwraps_sqlalchemy_and_store_errors(self):
        orig = FakeMySQLError(1062, 'Duplicate entry')
        wrapped = sa_exc.IntegrityError('INSERT INTO t VALUES (%s)', (1,), orig)
        assert is_duplicate_error(wrapped)
        assert StoreError('Duplicate entry', orig=wrapped).is_duplicate


class TestIsRetryableError:

    @pytest.mark.parametrize('message', [
        'Lost connection to MySQL server during query',
        'MySQL server has gone away',
        'database is locked',
        'Connection reset by peer',
        'SSL SYSCALL error',
        'timed out',
    ])
    def test_transient(self, message):
        assert is_retryable_error(Exception(message))

    @pytest.mark.parametrize('message', [
        'near "SELEC": syntax error',
        'UNIQUE constraint failed: users.id',
        'no such table: users',
    ])
    def test_permanent(self, message):
        assert not is_retryable_error(Exception(message))

    def test_unwraps_operational_error(self):
        err = sa_exc.OperationalError('SELECT 1', None, sqlite3.OperationalError('database is locked'))
        assert is_retryable_error(err)
