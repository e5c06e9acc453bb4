"""
Mapping-layer exception classes.

Every error raised by a mapping or query operation is a `MappingError`
tagged with an `ErrorKind`, so callers can branch on the kind instead of
catching driver-specific exceptions.
"""
import re
import sqlite3
from enum import Enum

from sqlalchemy import exc as sa_exc

RETRYABLE_PATTERNS = [
    # SSL/TLS errors
    r'ssl',
    r'tls',
    # Connection drops
    r'connection.*(closed|reset|refused|lost|terminated|broken)',
    r'server closed',
    r'server has gone away',
    r'lost connection',
    r'broken pipe',
    # Timeouts
    r'timeout',
    r'timed out',
    # Network issues
    r'could not connect',
    r"can't connect",
    r'no route to host',
    r'network.*(unreachable|error)',
    # Database unavailable
    r'database.*(unavailable|is locked)',
    r'too many connections',
]

_RETRYABLE_REGEX = re.compile('|'.join(RETRYABLE_PATTERNS), re.IGNORECASE)

# TODO: drop the text fallback once every supported driver exposes a
# structured constraint code.
_DUPLICATE_REGEX = re.compile(r'duplicate|unique', re.IGNORECASE)

MYSQL_DUPLICATE_ERRNOS = {1062, 1586}
SQLITE_DUPLICATE_NAMES = {'SQLITE_CONSTRAINT_UNIQUE', 'SQLITE_CONSTRAINT_PRIMARYKEY'}


def _driver_error(exc: BaseException) -> BaseException:
    """Unwrap a StoreError / SQLAlchemy DBAPIError to the driver exception."""
    while getattr(exc, 'orig', None) is not None:
        exc = exc.orig
    return exc


def is_retryable_error(exc: BaseException) -> bool:
    """Check if an exception represents a transient error worth retrying.

    Returns True for errors that are likely transient and may succeed on retry:
    - SSL/TLS errors
    - Connection drops/resets
    - Timeouts
    - Network issues
    - Database temporarily unavailable or locked

    Constraint violations, syntax errors and programming errors are never
    retryable.

    :param exc: The exception to check.
    :returns: True if the error is likely transient and worth retrying.
    """
    error_msg = str(_driver_error(exc)).lower()
    return bool(_RETRYABLE_REGEX.search(error_msg))


def is_duplicate_error(exc: BaseException | None) -> bool:
    """Check if an exception is a duplicate-key / unique-constraint failure.

    Structured driver codes are consulted first (MySQL errno, SQLite extended
    error name); the error text is matched only when neither is available.
    """
    if exc is None:
        return False
    orig = _driver_error(exc)

    errno = getattr(orig, 'errno', None)
    if errno is not None and not isinstance(orig, sqlite3.Error):
        return errno in MYSQL_DUPLICATE_ERRNOS

    errname = getattr(orig, 'sqlite_errorname', None)
    if errname:
        return errname in SQLITE_DUPLICATE_NAMES

    return bool(_DUPLICATE_REGEX.search(str(orig)))


class ErrorKind(Enum):
    """Tag carried by every mapping error."""
    NOT_FOUND = 'not_found'
    VALIDATION = 'validation'
    FATAL = 'fatal'
    STORE = 'store'


class DatabaseError(Exception):
    """Base class for all tablemap errors.
    """


class MappingError(DatabaseError):
    """Tagged library error raised from mapping and query operations.
    """

    kind: ErrorKind = ErrorKind.FATAL


class NoRowsError(MappingError):
    """The query matched zero rows.

    Raised by read-one and by the cache fast path; never fatal.
    """

    kind = ErrorKind.NOT_FOUND


class ValidationError(MappingError):
    """Error in caller input (wrong key arity, empty update, unbound table).
    """

    kind = ErrorKind.VALIDATION


class FatalMappingError(MappingError):
    """Programming error: record shape or type mismatch, unexpected failure.
    """

    kind = ErrorKind.FATAL


class StoreError(MappingError):
    """The underlying store rejected a statement.
    """

    kind = ErrorKind.STORE

    def __init__(self, message: str, sql: str | None = None,
                 args: tuple | None = None, orig: BaseException | None = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.params = tuple(args or ())
        self.orig = orig

    @property
    def is_duplicate(self) -> bool:
        return is_duplicate_error(self.orig)


DbConnectionError = (
    sa_exc.OperationalError,
    sa_exc.InterfaceError,
    sa_exc.DisconnectionError,
    )
