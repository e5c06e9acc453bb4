"""
SQL text helpers shared by the compiler and the store.

- `quote_identifier()` - Quote table/column names per dialect
- `make_placeholders()` - Build a positional placeholder list
- `standardize_placeholders()` - Convert %s <-> ? for a dialect
- `escape_percent_signs_in_literals()` - Escape % in string literals
- `prepare_statement()` - Standardize a statement before execution
- `render_sql()` - Inline arguments for human inspection (never executed)
"""
import datetime
import re
from typing import Any

# String literals (single, double or backtick quoted) are matched first so that
# placeholders and percent signs inside them are left alone.
_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^'\\]|\\.|'')*'|"(?:[^"]|"")*"|`(?:[^`]|``)*`)
    |(?P<percent_s>%s)
    |(?P<qmark>\?)
""", re.VERBOSE)

_UNESCAPED_PERCENT = re.compile(r'(?<!%)%(?![%s(])')

_HAS_PLACEHOLDER = re.compile(r'%s|\?')

_PLACEHOLDERS = {'mysql': '%s', 'sqlite': '?'}


def _dialect_placeholder(dialect: str) -> str:
    try:
        return _PLACEHOLDERS[dialect]
    except KeyError:
        raise ValueError(f'Unknown dialect: {dialect}') from None


def quote_identifier(identifier: str, dialect: str = 'sqlite') -> str:
    """Safely quote database identifiers.

    Parameters
        identifier: Table or column name
        dialect: Database dialect

    Returns
        Quoted identifier

    Raises
        ValueError: If dialect is unsupported
    """
    if dialect == 'mysql':
        return '`' + identifier.replace('`', '``') + '`'
    if dialect == 'sqlite':
        return '"' + identifier.replace('"', '""') + '"'

    raise ValueError(f'Unknown dialect: {dialect}')


def make_placeholders(count: int, dialect: str = 'sqlite') -> str:
    """Return `count` comma-separated positional placeholders.

    >>> make_placeholders(3, 'mysql')
    '%s, %s, %s'
    >>> make_placeholders(2, 'sqlite')
    '?, ?'
    """
    return ', '.join([_dialect_placeholder(dialect)] * count)


def standardize_placeholders(sql: str, dialect: str = 'sqlite') -> str:
    """Convert positional placeholders to the dialect's style.

    Placeholders inside string literals are not touched.

    >>> standardize_placeholders("name = %s AND note = '%s'", 'sqlite')
    "name = ? AND note = '%s'"
    >>> standardize_placeholders('id = ?', 'mysql')
    'id = %s'
    """
    target = _dialect_placeholder(dialect)

    def replace(match: re.Match) -> str:
        if match.group('string'):
            return match.group('string')
        return target

    return _TOKENIZE.sub(replace, sql)


def _escape_percent_in_literal(literal: str) -> str:
    return _UNESCAPED_PERCENT.sub('%%', literal)


def escape_percent_signs_in_literals(sql: str) -> str:
    """Double unescaped percent signs inside string literals.

    Needed for drivers using the `format` paramstyle, which would otherwise
    treat `LIKE 'a%'` as a substitution marker.

    >>> escape_percent_signs_in_literals("name LIKE 'a%' AND id = %s")
    "name LIKE 'a%%' AND id = %s"
    """
    def replace(match: re.Match) -> str:
        if match.group('string'):
            return _escape_percent_in_literal(match.group('string'))
        return match.group(0)

    return _TOKENIZE.sub(replace, sql)


def prepare_statement(sql: str, args: tuple | list, dialect: str) -> str:
    """Standardize placeholders and escape literals for execution.
    """
    sql = standardize_placeholders(sql, dialect)
    if args and _dialect_placeholder(dialect) == '%s':
        sql = escape_percent_signs_in_literals(sql)
    return sql


def _render_value(value: Any) -> str:
    if value is None:
        return 'NULL'
    if isinstance(value, bool):
        return '1' if value else '0'
    if isinstance(value, int | float):
        return str(value)
    if isinstance(value, bytes | bytearray | memoryview):
        return f"x'{bytes(value).hex()}'"
    if isinstance(value, datetime.date):
        value = value.isoformat(sep=' ') if isinstance(value, datetime.datetime) else value.isoformat()
    return "'" + str(value).replace("'", "''") + "'"


def render_sql(sql: str, args: tuple | list | None = None) -> str:
    """Inline positional arguments into a statement for logging.

    The result is for human inspection only and is never executed.

    >>> render_sql('SELECT * FROM t WHERE id = ? AND name = %s', (1, "o'k"))
    "SELECT * FROM t WHERE id = 1 AND name = 'o''k'"
    """
    if not args:
        return sql
    remaining = iter(args)

    def replace(match: re.Match) -> str:
        if match.group('string'):
            return match.group('string')
        try:
            return _render_value(next(remaining))
        except StopIteration:
            return match.group(0)

    return _TOKENIZE.sub(replace, sql)


__all__ = [
    'quote_identifier',
    'make_placeholders',
    'standardize_placeholders',
    'escape_percent_signs_in_literals',
    'prepare_statement',
    'render_sql',
]
