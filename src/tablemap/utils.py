"""Low-level utilities with no internal dependencies.

Dialect detection works with any store handle (Store, SQLAlchemy engines and
connections, raw DBAPI connections). The path helpers walk records along the
member-index paths recorded in field descriptors.
"""
import dataclasses
import logging
from collections.abc import Sequence
from typing import Any

logger = logging.getLogger(__name__)


def get_dialect_name(obj: Any) -> str:
    """Get dialect name for a store, engine or connection.
    """
    if hasattr(obj, 'dialect'):
        dialect = obj.dialect
        if isinstance(dialect, str):
            return dialect.lower()
        return str(dialect.name).lower()

    if hasattr(obj, 'engine') and hasattr(obj.engine, 'dialect'):
        return str(obj.engine.dialect.name).lower()

    type_name = f'{type(obj).__module__}.{type(obj).__name__}'
    if 'mysql' in type_name:
        return 'mysql'
    if 'sqlite3' in type_name:
        return 'sqlite'

    raise AttributeError(f'Cannot determine dialect for {type(obj)}')


def _member(obj: Any, index: int) -> Any:
    return getattr(obj, dataclasses.fields(obj)[index].name)


def get_path(record: Any, path: Sequence[int]) -> Any:
    """Read the member reached by following `path` from `record`.
    """
    value = record
    for index in path:
        if value is None:
            return None
        value = _member(value, index)
    return value


def set_path(record: Any, path: Sequence[int], value: Any) -> None:
    """Assign `value` to the member reached by following `path`.

    Records must be mutable dataclasses; frozen instances raise
    ``dataclasses.FrozenInstanceError``.
    """
    owner = record
    for index in path[:-1]:
        owner = _member(owner, index)
    setattr(owner, dataclasses.fields(owner)[path[-1]].name, value)
