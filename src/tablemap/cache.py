"""
Caching for the mapping layer.

Two unrelated caches live here:

- `Cache`: process-wide TTL caches (cachetools) for store metadata such as
  primary keys and autoincrement columns, filled through `cacheable_strategy`.
- `TableCache` / `RecordCache`: the per-table key -> record mirror that is
  kept in step with every write and can answer primary-key reads and
  unfiltered counts without touching the store.
"""
import copy
import functools
import logging
import threading
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Any

import cachetools

if TYPE_CHECKING:
    from tablemap.schema import Schema, SchemaRegistry

logger = logging.getLogger(__name__)


class Cache:
    """Unified metadata cache manager.

    Thread-safe singleton that manages all TTL caches.
    """

    _instance = None
    _caches: dict[str, cachetools.TTLCache] = {}
    _lock = threading.RLock()

    @classmethod
    def get_instance(cls) -> 'Cache':
        """Get singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def get_cache(self, name: str, maxsize: int = 100, ttl: int = 300) -> cachetools.TTLCache:
        """Get or create a TTL cache with the given name.

        Args:
            name: Name of the cache
            maxsize: Maximum cache size
            ttl: Time-to-live in seconds

        Returns
            TTLCache instance
        """
        if name not in self._caches:
            with self._lock:
                if name not in self._caches:
                    self._caches[name] = cachetools.TTLCache(maxsize=maxsize, ttl=ttl)
        return self._caches[name]

    def clear_all(self) -> None:
        """Clear all managed caches."""
        with self._lock:
            for cache in self._caches.values():
                cache.clear()

    def clear_for_table(self, table_name: str) -> None:
        """Clear all cache entries related to a specific table.
        """
        table_lower = table_name.lower()
        with self._lock:
            for cache in self._caches.values():
                keys_to_clear = [
                    key for key in list(cache.keys())
                    if f':{table_lower}:' in str(key).lower()
                ]
                for key in keys_to_clear:
                    cache.pop(key, None)
                    logger.debug(f'Cleared cache entry {key} for table {table_name}')


def _create_cache_key(store: Any, table_name: str, method_args: tuple, method_kwargs: dict) -> str:
    """Create a deterministic cache key from arguments.

    The store contributes only the identity of its engine, so two stores on
    different databases never share entries.
    """
    engine_id = id(getattr(store, 'engine', store))
    args_str = ':'.join(repr(arg) for arg in method_args)
    kwargs_str = ':'.join(
        f'{k}={repr(v)}' for k, v in sorted(method_kwargs.items())
        if k != 'bypass_cache'
    )
    return f'{engine_id}:{table_name}:{args_str}:{kwargs_str}'.lower()


def cacheable_strategy(cache_name: str, ttl: int = 300, maxsize: int = 50):
    """Decorator for caching strategy method results.

    Caches results keyed by store engine, table name and method arguments.
    Respects bypass_cache parameter to skip cache lookup.
    """
    def decorator(method):
        @functools.wraps(method)
        def wrapper(self, store, table, *args, bypass_cache=False, **kwargs):
            if bypass_cache:
                logger.debug(f'Bypassing cache for {method.__name__}({table})')
                return method(self, store, table, *args, **kwargs)

            specific_cache_name = f'{cache_name}_{self.__class__.__name__}_{method.__name__}'
            cache = Cache.get_instance().get_cache(specific_cache_name, ttl=ttl, maxsize=maxsize)
            cache_key = _create_cache_key(store, table, args, kwargs)

            if cache_key in cache:
                logger.debug(f'Cache hit for {method.__name__}({table})')
                return cache[cache_key]

            logger.debug(f'Cache miss for {method.__name__}({table})')
            result = method(self, store, table, *args, **kwargs)
            cache[cache_key] = result
            return result

        return wrapper
    return decorator


class TableCache:
    """Concurrent key -> record map for one table.

    Records are copied on the way in and on the way out, so callers never
    share an instance with the mirror.
    """

    def __init__(self, table: str, entries: dict[str, Any] | None = None) -> None:
        self.table = table
        self._data: dict[str, Any] = dict(entries or {})
        self._lock = threading.RLock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            record = self._data.get(key)
            return copy.deepcopy(record) if record is not None else None

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._data

    def put(self, key: str, record: Any) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(record)

    def patch(self, key: str, update: Callable[[Any], None]) -> bool:
        """Apply `update` to a copy of the entry and store it back.

        Returns False, leaving the map untouched, when `key` is absent.
        """
        with self._lock:
            record = self._data.get(key)
            if record is None:
                return False
            record = copy.deepcopy(record)
            update(record)
            self._data[key] = record
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def replace_all(self, entries: dict[str, Any]) -> None:
        """Atomically swap in a new mapping."""
        with self._lock:
            self._data = entries

    def clear(self) -> None:
        self.replace_all({})

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._data)

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)


class RecordCache:
    """Write-through record mirrors for every cache-enabled table.

    A table is served from its mirror only when both its own flag (set at
    bind time) and the process-wide flag managed here are set.

    `loader` performs a full read of a table and returns its records; it is
    used for eager reloads.
    """

    def __init__(self, registry: 'SchemaRegistry',
                 loader: Callable[['Schema'], Iterable[Any]]) -> None:
        self._registry = registry
        self._loader = loader
        self._tables: dict[str, TableCache] = {}
        self._lock = threading.RLock()
        self.enabled = False

    def is_active(self, schema: 'Schema | None') -> bool:
        return bool(self.enabled and schema is not None and schema.enable_cache)

    def table(self, name: str) -> TableCache:
        with self._lock:
            cache = self._tables.get(name)
            if cache is None:
                cache = self._tables[name] = TableCache(name)
            return cache

    def enable(self, flag: bool = True) -> None:
        """Set the process-wide flag; enabling reloads every enabled table."""
        with self._lock:
            self.enabled = flag
            if flag:
                self.reload_all()
            else:
                for cache in self._tables.values():
                    cache.clear()
        logger.info(f"Record cache {'enabled' if flag else 'disabled'}")

    def reload(self, schema: 'Schema') -> int:
        """Replace a table's mirror with a fresh full read of the store."""
        if not self.is_active(schema):
            return 0
        entries = {schema.key_of(record): record for record in self._loader(schema)}
        self.table(schema.table).replace_all(entries)
        logger.debug(f'Loaded {len(entries)} records into cache for {schema.table}')
        return len(entries)

    def reload_all(self) -> None:
        for name in self._registry.tables():
            schema = self._registry.get(name)
            if self.is_active(schema):
                self.reload(schema)

    def dump(self) -> None:
        """Log every cached entry at DEBUG level."""
        with self._lock:
            tables = dict(self._tables)
        for name, cache in tables.items():
            logger.debug(f'=== {name} ({len(cache)} entries) ===')
            for key, record in cache.snapshot().items():
                logger.debug(f'{key}: {record!r}')

    def reset(self) -> None:
        with self._lock:
            self._tables.clear()
            self.enabled = False

