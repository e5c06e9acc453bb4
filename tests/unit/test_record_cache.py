"""Unit tests for the per-table record mirror and its manager."""
import threading

import pytest
from tablemap.cache import RecordCache, TableCache
from tablemap.connection import ExecResult
from tablemap.mapper import Mapper
from tablemap.schema import SchemaRegistry, TableInfo
from tablemap.strategy import get_strategy
from tests.fixtures.records import OrderLine, User


class TestTableCache:
    """Copy-in / copy-out key -> record map."""

    def test_put_and_get_copy(self):
        cache = TableCache('users')
        user = User(id=1, name='a')
        cache.put('1', user)
        user.name = 'changed'
        stored = cache.get('1')
        assert stored == User(id=1, name='a')
        stored.name = 'also changed'
        assert cache.get('1').name == 'a'

    def test_missing_key(self):
        cache = TableCache('users')
        assert cache.get('1') is None
        assert '1' not in cache

    def test_patch(self):
        cache = TableCache('users', {'1': User(id=1, name='a')})

        def rename(record):
            record.name = 'b'

        assert cache.patch('1', rename) is True
        assert cache.get('1').name == 'b'
        assert cache.patch('2', rename) is False
        assert '2' not in cache

    def test_delete_and_replace_all(self):
        cache = TableCache('users', {'1': User(id=1), '2': User(id=2)})
        assert cache.delete('1') is True
        assert cache.delete('1') is False
        cache.replace_all({'9': User(id=9)})
        assert cache.keys() == ['9']
        cache.clear()
        assert len(cache) == 0

    def test_snapshot_is_detached(self):
        cache = TableCache('users', {'1': User(id=1, name='a')})
        snapshot = cache.snapshot()
        snapshot['1'].name = 'b'
        assert cache.get('1').name == 'a'

    def test_concurrent_writers(self):
        """Parallel puts from several threads all land."""
        cache = TableCache('users')

        def writer(offset):
            for i in range(200):
                cache.put(str(offset + i), User(id=offset + i))

        threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(cache) == 800


class TestRecordCache:
    """Enable policy and reloads."""

    @pytest.fixture
    def registry(self):
        infos = {
            'users': TableInfo(primary_keys=('id',), autoincrement='id'),
            'order_lines': TableInfo(primary_keys=('order_id', 'line')),
        }
        return SchemaRegistry(infos.__getitem__)

    @pytest.fixture
    def loader(self, mocker):
        rows = {
            'users': [User(id=1, name='a'), User(id=2, name='b')],
            'order_lines': [OrderLine(order_id=7, line=1)],
        }
        return mocker.Mock(side_effect=lambda schema: rows[schema.table])

    def test_requires_both_flags(self, registry, loader):
        cache = RecordCache(registry, loader)
        schema = registry.resolve('users', User)
        assert not cache.is_active(schema)
        schema.enable_cache = True
        assert not cache.is_active(schema)
        cache.enable()
        assert cache.is_active(schema)
        assert not cache.is_active(None)

    def test_enable_reloads_enabled_tables_only(self, registry, loader):
        cache = RecordCache(registry, loader)
        registry.resolve('users', User, enable_cache=True)
        registry.resolve('order_lines', OrderLine)
        cache.enable()
        assert sorted(cache.table('users').keys()) == ['1', '2']
        assert len(cache.table('order_lines')) == 0
        assert loader.call_count == 1

    def test_reload_keys_by_composite_key(self, registry, loader):
        cache = RecordCache(registry, loader)
        schema = registry.resolve('order_lines', OrderLine, enable_cache=True)
        cache.enabled = True
        assert cache.reload(schema) == 1
        assert cache.table('order_lines').keys() == ['7-1']

    def test_reload_inactive_is_noop(self, registry, loader):
        cache = RecordCache(registry, loader)
        schema = registry.resolve('users', User, enable_cache=True)
        assert cache.reload(schema) == 0
        loader.assert_not_called()

    def test_disable_clears_and_reset(self, registry, loader):
        cache = RecordCache(registry, loader)
        registry.resolve('users', User, enable_cache=True)
        cache.enable()
        cache.enable(False)
        assert len(cache.table('users')) == 0
        cache.enable()
        cache.reset()
        assert cache.enabled is False
        assert len(cache.table('users')) == 0

    def test_dump_logs_entries(self, registry, loader, caplog):
        cache = RecordCache(registry, loader)
        registry.resolve('users', User, enable_cache=True)
        cache.enable()
        with caplog.at_level('DEBUG', logger='tablemap.cache'):
            cache.dump()
        assert 'users (2 entries)' in caplog.text
        assert "User(id=1, name='a')" in caplog.text


class TestWriteKeyReads:
    """Key reads ahead of filtered writes select the rows the write changes."""

    @pytest.fixture
    def mysql_mapper(self, mocker):
        store = mocker.Mock()
        store.options = None
        store.strategy = get_strategy('mysql')
        store.describe_table.return_value = TableInfo(('id',), 'id')
        store.query.return_value = (['id', 'name'], [(1, 'a')])
        store.run.return_value = ExecResult(None, 1)
        mapper = Mapper(store)
        mapper.bind('users', User, enable_cache=True)
        mapper.enable_cache()
        return mapper

    def test_update_fields_key_read_matches_write_limit(self, mysql_mapper):
        store = mysql_mapper.store
        mysql_mapper.table('users').where('name = %s', 'a').limit(5, 10).update_fields(name='b')
        assert store.query.call_args.args[0] == 'SELECT `id` FROM `users` WHERE name = %s LIMIT 10'
        assert store.run.call_args.args[0] == (
            'UPDATE `users` SET `name` = %s WHERE name = %s LIMIT 10')
        assert mysql_mapper.table('users').cached() == {'1': User(id=1, name='b')}

    def test_delete_key_read_matches_write_limit(self, mysql_mapper):
        store = mysql_mapper.store
        mysql_mapper.table('users').where('name = %s', 'a').limit(5, 10).delete()
        assert store.query.call_args.args[0] == 'SELECT `id` FROM `users` WHERE name = %s LIMIT 10'
        assert store.run.call_args.args[0] == 'DELETE FROM `users` WHERE name = %s LIMIT 10'
        assert mysql_mapper.table('users').cached() == {}
