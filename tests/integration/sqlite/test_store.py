"""Store execution and the remaining query builders against SQLite."""
import tablemap
from tablemap.schema import TableInfo
from tests.fixtures.records import User


def test_execute_returns_lastrowid_or_rowcount(sl_mapper):
    store = sl_mapper.store
    assert store.execute('INSERT INTO users (name) VALUES (?)', ('a',)) == 1
    assert store.execute('INSERT INTO users (name) VALUES (%s)', ('b',)) == 2
    assert store.execute('UPDATE users SET name = ? WHERE id > ?', ('z', 0)) == 2
    columns, rows = store.query('SELECT id, name FROM users ORDER BY id')
    assert columns == ['id', 'name']
    assert rows == [(1, 'z'), (2, 'z')]
    assert store.execute('DELETE FROM users WHERE id = ?', (1,)) == 1


def test_percent_literal_with_args(sl_mapper):
    store = sl_mapper.store
    store.execute("INSERT INTO users (name) VALUES ('100%')")
    _, rows = store.query("SELECT name FROM users WHERE name LIKE '%0%' AND id = ?", (1,))
    assert rows == [('100%',)]


def test_clear_table_and_stats(sl_mapper):
    store = sl_mapper.store
    store.execute("INSERT INTO users (name) VALUES ('a')")
    calls = store.calls
    store.clear_table('users')
    assert store.query('SELECT COUNT(*) FROM users')[1] == [(0,)]
    assert store.calls == calls + 2


def test_describe_table(sl_mapper):
    assert sl_mapper.store.describe_table('users') == TableInfo(('id',), 'id')
    assert sl_mapper.store.describe_table('order_lines', bypass_cache=True) == TableInfo(('order_id', 'line'))


def test_file_store_is_not_pooled(sqlite_file_mapper, mocker):
    store = sqlite_file_mapper.store
    assert store.dialect == 'sqlite'
    assert store.is_pooled is False
    dispose = mocker.patch.object(store.engine, 'dispose')
    store.close()
    dispose.assert_not_called()


def test_pooled_store_disposes_on_close(sl_mapper, mocker):
    store = sl_mapper.store
    assert store.is_pooled is True
    dispose = mocker.patch.object(store.engine, 'dispose')
    store.close()
    dispose.assert_called_once_with()


def test_query_bind_and_builders(sl_mapper):
    users = sl_mapper.table('users').bind(User)
    for name in ('b', 'a', 'a'):
        sl_mapper.table('users').insert(User(name=name))
    rows = sl_mapper.table('users').sort_map({'name': 1, 'id': 'desc'}).all()
    assert [(u.name, u.id) for u in rows] == [('a', 3), ('a', 2), ('b', 1)]
    rows = sl_mapper.table('users').where('name = ?', 'a').and_where('id < ?', 3).all()
    assert rows == [User(id=2, name='a')]
    assert 'users' in repr(users)


def test_context_manager():
    with tablemap.connect({'drivername': 'sqlite', 'database': ':memory:'}) as mapper:
        mapper.store.execute('CREATE TABLE t (id INTEGER PRIMARY KEY)')
        assert mapper.table('t').count() == 0
    assert mapper.schemas.tables() == []
