"""Unit tests for schema derivation, column maps and composite keys."""
from dataclasses import dataclass, field

import pytest
from tablemap.exceptions import ErrorKind, FatalMappingError, ValidationError
from tablemap.schema import ColumnMap, FieldDescriptor, Schema, SchemaRegistry
from tablemap.schema import TableInfo, column, composite_key, derive_fields
from tests.fixtures.records import Account, Audit, OrderLine, User


@dataclass
class TreeNode:
    value: int = 0
    child: 'TreeNode | None' = None


class TestDeriveFields:
    """Flattening of dataclass records into field descriptors."""

    def test_plain_record(self):
        descriptors = derive_fields(User)
        assert [(d.column, d.name, d.path) for d in descriptors] == [
            ('id', 'id', (0,)),
            ('name', 'name', (1,)),
        ]
        assert descriptors[0].type is int
        assert descriptors[1].type is str

    def test_renamed_skipped_and_embedded_members(self):
        """Explicit column names apply, skipped fields vanish, embedded fields flatten."""
        columns = {d.column: d for d in derive_fields(Account)}
        assert 'owner_name' in columns
        assert 'owner' not in columns
        assert 'scratch' not in columns
        assert columns['created'].path == (7, 0)
        assert columns['note'].path == (7, 1)
        assert columns['created'].nullable is True
        assert columns['opened'].nullable is True
        assert columns['balance'].nullable is False

    def test_derived_once_per_type(self):
        assert derive_fields(User) is derive_fields(User)

    def test_instance_is_accepted(self):
        assert derive_fields(type(User())) == derive_fields(User)

    @pytest.mark.parametrize('shape', [dict, int, object], ids=['dict', 'int', 'object'])
    def test_non_record_is_fatal(self, shape):
        with pytest.raises(FatalMappingError) as exc_info:
            derive_fields(shape)
        assert exc_info.value.kind is ErrorKind.FATAL

    def test_recursive_embedding_is_fatal(self):
        with pytest.raises(FatalMappingError):
            derive_fields(TreeNode)


class TestColumnMap:
    """Both indices resolve to the same descriptor; first registration wins."""

    def test_lookups_agree(self):
        descriptor = FieldDescriptor(column='user_name', name='name', path=(1,), type=str)
        columns = ColumnMap([descriptor])
        assert columns.by_column('user_name') is columns.by_field('name') is descriptor
        assert columns.exists('name')
        assert not columns.exists('user_name')

    def test_duplicate_field_name_is_ignored(self):
        first = FieldDescriptor(column='a', name='value', path=(0,), type=int)
        second = FieldDescriptor(column='b', name='value', path=(1,), type=str)
        columns = ColumnMap([first])
        assert columns.add(second) is False
        assert columns.by_field('value') is first
        assert columns.by_column('b') is None
        assert columns.columns == ['a']
        assert len(columns) == 1


class TestCompositeKey:
    """Composite primary-key strings."""

    @pytest.mark.parametrize(('values', 'expected'), [
        ((7, 'a'), '7-a'),
        ((1,), '1'),
        ((True, 0), 'true-0'),
        (('a-b',), 'a\\-b'),
        (('a\\', 'b'), 'a\\\\-b'),
    ], ids=['mixed', 'single', 'bool', 'separator', 'backslash'])
    def test_rendering(self, values, expected):
        assert composite_key(values) == expected

    def test_deterministic(self):
        assert composite_key((7, 'a')) == composite_key([7, 'a'])

    def test_separator_values_do_not_collide(self):
        assert composite_key(('a-b',)) != composite_key(('a', 'b'))
        assert composite_key(('a-', 'b')) != composite_key(('a', '-b'))


class TestSchema:

    def test_build(self, account_schema):
        assert account_schema.primary_keys == ('id',)
        assert account_schema.primary_key_paths == ((0,),)
        assert account_schema.autoincrement_field.name == 'id'
        assert account_schema.enable_cache is False

    def test_unmapped_primary_key_is_fatal(self):
        with pytest.raises(FatalMappingError):
            Schema.build('users', User, TableInfo(primary_keys=('user_id',)))

    def test_key_of(self, order_line_schema):
        line = OrderLine(order_id=7, line=2, sku='x', qty=1)
        assert order_line_schema.primary_values(line) == [7, 2]
        assert order_line_schema.key_of(line) == '7-2'

    def test_column_values_are_encoded(self, account_schema):
        account = Account(id=3, owner='ann', tags=['a'], audit=Audit(note='hi'))
        values = account_schema.column_values(account, ['owner_name', 'status', 'tags', 'note'])
        assert values == ['ann', 'active', '["a"]', 'hi']

    def test_check_record(self, user_schema):
        user_schema.check_record(User())
        with pytest.raises(ValidationError):
            user_schema.check_record(OrderLine())


class TestSchemaRegistry:
    """Lazy, cached schema resolution."""

    @pytest.fixture
    def describe(self, mocker):
        return mocker.Mock(return_value=TableInfo(primary_keys=('id',), autoincrement='id'))

    def test_resolve_once(self, describe):
        registry = SchemaRegistry(describe)
        first = registry.resolve('users', User)
        second = registry.resolve('users', User)
        assert first is second
        describe.assert_called_once_with('users')

    def test_only_cache_flag_updates_in_place(self, describe):
        registry = SchemaRegistry(describe)
        schema = registry.resolve('users', User)
        registry.resolve('users', OrderLine, enable_cache=True)
        assert schema.record_type is User
        assert schema.enable_cache is True

    def test_require_unbound_table(self, describe):
        registry = SchemaRegistry(describe)
        with pytest.raises(ValidationError):
            registry.require('users')
        assert registry.get('users') is None

    def test_reset(self, describe):
        registry = SchemaRegistry(describe)
        registry.resolve('users', User)
        assert registry.tables() == ['users']
        registry.reset()
        assert registry.tables() == []

    def test_non_record_is_fatal_before_describe(self, describe):
        registry = SchemaRegistry(describe)
        with pytest.raises(FatalMappingError):
            registry.resolve('users', dict)
        describe.assert_not_called()


def test_column_helper_metadata():
    @dataclass
    class Row:
        a: int = column('col_a', default=1)
        b: int = column(skip=True, default=2)

    fields = {d.name: d.column for d in derive_fields(Row)}
    assert fields == {'a': 'col_a'}
