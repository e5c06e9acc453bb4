import importlib


def test_circular_dependencies():
    """Every module imports cleanly, lowest layer first."""
    modules = [
        # No internal dependencies
        'tablemap.exceptions',
        'tablemap.cache',
        'tablemap.sql',
        'tablemap.utils',

        # Values and shapes
        'tablemap.types',
        'tablemap.schema',

        # Dialects and configuration
        'tablemap.strategy.base',
        'tablemap.strategy.mysql',
        'tablemap.strategy.sqlite',
        'tablemap.strategy',
        'tablemap.options',

        # Statements and rows
        'tablemap.compiler',
        'tablemap.row',

        # Store, mapper and queries
        'tablemap.connection',
        'tablemap.mapper',
        'tablemap.query',

        # Main package
        'tablemap',
    ]

    failures = {}
    for module in modules:
        try:
            importlib.import_module(module)
        except Exception as e:
            failures[module] = e

    assert not failures, f'{len(failures)} modules failed to import: {failures}'


if __name__ == '__main__':
    __import__('pytest').main([__file__])
