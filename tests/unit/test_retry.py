"""Unit tests for the connection retry decorator."""
import sqlite3

import pytest
from sqlalchemy import exc as sa_exc
from tablemap.connection import check_connection


def _operational(message):
    return sa_exc.OperationalError('SELECT 1', None, sqlite3.OperationalError(message))


def test_retries_transient_errors(mocker):
    sleep = mocker.Mock()
    work = mocker.Mock(side_effect=[_operational('database is locked'),
                                    _operational('database is locked'),
                                    'done'])

    @check_connection(max_retries=3, retry_delay=1, retry_backoff=1.5, sleep_func=sleep)
    def operation():
        return work()

    assert operation() == 'done'
    assert work.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [1, 1.5]


def test_gives_up_after_max_retries(mocker):
    sleep = mocker.Mock()
    work = mocker.Mock(side_effect=_operational('Lost connection to server'))

    @check_connection(max_retries=3, sleep_func=sleep)
    def operation():
        return work()

    with pytest.raises(sa_exc.OperationalError):
        operation()
    assert work.call_count == 3
    assert sleep.call_count == 2


def test_permanent_error_not_retried(mocker):
    sleep = mocker.Mock()
    work = mocker.Mock(side_effect=_operational('no such table: users'))

    @check_connection(sleep_func=sleep)
    def operation():
        return work()

    with pytest.raises(sa_exc.OperationalError):
        operation()
    assert work.call_count == 1
    sleep.assert_not_called()


def test_other_errors_propagate(mocker):
    work = mocker.Mock(side_effect=ValueError('bad input'))

    @check_connection
    def operation():
        return work()

    with pytest.raises(ValueError):
        operation()
    assert work.call_count == 1


def test_custom_retry_errors(mocker):
    sleep = mocker.Mock()
    work = mocker.Mock(side_effect=[ConnectionError('connection reset'), 42])

    @check_connection(retry_errors=ConnectionError, sleep_func=sleep)
    def operation():
        return work()

    assert operation() == 42
    sleep.assert_called_once_with(1)
