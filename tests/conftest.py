import os

os.environ.setdefault('TESTING', 'true')
os.environ.setdefault('TELEGRAM_BOT_TOKEN', '')

from datetime import datetime

import pytest
import pytz

import database.connection as db


class FakeCursor:
    """
    Scripted cursor: each executed statement is matched against registered
    SQL fragments in order; the first hit decides what fetchone/fetchall see.
    A handler is a value, a callable taking params, or an exception to raise.
    """

    def __init__(self):
        self.handlers = []
        self.queries = []
        self._result = None
        self.closed = False

    def on(self, fragment, result):
        self.handlers.append((fragment, result))
        return self

    def execute(self, sql, params=None):
        self.queries.append((sql, params))
        self._result = None
        for fragment, result in self.handlers:
            if fragment in sql:
                value = result(params) if callable(result) else result
                if isinstance(value, Exception):
                    raise value
                self._result = value
                return

    def fetchone(self):
        if isinstance(self._result, list):
            return self._result[0] if self._result else None
        return self._result

    def fetchall(self):
        if self._result is None:
            return []
        if isinstance(self._result, list):
            return self._result
        return [self._result]

    def close(self):
        self.closed = True

    def executed(self, fragment):
        return [(sql, params) for sql, params in self.queries if fragment in sql]


class FakeConn:
    def __init__(self):
        self.cursor_obj = FakeCursor()
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self):
        return self.cursor_obj

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def close(self):
        self.closed = True


def sequence(*values):
    """Handler returning the given values on successive calls, then the last one"""
    remaining = list(values)

    def handler(params):
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]
    return handler


@pytest.fixture
def fake_conn(monkeypatch):
    conn = FakeConn()
    monkeypatch.setattr(db, 'connection_pool', None)
    monkeypatch.setattr(db, 'get_db_connection', lambda: conn)
    return conn


@pytest.fixture
def cursor(fake_conn):
    return fake_conn.cursor_obj


@pytest.fixture
def tz():
    return pytz.timezone('Asia/Tashkent')


@pytest.fixture
def at(tz):
    """Aware local datetime factory: at(2025, 1, 15, 18, 5)"""
    def make(*args):
        return tz.localize(datetime(*args))
    return make
