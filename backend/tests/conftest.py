import os
import sys
from contextlib import contextmanager

import pytest


# Allow running pytest from either the repo root or from within `backend/`.
# Tests import `backend.*`, which requires the repo root on sys.path.
REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)


class FakeCursor:
    """
    Answers queries from (sql fragment, handler) pairs; the first fragment
    found in the statement wins. A handler gets the params and returns rows.
    """

    def __init__(self, handlers):
        self._handlers = list(handlers)
        self._rows: list = []
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        params = tuple(params or ())
        self.executed.append((sql, params))
        for fragment, handler in self._handlers:
            if fragment in sql:
                self._rows = list(handler(params) or [])
                return
        raise AssertionError(f"unexpected query: {sql.strip()[:80]}")

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def ran(self, fragment: str) -> list[tuple]:
        return [params for sql, params in self.executed if fragment in sql]


class FakeConn:
    def __init__(self, cursor: FakeCursor):
        self._cursor = cursor
        self.committed = False
        self.rolled_back = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return self._cursor

    @contextmanager
    def transaction(self):
        try:
            yield
        except BaseException:
            self.rolled_back = True
            raise
        self.committed = True


@pytest.fixture
def fake_db(monkeypatch):
    def _install(module, handlers) -> FakeConn:
        conn = FakeConn(FakeCursor(handlers))
        monkeypatch.setattr(module, "get_conn", lambda: conn)
        return conn

    return _install


@pytest.fixture
def fake_cursor():
    return FakeCursor
