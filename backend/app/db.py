import os
from psycopg.rows import dict_row
from contextlib import contextmanager

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import settings, _env_int
from .jsonlog import json_log

DATABASE_URL = os.getenv("APP_DATABASE_URL") or settings.db_url

# Pool sizing defaults suit a single shop. Override via env:
# - DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 5)

# Opened on app startup so importing routers (e.g. in tests) never dials the DB.
_pool = ConnectionPool(
    conninfo=DATABASE_URL,
    min_size=_POOL_MIN,
    max_size=_POOL_MAX,
    kwargs={"row_factory": dict_row},
    open=False,
)


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:`
    # - commit on success
    # - rollback on exception
    # - return connection to pool
    with pool.connection() as conn:
        yield conn


def get_conn():
    return _pooled_conn(_pool)


def open_pool() -> None:
    _pool.open()


def close_pools() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    try:
        _pool.close()
    except Exception as exc:
        json_log("warning", "shutdown.pool_close_failed", error=str(exc))
