"""
db.py

PostgreSQL access for the collections source (psycopg2, pooled).

The source tables belong to another system and keep receiving writes while a
report runs. The report itself never writes: every evaluation goes through
:func:`snapshot_conn`, which hands out a pooled connection already inside a
REPEATABLE READ, READ ONLY transaction, so all statements issued on it (the
main query and any stage previews) observe one point-in-time view.
"""

from __future__ import annotations

import atexit
import logging
from contextlib import contextmanager
from threading import Lock
from typing import Any, Iterator, Optional, Sequence

from apps.backend.db_metrics import measure_query
from infra.config import DatabaseConfig, get_settings

_LOGGER = logging.getLogger(__name__)

SNAPSHOT_STATEMENT = "SET TRANSACTION ISOLATION LEVEL REPEATABLE READ READ ONLY"

# One pool per process, rebuilt if the database settings change between runs.
_POOL_LOCK = Lock()
_POOL: Any = None
_POOL_KEY: Optional[tuple[str, int, int]] = None


def _pool_key(cfg: DatabaseConfig) -> tuple[str, int, int]:
    if not cfg.url:
        raise RuntimeError("DB_URL is not set")
    return (cfg.url, cfg.pool_maxconn, cfg.connect_timeout)


def _get_pool() -> Any:
    global _POOL, _POOL_KEY

    cfg = get_settings().db
    key = _pool_key(cfg)
    with _POOL_LOCK:
        if _POOL is not None and _POOL_KEY == key:
            return _POOL
        if _POOL is not None:
            _POOL.closeall()

        from psycopg2.pool import ThreadedConnectionPool  # type: ignore

        _POOL = ThreadedConnectionPool(1, cfg.pool_maxconn, dsn=cfg.url, connect_timeout=cfg.connect_timeout)
        _POOL_KEY = key
        _LOGGER.info("postgres pool ready maxconn=%d", cfg.pool_maxconn)
        return _POOL


def close_pool() -> None:
    """Close every pooled connection (registered for interpreter exit)."""
    global _POOL, _POOL_KEY
    with _POOL_LOCK:
        pool, _POOL, _POOL_KEY = _POOL, None, None
    if pool is not None:
        pool.closeall()


atexit.register(close_pool)


def _release(pool: Any, conn: Any) -> None:
    # A connection goes back to the pool with no open transaction, so it never
    # carries a stale snapshot into its next use.
    try:
        conn.rollback()
    except Exception as exc:
        _LOGGER.warning("rollback before putconn failed: %s", exc)
    try:
        pool.putconn(conn)
    except Exception as exc:
        _LOGGER.warning("putconn failed, closing connection: %s", exc)
        try:
            conn.close()
        except Exception as close_exc:
            _LOGGER.debug("close after putconn failure failed: %s", close_exc)


@contextmanager
def db_conn() -> Iterator[Any]:
    """Borrow a pooled connection; it is returned (never closed) on exit."""
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
    finally:
        _release(pool, conn)


@contextmanager
def read_only_snapshot(conn: Any) -> Iterator[Any]:
    """Run the enclosed statements in one REPEATABLE READ, READ ONLY transaction.

    psycopg2 opens a transaction implicitly on the first statement, so the
    isolation level must be set by that first statement.
    """
    conn.rollback()
    execute(conn, SNAPSHOT_STATEMENT, query_name="snapshot")
    try:
        yield conn
    finally:
        conn.rollback()


@contextmanager
def snapshot_conn() -> Iterator[Any]:
    """Pooled connection already inside a read-only snapshot transaction."""
    with db_conn() as conn, read_only_snapshot(conn):
        yield conn


def execute(conn: Any, sql: str, params: Optional[Sequence[Any]] = None, *, query_name: str) -> None:
    """Run one statement that returns no rows."""
    with conn.cursor() as cur:
        with measure_query(query_name):
            cur.execute(sql, params or ())


def _column_names(description: Any) -> list[str]:
    names: list[str] = []
    for i, col in enumerate(description or ()):
        name = getattr(col, "name", None) or (col[0] if isinstance(col, (tuple, list)) and col else None)
        names.append(str(name) if name else f"col_{i}")
    return names


def fetch_rows(conn: Any, sql: str, params: Optional[Sequence[Any]] = None, *, query_name: str) -> list[dict[str, Any]]:
    """Run one query and return its rows as column-name dicts."""
    with conn.cursor() as cur:
        with measure_query(query_name):
            cur.execute(sql, params or ())
        rows = cur.fetchall()
        columns = _column_names(cur.description)
    return [dict(zip(columns, row, strict=True)) for row in rows]
