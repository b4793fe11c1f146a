"""Postgres pool for DbRecordStore, with per-statement timing."""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Any, Iterable

import psycopg2.extras
from psycopg2.pool import SimpleConnectionPool


_POOL: SimpleConnectionPool | None = None
_logger = logging.getLogger("certflow.db")
_query_logger = logging.getLogger("certflow.db.query")
SLOW_QUERY_MS = float(os.getenv("CERTFLOW_QUERY_SLOW_MS", "200"))
LOG_ALL_QUERIES = os.getenv("CERTFLOW_QUERY_LOG", "").strip() == "1"


def get_db_url() -> str:
    url = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_DB_URL or DATABASE_URL is required when USE_DB=1")
    return url


def _short(value: Any) -> Any:
    if isinstance(value, str) and len(value) > 80:
        return f"{value[:40]}..."
    return value


def _log_query(name: str | None, params: Iterable[Any] | None, elapsed_ms: float, rowcount: int) -> None:
    slow = elapsed_ms >= SLOW_QUERY_MS
    if not slow and not LOG_ALL_QUERIES:
        return
    shown = None if params is None else [_short(p) for p in params]
    log = _query_logger.warning if slow else _query_logger.info
    log("db_query name=%s ms=%.2f rows=%s slow=%s params=%s", name or "unnamed", elapsed_ms, rowcount, slow, shown)


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    if _POOL is not None:
        return
    minconn = minconn if minconn is not None else int(os.getenv("CERTFLOW_DB_POOL_MIN", "1"))
    maxconn = maxconn if maxconn is not None else int(os.getenv("CERTFLOW_DB_POOL_MAX", "10"))
    _POOL = SimpleConnectionPool(minconn, maxconn, dsn=get_db_url())
    _logger.info("db_pool_ready min=%s max=%s", minconn, maxconn)


@contextmanager
def get_conn():
    """One transaction on a pooled connection."""
    if _POOL is None:
        init_pool()
    conn = _POOL.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        _POOL.putconn(conn)


@contextmanager
def _timed_cursor(conn, statement, params, name: str | None):
    started = time.perf_counter()
    with conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cur:
        cur.execute(statement, params or [])
        yield cur
        rowcount = cur.rowcount
    _log_query(name, params, (time.perf_counter() - started) * 1000, rowcount)


def fetch_one(conn, statement, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    with _timed_cursor(conn, statement, params, query_name) as cur:
        row = cur.fetchone()
    return dict(row) if row else None


def fetch_all(conn, statement, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    with _timed_cursor(conn, statement, params, query_name) as cur:
        return [dict(r) for r in cur.fetchall()]


def execute(conn, statement, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    with _timed_cursor(conn, statement, params, query_name) as cur:
        return cur.rowcount
