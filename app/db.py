"""DB helper for Supabase Postgres."""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
import contextvars
from typing import Any, Iterable

import psycopg2
import psycopg2.extras
from psycopg2 import sql as pgsql
from psycopg2.pool import SimpleConnectionPool
import threading
import logging


def get_db_url() -> str:
    url = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("SUPABASE_DB_URL or DATABASE_URL is required when USE_DB=1")
    return url


_POOL: SimpleConnectionPool | None = None
_POOL_LOCK = threading.Lock()
_logger = logging.getLogger("lifeos.db")
_query_logger = logging.getLogger("lifeos.db.query")
_DB_STATS: contextvars.ContextVar[dict | None] = contextvars.ContextVar("lifeos_db_stats", default=None)
_SLOW_MS = float(os.getenv("LIFEOS_QUERY_SLOW_MS", "200"))
_LOG_ALL = os.getenv("LIFEOS_QUERY_LOG", "").strip() == "1"


def _redact_params(params: Iterable[Any] | None) -> list[Any] | None:
    if params is None:
        return None
    redacted: list[Any] = []
    for val in params:
        if isinstance(val, (bytes, bytearray)):
            redacted.append(f"<bytes:{len(val)}>")
        elif isinstance(val, str) and len(val) > 80:
            redacted.append(f"{val[:40]}…{val[-10:]}")
        else:
            redacted.append(val)
    return redacted


def _log_query(
    *,
    query_name: str | None,
    params: Iterable[Any] | None,
    elapsed_ms: float,
    rowcount: int | None,
) -> None:
    if not query_name and not _LOG_ALL and elapsed_ms < _SLOW_MS:
        return
    message = {
        "query": query_name or "unnamed",
        "ms": round(elapsed_ms, 2),
        "rowcount": rowcount,
        "params": _redact_params(params),
    }
    if elapsed_ms >= _SLOW_MS:
        _query_logger.warning("db_slow_query=%s", message)
    else:
        _query_logger.info("db_query=%s", message)


def init_pool(minconn: int | None = None, maxconn: int | None = None) -> None:
    global _POOL
    with _POOL_LOCK:
        if _POOL is None:
            if minconn is None:
                minconn = int(os.getenv("LIFEOS_DB_POOL_MIN", "1"))
            if maxconn is None:
                maxconn = int(os.getenv("LIFEOS_DB_POOL_MAX", "10"))
            _POOL = SimpleConnectionPool(minconn, maxconn, dsn=get_db_url())
            _logger.info("db_pool_ready min=%s max=%s", minconn, maxconn)


def reset_db_stats() -> None:
    _DB_STATS.set({"queries": 0, "total_ms": 0.0})


def get_db_stats() -> dict:
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        return {"queries": 0, "total_ms": 0.0}
    return stats


def _add_db_ms(delta: float) -> None:
    stats = _DB_STATS.get()
    if not isinstance(stats, dict):
        stats = {"queries": 0, "total_ms": 0.0}
        _DB_STATS.set(stats)
    # mutated in place so the request middleware sees handler queries
    stats["total_ms"] += delta
    stats["queries"] += 1


def _get_pool() -> SimpleConnectionPool:
    if _POOL is None:
        init_pool()
    return _POOL


@contextmanager
def get_conn():
    pool = _get_pool()
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        pool.putconn(conn)


def _run(conn, statement, params, query_name, fetch: str | None):
    start = time.perf_counter()
    cursor_factory = psycopg2.extras.RealDictCursor if fetch else None
    with conn.cursor(cursor_factory=cursor_factory) as cur:
        cur.execute(statement, params or [])
        if fetch == "one":
            row = cur.fetchone()
            result: Any = dict(row) if row else None
        elif fetch == "all":
            result = [dict(r) for r in cur.fetchall()]
        else:
            result = cur.rowcount
        rowcount = cur.rowcount
    elapsed_ms = (time.perf_counter() - start) * 1000
    _add_db_ms(elapsed_ms)
    _log_query(query_name=query_name, params=params, elapsed_ms=elapsed_ms, rowcount=rowcount)
    return result


def fetch_one(conn, statement: str | pgsql.Composable, params: Iterable[Any] | None = None, query_name: str | None = None) -> dict | None:
    return _run(conn, statement, params, query_name, "one")


def fetch_all(conn, statement: str | pgsql.Composable, params: Iterable[Any] | None = None, query_name: str | None = None) -> list[dict]:
    return _run(conn, statement, params, query_name, "all")


def execute(conn, statement: str | pgsql.Composable, params: Iterable[Any] | None = None, query_name: str | None = None) -> int:
    return _run(conn, statement, params, query_name, None)
