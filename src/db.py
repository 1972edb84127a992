"""Database connection for tonegauge usage records.

Supports two backends:
  - PostgreSQL (production): when DATABASE_URL is set
  - DuckDB (local development): fallback when no DATABASE_URL

The usage store doesn't care which backend it's talking to: the SQL is
standard enough to work on both. Callers write %s placeholders; they are
converted to ? for DuckDB here.
"""

import atexit
import logging
import os
import time
from pathlib import Path

logger = logging.getLogger(__name__)

# ── Backend detection ─────────────────────────────────────────────
DATABASE_URL = os.environ.get("DATABASE_URL")

# DuckDB fallback path (local development)
_DUCKDB_PATH = os.environ.get(
    "TONEGAUGE_DB",
    str(Path(__file__).parent.parent / "data" / "tonegauge.duckdb"),
)

# Which backend are we using?
BACKEND = "postgres" if DATABASE_URL else "duckdb"

STATEMENT_TIMEOUT = os.environ.get("DB_STATEMENT_TIMEOUT", "10s")


# ── PostgreSQL Connection Pool ────────────────────────────────────

# Lazy singleton: created on first get_connection() call
_pool = None


def _get_pool():
    """Get or create the PostgreSQL connection pool (lazy singleton)."""
    global _pool
    if _pool is None:
        import psycopg2.pool
        _maxconn = int(os.environ.get("DB_POOL_MAX", "20"))
        _pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=2,
            maxconn=_maxconn,
            dsn=DATABASE_URL,
            connect_timeout=10,
        )
        logger.info("PostgreSQL connection pool created (minconn=2, maxconn=%d)", _maxconn)
    return _pool


def get_pool_stats() -> dict:
    """Return connection pool statistics for the health endpoint."""
    if _pool is None:
        return {"status": "no_pool", "backend": BACKEND}
    return {
        "backend": BACKEND,
        "minconn": _pool.minconn,
        "maxconn": _pool.maxconn,
        "closed": _pool.closed,
    }


def _close_pool():
    """Close the connection pool on shutdown."""
    global _pool
    if _pool is not None:
        try:
            _pool.closeall()
            logger.info("PostgreSQL connection pool closed")
        except Exception as e:
            logger.warning("Error closing pool: %s", e)
        _pool = None


atexit.register(_close_pool)


class _PooledConnection:
    """Wrapper around a psycopg2 connection that returns it to the pool on close.

    Instead of destroying the connection, .close() rolls back any uncommitted
    transaction and returns the connection to the pool via putconn().
    """

    def __init__(self, conn, pool):
        self._conn = conn
        self._pool = pool

    def close(self):
        """Roll back uncommitted work and return connection to pool."""
        if self._conn is not None:
            try:
                self._conn.rollback()
            except Exception:
                logger.debug("rollback before putconn failed", exc_info=True)
            try:
                self._pool.putconn(self._conn)
            except Exception:
                logger.debug("putconn failed", exc_info=True)
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __getattr__(self, name):
        return getattr(self._conn, name)

    def __setattr__(self, name, value):
        if name in ("_conn", "_pool"):
            super().__setattr__(name, value)
        else:
            setattr(self._conn, name, value)


def get_connection():
    """Get a database connection (Postgres or DuckDB).

    Returns a connection object. Caller is responsible for closing it.

    For Postgres: returns a _PooledConnection from the connection pool with
    a statement_timeout applied, so a stuck usage query can't pin a request.
    """
    if BACKEND == "postgres":
        try:
            pool = _get_pool()
            raw_conn = pool.getconn()
            with raw_conn.cursor() as cur:
                cur.execute(f"SET statement_timeout = '{STATEMENT_TIMEOUT}'")
            raw_conn.commit()
            return _PooledConnection(raw_conn, pool)
        except Exception as e:
            logger.error("Postgres pool connection failed: %s", e)
            raise
    import duckdb
    path = _DUCKDB_PATH
    if path != ":memory:":
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    return duckdb.connect(path)


SLOW_QUERY_THRESHOLD_SECS = 2.0


def _log_slow_query(sql: str, duration: float):
    logger.warning("Slow query detected (%.1fs): %s", duration, sql[:200])


def query(sql: str, params=None) -> list:
    """Execute a SELECT and return all rows as a list of tuples.

    Callers should use %s style: this function auto-converts for DuckDB.
    """
    conn = get_connection()
    try:
        if BACKEND == "duckdb" and params:
            sql = sql.replace("%s", "?")
        t0 = time.monotonic()
        if BACKEND == "postgres":
            with conn.cursor() as cur:
                cur.execute(sql, params)
                result = cur.fetchall()
        else:
            if params:
                result = conn.execute(sql, params).fetchall()
            else:
                result = conn.execute(sql).fetchall()
        elapsed = time.monotonic() - t0
        if elapsed >= SLOW_QUERY_THRESHOLD_SECS:
            _log_slow_query(sql, elapsed)
        return result
    finally:
        conn.close()


def query_one(sql: str, params=None):
    """Execute a SELECT and return the first row, or None."""
    rows = query(sql, params)
    return rows[0] if rows else None


# ── Write helpers ──────────────────────────────────────────────────

def execute_write(sql: str, params=None, returning: bool = False):
    """Execute an INSERT/UPDATE/DELETE, optionally returning the first row.

    Uses RETURNING for both Postgres and DuckDB (DuckDB >=0.9 supports it).
    Callers should use %s placeholders: auto-converted for DuckDB.
    """
    conn = get_connection()
    try:
        if BACKEND == "duckdb" and params:
            sql = sql.replace("%s", "?")
        if BACKEND == "postgres":
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone() if returning else None
                conn.commit()
                return row
        if params:
            result = conn.execute(sql, params)
        else:
            result = conn.execute(sql)
        return result.fetchone() if returning else None
    finally:
        conn.close()


# ── Usage schema ───────────────────────────────────────────────────

_USAGE_DDL = (
    """
    CREATE TABLE IF NOT EXISTS usage_records (
        user_id TEXT PRIMARY KEY,
        used INTEGER NOT NULL DEFAULT 0,
        period_start TIMESTAMP NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS anonymous_usage (
        device_id TEXT PRIMARY KEY,
        use_count INTEGER NOT NULL DEFAULT 0,
        last_used_at TIMESTAMP
    )
    """,
)


def init_usage_schema(conn=None) -> None:
    """Create the usage tables if they don't exist. Idempotent.

    If no conn provided, creates one internally.
    """
    close = False
    if conn is None:
        conn = get_connection()
        close = True
    try:
        if BACKEND == "postgres":
            with conn.cursor() as cur:
                for ddl in _USAGE_DDL:
                    cur.execute(ddl)
            conn.commit()
        else:
            for ddl in _USAGE_DDL:
                conn.execute(ddl)
    finally:
        if close:
            conn.close()
