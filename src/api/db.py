"""
Postgres Access for the API
===========================

One lazily created psycopg2 ThreadedConnectionPool per process, shared by
the ingestion and sentiment routes and by the sentiment CLI.

Route handlers borrow a connection with `get_connection()`; when the pool
cannot be created the borrow raises ConnectionError, which the routes turn
into 503.
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Dict, Optional

import psycopg2
from psycopg2 import pool as pg_pool

from src.config import get_settings

logger = logging.getLogger(__name__)

_pool: Optional[pg_pool.ThreadedConnectionPool] = None


def get_pool() -> Optional[pg_pool.ThreadedConnectionPool]:
    """The shared pool, created on first call; None while the database is unreachable."""
    global _pool
    if _pool is None:
        config = get_settings().database
        try:
            _pool = pg_pool.ThreadedConnectionPool(
                config.pool_min_size,
                config.pool_max_size,
                **config.connection_dict,
            )
        except psycopg2.Error as e:
            logger.warning(f"Postgres {config.host}:{config.port}/{config.name} unavailable: {e}")
            return None
        logger.info(
            f"Postgres pool ready ({config.pool_min_size}-{config.pool_max_size} conns) "
            f"on {config.host}:{config.port}/{config.name}"
        )
    return _pool


def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    _pool.closeall()
    _pool = None
    logger.info("Postgres pool closed")


@contextmanager
def get_connection():
    """
    Borrow a pooled connection for the duration of the block.

    Raises:
        ConnectionError: no pool (database unreachable)
    """
    pool = get_pool()
    if pool is None:
        raise ConnectionError("Database pool not available")
    conn = pool.getconn()
    try:
        yield conn
    finally:
        pool.putconn(conn)


def check_health() -> Dict[str, Any]:
    """
    Check the database for /api/health.

    Never raises. "connected" results carry the server version, the
    round-trip latency and how many sentiment threshold rows are stored
    (0 means every criterion classifies as undetermined).
    """
    started = time.monotonic()
    try:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SHOW server_version")
                version = cur.fetchone()[0]
                cur.execute("SELECT COUNT(*) FROM rating_sentiment_thresholds")
                threshold_rows = cur.fetchone()[0]
            conn.rollback()
    except (ConnectionError, psycopg2.Error) as e:
        logger.warning(f"Database health check failed: {e}")
        return {"status": "disconnected", "error": str(e)}

    return {
        "status": "connected",
        "version": f"PostgreSQL {version}",
        "latency_ms": round((time.monotonic() - started) * 1000, 1),
        "threshold_rows": threshold_rows,
    }
