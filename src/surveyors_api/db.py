import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg2
import psycopg2.extras
from psycopg2.pool import ThreadedConnectionPool

from src.surveyors_api.config import Settings

logger = logging.getLogger(__name__)


# PUBLIC_INTERFACE
def init_db_pool(settings: Settings) -> ThreadedConnectionPool:
    """Open the PostgreSQL connection pool described by settings."""
    logger.info("Opening database pool (min=%d, max=%d)", settings.db_pool_min, settings.db_pool_max)
    return ThreadedConnectionPool(
        minconn=settings.db_pool_min,
        maxconn=settings.db_pool_max,
        dsn=settings.database_dsn(),
    )


class Database:
    """
    Process-scoped handle on the connection pool.

    Created once at startup and passed to every component that touches the
    store. Every scope it hands out releases its connection exactly once,
    whatever happens inside the block.
    """

    def __init__(self, pool: Any) -> None:
        self._pool = pool

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(init_db_pool(settings))

    def close(self) -> None:
        logger.info("Closing database pool")
        self._pool.closeall()

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """Borrow one pooled connection for the duration of the block."""
        conn = self._pool.getconn()
        try:
            yield conn
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Run the block as one transaction.

        Commits when the block finishes, rolls back when it raises (the error
        is re-raised untouched), and releases the connection in both cases.
        A connection whose rollback fails is closed rather than reused.
        """
        conn = self._pool.getconn()
        broken = False
        try:
            yield conn
        except BaseException:
            try:
                conn.rollback()
            except psycopg2.Error:
                broken = True
                logger.exception("Rollback failed; closing the connection instead of returning it to the pool")
            raise
        else:
            conn.commit()
        finally:
            self._pool.putconn(conn, close=broken)


def _dict_cursor(conn):
    return conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)


# PUBLIC_INTERFACE
def fetch_one(conn: Any, query: str, params: Optional[Sequence[Any]] = None) -> Optional[Dict[str, Any]]:
    """Fetch a single row as a dict, or None."""
    with _dict_cursor(conn) as cur:
        cur.execute(query, params or [])
        row = cur.fetchone()
        return dict(row) if row else None


# PUBLIC_INTERFACE
def fetch_all(conn: Any, query: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
    """Fetch all rows as dicts."""
    with _dict_cursor(conn) as cur:
        cur.execute(query, params or [])
        rows = cur.fetchall()
        return [dict(r) for r in rows]


# PUBLIC_INTERFACE
def execute(conn: Any, query: str, params: Optional[Sequence[Any]] = None) -> int:
    """Execute a statement (INSERT/UPDATE/DELETE). Returns affected rowcount."""
    with conn.cursor() as cur:
        cur.execute(query, params or [])
        return cur.rowcount


# PUBLIC_INTERFACE
def execute_returning_one(conn: Any, query: str, params: Optional[Sequence[Any]] = None) -> Dict[str, Any]:
    """Execute a statement with RETURNING and return the first row as dict."""
    with _dict_cursor(conn) as cur:
        cur.execute(query, params or [])
        row = cur.fetchone()
        if not row:
            raise RuntimeError("Expected one row returned, got none.")
        return dict(row)
