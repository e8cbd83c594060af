"""
PostgreSQL connection pool.

Provides scoped connections for batch transactions and short helpers for
one-statement queries that commit immediately.
"""

from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence

import psycopg2
from psycopg2.extras import RealDictCursor
from psycopg2.pool import ThreadedConnectionPool

from marketsync.config import Config
from marketsync.utils.logging_utils import log_error, log_progress


class Database:
    """
    Lazily created connection pool.

    Args:
        connection_details: psycopg2 connect kwargs; read from Config when omitted
        min_connections: Pool floor
        max_connections: Pool ceiling
    """

    def __init__(
        self,
        connection_details: Optional[Dict[str, Any]] = None,
        min_connections: Optional[int] = None,
        max_connections: Optional[int] = None,
    ):
        self._connection_details = connection_details
        self._min_connections = min_connections or Config.DB_POOL_MIN
        self._max_connections = max_connections or Config.DB_POOL_MAX
        self._pool: Optional[ThreadedConnectionPool] = None

    def _get_pool(self) -> ThreadedConnectionPool:
        if self._pool is None:
            details = self._connection_details or Config.get_db_connection_details()
            self._pool = ThreadedConnectionPool(
                self._min_connections, self._max_connections, **details
            )
        return self._pool

    @contextmanager
    def connection(self) -> Iterator[Any]:
        """
        Borrow a connection for the duration of a transaction scope.

        The caller commits; anything left uncommitted when an exception
        escapes is rolled back before the connection returns to the pool.
        """
        pool = self._get_pool()
        conn = pool.getconn()
        try:
            yield conn
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            pool.putconn(conn)

    def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> List[Dict[str, Any]]:
        """
        Run one statement in its own transaction and return rows as dicts.
        """
        with self.connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(sql, params)
                rows = cursor.fetchall() if cursor.description else []
            conn.commit()
        return [dict(row) for row in rows]

    def execute(self, sql: str, params: Optional[Sequence[Any]] = None) -> int:
        """
        Run one statement in its own transaction.

        Returns:
            int: Affected row count
        """
        with self.connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(sql, params)
                rowcount = cursor.rowcount
            conn.commit()
        return rowcount

    def test_connection(self) -> bool:
        """Check that the database answers a trivial query."""
        try:
            self.query("SELECT 1 AS ok")
            return True
        except (psycopg2.Error, ValueError) as e:
            log_error("Database", f"Connection check failed: {e}")
            return False

    def close(self) -> None:
        if self._pool is not None:
            self._pool.closeall()
            self._pool = None
            log_progress("Database", "Connection pool closed")
