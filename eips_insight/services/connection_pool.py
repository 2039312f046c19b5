"""
Database connection pooling for the event-log database.

This module provides a connection pool that reuses database connections and
handles connection failures with a backoff window. While the pool is in
backoff, callers get an ``UpstreamUnavailableError`` immediately instead of
hammering the database.
"""

import time
import threading
from contextlib import contextmanager
from typing import Optional, Dict, Any

import psycopg2
from psycopg2 import pool

from eips_insight.config.common_settings import DB_POOL_MAX, DB_POOL_MIN, DB_POOL_WAIT_SECONDS
from eips_insight.config.database_config import get_database_config
from eips_insight.exceptions import UpstreamUnavailableError
from eips_insight.utils.logger import logger


class DatabaseConnectionPool:
    """Thread-safe database connection pool with failure handling."""

    def __init__(self, min_connections: int = DB_POOL_MIN, max_connections: int = DB_POOL_MAX,
                 wait_seconds: float = DB_POOL_WAIT_SECONDS):
        self._pool: Optional[pool.ThreadedConnectionPool] = None
        self._lock = threading.Lock()
        self._min_connections = min_connections
        self._max_connections = max_connections
        # One slot per pooled connection, shared by every thread in the process
        self._slots = threading.BoundedSemaphore(max_connections)
        self._wait_seconds = wait_seconds
        self._last_failure_time = 0.0
        self._failure_count = 0
        self._max_failure_count = 3
        self._backoff_seconds = 30

    def _create_pool(self) -> pool.ThreadedConnectionPool:
        """Create a new connection pool."""
        config = get_database_config()
        connection_params = config.get_connection_params()

        logger.info("DatabaseConnectionPool: Creating connection pool (min=%d, max=%d)",
                    self._min_connections, self._max_connections)

        return pool.ThreadedConnectionPool(
            self._min_connections,
            self._max_connections,
            **connection_params
        )

    def _should_retry(self) -> bool:
        """Check if we should retry after a failure."""
        if self._failure_count < self._max_failure_count:
            return True

        time_since_failure = time.time() - self._last_failure_time
        return time_since_failure > self._backoff_seconds

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.time()

    def get_connection(self):
        """Get a connection from the pool.

        Callers beyond ``max_connections`` wait up to ``wait_seconds`` for a
        slot. Every successful call must be paired with ``return_connection``.
        """
        if not self._slots.acquire(timeout=self._wait_seconds):
            raise UpstreamUnavailableError(
                f"Timed out after {self._wait_seconds}s waiting for a database connection.",
                retry_after=1.0,
            )
        try:
            return self._borrow()
        except Exception:
            self._slots.release()
            raise

    def _borrow(self):
        with self._lock:
            # Check if we're in backoff period
            if not self._should_retry():
                remaining = max(0.0, self._backoff_seconds - (time.time() - self._last_failure_time))
                raise UpstreamUnavailableError(
                    f"Database connection pool in backoff mode after {self._failure_count} failures.",
                    retry_after=round(remaining, 1),
                )

            # Create pool if it doesn't exist
            if self._pool is None:
                try:
                    self._pool = self._create_pool()
                    self._failure_count = 0  # Reset failure count on successful pool creation
                except (psycopg2.Error, RuntimeError) as e:
                    self._record_failure()
                    logger.error("DatabaseConnectionPool: Failed to create pool: %s", e)
                    raise UpstreamUnavailableError(f"Failed to create database connection pool: {e}") from e

            # An exhausted pool says nothing about database health
            try:
                conn = self._pool.getconn()
            except pool.PoolError as e:
                logger.warning("DatabaseConnectionPool: Pool exhausted: %s", e)
                raise UpstreamUnavailableError(f"Database connection pool exhausted: {e}", retry_after=1.0) from e

            # Test the connection
            try:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
                return conn

            except psycopg2.Error as e:
                self._record_failure()
                logger.error("DatabaseConnectionPool: Failed to get connection: %s", e)
                self._discard(conn)

                # Close and recreate pool on persistent failures
                if self._failure_count >= 2:
                    logger.warning("DatabaseConnectionPool: Recreating pool due to persistent failures")
                    self._close_pool()

                raise UpstreamUnavailableError(f"Failed to get database connection: {e}") from e

    def _discard(self, conn) -> None:
        try:
            self._pool.putconn(conn, close=True)
        except psycopg2.Error as e:
            logger.error("DatabaseConnectionPool: Error discarding connection: %s", e)

    def return_connection(self, conn, close_connection: bool = False):
        """Return a connection to the pool and free its slot."""
        try:
            if self._pool is None:
                return
            self._pool.putconn(conn, close=close_connection)
        except psycopg2.Error as e:
            logger.error("DatabaseConnectionPool: Error returning connection: %s", e)
        finally:
            self._slots.release()

    @contextmanager
    def connection(self):
        """Borrow a connection for the duration of a ``with`` block."""
        conn = self.get_connection()
        broken = False
        try:
            yield conn
        except psycopg2.OperationalError:
            broken = True
            raise
        finally:
            self.return_connection(conn, close_connection=broken)

    def _close_pool(self):
        """Close the connection pool."""
        if self._pool is not None:
            try:
                self._pool.closeall()
                logger.info("DatabaseConnectionPool: Closed connection pool")
            except psycopg2.Error as e:
                logger.error("DatabaseConnectionPool: Error closing pool: %s", e)
            finally:
                self._pool = None

    def close(self):
        """Close the connection pool."""
        with self._lock:
            self._close_pool()

    def get_stats(self) -> Dict[str, Any]:
        """Get connection pool statistics."""
        with self._lock:
            stats = {
                "pool_exists": self._pool is not None,
                "failure_count": self._failure_count,
                "last_failure_time": self._last_failure_time,
                "in_backoff": not self._should_retry(),
            }
            if self._pool is not None:
                stats["min_connections"] = self._min_connections
                stats["max_connections"] = self._max_connections
            return stats


# Global connection pool instance
_connection_pool: Optional[DatabaseConnectionPool] = None
_pool_lock = threading.Lock()


def get_connection_pool() -> DatabaseConnectionPool:
    """Get the global connection pool instance."""
    global _connection_pool

    with _pool_lock:
        if _connection_pool is None:
            _connection_pool = DatabaseConnectionPool()
        return _connection_pool


def close_connection_pool():
    """Close the global connection pool."""
    global _connection_pool

    with _pool_lock:
        if _connection_pool is not None:
            _connection_pool.close()
            _connection_pool = None
