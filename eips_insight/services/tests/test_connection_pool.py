"""Unit tests for the connection pool's failure handling."""
import threading
from unittest.mock import MagicMock, patch

import psycopg2
import pytest
from psycopg2 import pool

from eips_insight.exceptions import UpstreamUnavailableError
from eips_insight.services.connection_pool import DatabaseConnectionPool

MODULE = "eips_insight.services.connection_pool"


class FakeThreadedPool:
    """Mimics ThreadedConnectionPool: raises PoolError once every connection is out."""

    def __init__(self, minconn, maxconn, **kwargs):
        self.maxconn = maxconn
        self.used = []
        self.closed = False

    def getconn(self):
        if len(self.used) >= self.maxconn:
            raise pool.PoolError("connection pool exhausted")
        conn = MagicMock(closed=False)
        self.used.append(conn)
        return conn

    def putconn(self, conn, close=False):
        self.used.remove(conn)
        if close:
            conn.closed = True

    def closeall(self):
        self.closed = True
        for conn in self.used:
            conn.closed = True


@pytest.fixture
def db_config():
    config = MagicMock()
    config.get_connection_params.return_value = {"host": "localhost", "dbname": "eips"}
    with patch(f"{MODULE}.get_database_config", return_value=config):
        yield config


class TestDatabaseConnectionPool:
    """Pool creation, backoff and connection borrowing."""

    def test_get_connection_creates_pool_once(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool") as threaded:
            conn = MagicMock()
            threaded.return_value.getconn.return_value = conn
            db_pool = DatabaseConnectionPool(min_connections=1, max_connections=3)

            assert db_pool.get_connection() is conn
            assert db_pool.get_connection() is conn
            threaded.assert_called_once_with(1, 3, host="localhost", dbname="eips")

    def test_creation_failure_is_upstream_unavailable(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool", side_effect=psycopg2.OperationalError("refused")):
            db_pool = DatabaseConnectionPool()
            with pytest.raises(UpstreamUnavailableError):
                db_pool.get_connection()
            assert db_pool.get_stats()["failure_count"] == 1

    def test_backoff_after_repeated_failures(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool", side_effect=psycopg2.OperationalError("refused")) as threaded:
            db_pool = DatabaseConnectionPool()
            for _ in range(3):
                with pytest.raises(UpstreamUnavailableError):
                    db_pool.get_connection()

            with pytest.raises(UpstreamUnavailableError) as exc:
                db_pool.get_connection()
            assert "backoff" in exc.value.message
            assert exc.value.retry_after is not None
            assert threaded.call_count == 3
            assert db_pool.get_stats()["in_backoff"]

    def test_connection_context_returns_connection(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool") as threaded:
            conn = MagicMock()
            threaded.return_value.getconn.return_value = conn
            db_pool = DatabaseConnectionPool()

            with db_pool.connection() as borrowed:
                assert borrowed is conn
            threaded.return_value.putconn.assert_called_once_with(conn, close=False)

    def test_broken_connection_is_discarded(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool") as threaded:
            conn = MagicMock()
            threaded.return_value.getconn.return_value = conn
            db_pool = DatabaseConnectionPool()

            with pytest.raises(psycopg2.OperationalError):
                with db_pool.connection():
                    raise psycopg2.OperationalError("server closed the connection")
            threaded.return_value.putconn.assert_called_once_with(conn, close=True)

    def test_close(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool") as threaded:
            db_pool = DatabaseConnectionPool()
            db_pool.get_connection()
            db_pool.close()
            threaded.return_value.closeall.assert_called_once()
            assert not db_pool.get_stats()["pool_exists"]


class TestPoolExhaustion:
    """A full pool makes callers wait; it never counts as a database failure."""

    def test_pool_error_does_not_close_borrowed_connections(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool", FakeThreadedPool):
            db_pool = DatabaseConnectionPool(min_connections=1, max_connections=2)
            held = [db_pool.get_connection(), db_pool.get_connection()]
            # Another holder drains the underlying pool behind the slot counter
            db_pool._slots.release()
            db_pool._slots.release()

            for _ in range(3):
                with pytest.raises(UpstreamUnavailableError) as exc:
                    db_pool.get_connection()
                assert "exhausted" in exc.value.message
                assert exc.value.retryable

            stats = db_pool.get_stats()
            assert stats["failure_count"] == 0
            assert not stats["in_backoff"]
            assert stats["pool_exists"]
            assert [conn.closed for conn in held] == [False, False]

    def test_caller_waits_for_a_free_slot(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool", FakeThreadedPool):
            db_pool = DatabaseConnectionPool(min_connections=1, max_connections=1, wait_seconds=5)
            held = db_pool.get_connection()
            borrowed = []
            waiter = threading.Thread(target=lambda: borrowed.append(db_pool.get_connection()))
            waiter.start()

            waiter.join(0.2)
            assert waiter.is_alive()
            assert borrowed == []

            db_pool.return_connection(held)
            waiter.join(5)
            assert not waiter.is_alive()
            assert len(borrowed) == 1
            assert not held.closed
            assert db_pool.get_stats()["failure_count"] == 0

    def test_wait_timeout_is_retryable(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool", FakeThreadedPool):
            db_pool = DatabaseConnectionPool(min_connections=1, max_connections=1, wait_seconds=0.05)
            held = db_pool.get_connection()

            with pytest.raises(UpstreamUnavailableError) as exc:
                db_pool.get_connection()
            assert exc.value.retry_after == 1.0
            assert not held.closed

            db_pool.return_connection(held)
            assert db_pool.get_connection() is not None

    def test_failed_borrow_frees_its_slot(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool", side_effect=psycopg2.OperationalError("refused")):
            db_pool = DatabaseConnectionPool(min_connections=1, max_connections=1, wait_seconds=0.05)
            for _ in range(2):
                with pytest.raises(UpstreamUnavailableError) as exc:
                    db_pool.get_connection()
                assert "create" in exc.value.message

    def test_failed_health_check_discards_connection(self, db_config):
        with patch(f"{MODULE}.pool.ThreadedConnectionPool") as threaded:
            conn = MagicMock()
            conn.cursor.return_value.__enter__.return_value.execute.side_effect = psycopg2.OperationalError("gone")
            threaded.return_value.getconn.return_value = conn
            db_pool = DatabaseConnectionPool()

            with pytest.raises(UpstreamUnavailableError):
                db_pool.get_connection()
            threaded.return_value.putconn.assert_called_once_with(conn, close=True)
            assert db_pool.get_stats()["failure_count"] == 1
