"""
PostgreSQL connection pool management using psycopg3.

The pool hands out dict-row connections. Single statements go through
execute_query/execute_command; multi-statement work that must be atomic
(result replacement, lifecycle transitions) uses transaction().
"""
import os
import time
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from incentive.observability.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnectionPool:
    """
    PostgreSQL connection pool manager using psycopg3.

    Settings default to the DB_HOST, DB_PORT, DB_NAME, DB_USER and
    DB_PASSWORD environment variables; the password has no default.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 1,
        max_size: int = 10,
        timeout: float = 30.0,
    ) -> None:
        """
        Initialize database connection pool.

        Args:
            host: Database host (defaults to env var DB_HOST)
            port: Database port (defaults to env var DB_PORT)
            database: Database name (defaults to env var DB_NAME)
            user: Database user (defaults to env var DB_USER)
            password: Database password (defaults to env var DB_PASSWORD)
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Connection timeout in seconds

        Raises:
            ValueError: If no password is configured
        """
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "incentives")
        self.user = user or os.getenv("DB_USER", "incentive")
        self.password = password or os.getenv("DB_PASSWORD")

        if not self.password:
            raise ValueError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or pass to constructor."
            )

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout

        self.conninfo = (
            f"host={self.host} "
            f"port={self.port} "
            f"dbname={self.database} "
            f"user={self.user} "
            f"password={self.password} "
            f"connect_timeout={int(self.timeout)}"
        )

        self._pool: ConnectionPool | None = None

    @property
    def is_open(self) -> bool:
        return self._pool is not None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the connection pool, retrying while the database starts up.

        Args:
            max_retries: Maximum number of connection attempts
            retry_delay: Delay between retries in seconds

        Raises:
            OperationalError: If connection fails after all retries
        """
        if self._pool is not None:
            return

        for attempt in range(1, max_retries + 1):
            pool = ConnectionPool(
                conninfo=self.conninfo,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout,
                kwargs={"row_factory": dict_row},
                open=False,
            )
            try:
                pool.open(wait=True, timeout=self.timeout)
            except OperationalError as e:
                pool.close()
                if attempt == max_retries:
                    raise OperationalError(
                        f"Failed to connect to database after {max_retries} attempts: {e}"
                    ) from e
                logger.warning(f"Database connection attempt {attempt} failed, retrying: {e}")
                time.sleep(retry_delay)
                continue

            self._pool = pool
            logger.info(
                "Database pool opened",
                extra={"host": self.host, "database": self.database, "attempt": attempt},
            )
            return

    def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self) -> Iterator[psycopg.Connection]:
        """
        Get a connection from the pool.

        Raises:
            RuntimeError: If pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self) -> Iterator[psycopg.Cursor]:
        """Get a cursor from a pooled connection."""
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                yield cur

    @contextmanager
    def transaction(self) -> Iterator[psycopg.Connection]:
        """
        Run a block in one transaction.

        Commits when the block exits normally and rolls back when it raises.
        """
        with self.get_connection() as conn:
            with conn.transaction():
                yield conn

    def execute_query(self, query: str, params: tuple | dict | None = None) -> list[dict[str, Any]]:
        """
        Execute a SELECT query and return results.

        Args:
            query: SQL SELECT query
            params: Query parameters (optional)

        Returns:
            List of dictionaries (one per row)
        """
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command: str, params: tuple | dict | None = None) -> int:
        """
        Execute an INSERT/UPDATE/DELETE command.

        Returns:
            Number of rows affected
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(command, params)
                rowcount = cur.rowcount
            conn.commit()
            return rowcount

    def execute_batch(self, command: str, params_list: list[tuple] | list[dict]) -> None:
        """Execute a command once per parameter set, in one transaction."""
        if not params_list:
            return
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.executemany(command, params_list)
            conn.commit()

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


_global_pool: DatabaseConnectionPool | None = None


def get_pool() -> DatabaseConnectionPool:
    """
    Get the global database connection pool.

    Raises:
        RuntimeError: If pool has not been initialized
    """
    if _global_pool is None:
        raise RuntimeError("Database pool not initialized. Call initialize_pool() first.")
    return _global_pool


def initialize_pool(**kwargs) -> DatabaseConnectionPool:
    """
    Initialize (or replace) the global database connection pool.

    Args:
        **kwargs: Arguments passed to DatabaseConnectionPool constructor
    """
    global _global_pool
    if _global_pool is not None:
        _global_pool.close()

    _global_pool = DatabaseConnectionPool(**kwargs)
    _global_pool.open()
    return _global_pool


def close_pool() -> None:
    """Close the global database connection pool."""
    global _global_pool
    if _global_pool is not None:
        _global_pool.close()
        _global_pool = None
