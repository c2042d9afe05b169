"""
Argument and I/O helpers shared by the command-line interfaces.
"""

import argparse
import json
import sys
from contextlib import contextmanager
from typing import Any, Iterator

from incentive.observability.logger import get_logger
from incentive.utils.validation import validate_file_path
from incentive.warehouse.connection import DatabaseConnectionPool
from incentive.warehouse.postgres_store import PostgresDataStore

logger = get_logger(__name__)


def add_db_arguments(parser: argparse.ArgumentParser) -> None:
    """Database connection options; unset options fall back to the DB_* environment variables."""
    parser.add_argument("--db-host", default=None, help="Database host (default: $DB_HOST or localhost)")
    parser.add_argument("--db-port", type=int, default=None, help="Database port (default: $DB_PORT or 5432)")
    parser.add_argument("--db-name", default=None, help="Database name (default: $DB_NAME)")
    parser.add_argument("--db-user", default=None, help="Database user (default: $DB_USER)")
    parser.add_argument("--db-password", default=None, help="Database password (default: $DB_PASSWORD)")


def add_request_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--request",
        required=True,
        help="Path to the request JSON file ('-' reads stdin)",
    )


def read_request(path: str) -> dict[str, Any]:
    """Load a request JSON object from a file or stdin."""
    if path == "-":
        payload = json.load(sys.stdin)
    else:
        with open(validate_file_path(path, "request")) as f:
            payload = json.load(f)
    if not isinstance(payload, dict):
        raise ValueError("Request JSON must be an object")
    return payload


def print_response(response: dict[str, Any], pretty: bool = True) -> None:
    print(json.dumps(response, indent=2 if pretty else None, default=str))


@contextmanager
def open_store(args) -> Iterator[PostgresDataStore]:
    """Open a connection pool from the CLI arguments and yield a store over it."""
    pool = DatabaseConnectionPool(
        host=args.db_host,
        port=args.db_port,
        database=args.db_name,
        user=args.db_user,
        password=args.db_password,
    )
    pool.open()
    try:
        yield PostgresDataStore(pool)
    finally:
        pool.close()


def exit_code(response: dict[str, Any]) -> int:
    return 0 if response.get("success", True) else 1
