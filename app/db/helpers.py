# app/db/helpers.py
"""
Database helper functions for common patterns.
Reduces boilerplate in the repository layer.
"""

import asyncio
import functools
from typing import Any

import psycopg

from app.db.pool import get_db_connection
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Dict with row data or None if no results
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()
        async with await get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_one") from e


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """Execute query and return all rows as list of dicts."""
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        async with await get_db_connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="fetch_all") from e


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """Execute query and return the first column of the first row."""
    row = await fetch_one(query, params, connection=connection)
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute query and return number of affected rows.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Number of affected rows
    """
    try:
        if connection:
            cursor = await connection.execute(query, params)
            return cursor.rowcount
        async with await get_db_connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount

    except psycopg.Error as e:
        logger.error("Database execute error", query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation="execute") from e


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Decorator to retry database operations on temporary failures.

    Only connection-level failures (psycopg.OperationalError) are retried;
    DatabaseError raised by the helpers above is passed through untouched.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay between retries (exponential backoff)
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except DatabaseError as e:
                    cause = e.__cause__
                    if not isinstance(cause, psycopg.OperationalError) or attempt >= max_retries:
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Database operation failed, retrying",
                        operation=func.__name__,
                        attempt=attempt + 1,
                        max_retries=max_retries,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

                except psycopg.OperationalError as e:
                    if attempt >= max_retries:
                        logger.error(
                            "Database operation failed after all retries",
                            operation=func.__name__,
                            attempts=max_retries + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Operation failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e
                    await asyncio.sleep(base_delay * (2**attempt))

                except (psycopg.IntegrityError, psycopg.DataError) as e:
                    logger.error("Database operation failed with permanent error", error=str(e))
                    raise DatabaseError(
                        f"Permanent database error: {e}", operation=func.__name__, recoverable=False
                    ) from e

        return wrapper

    return decorator
