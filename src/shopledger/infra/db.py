"""Database access layer using psycopg2.

Provides:
- get_conn(): Get a database connection (explicit DSN or DATABASE_URL)
- txn(): Context manager for short, safe transactions
- fetchone(): Query helper
- for_update(): SELECT ... FOR UPDATE helper
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor


def get_conn(dsn: str | None = None) -> PgConnection:
    """Get a new database connection.

    Args:
        dsn: Postgres DSN. Falls back to DATABASE_URL.

    Returns:
        psycopg2 connection object.

    Raises:
        RuntimeError: If no DSN is given and DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = dsn or os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return psycopg2.connect(dsn)


@contextmanager
def txn(conn: PgConnection | None = None, *, dsn: str | None = None) -> Iterator[PgCursor]:
    """Context manager for a short, safe transaction.

    If conn is None, creates a new connection that is closed on exit.
    Commits on successful exit, rolls back on exception.

    Args:
        conn: Optional existing connection. If None, creates new one.
        dsn: DSN for the new connection when conn is None.

    Yields:
        Cursor for executing queries within the transaction.

    Example:
        with txn(dsn=settings.database_url) as cur:
            cur.execute("DELETE FROM ledger_entries WHERE id = %s", (entry_id,))
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn(dsn)

    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        if owns_conn:
            conn.close()


def fetchone(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute query and fetch one row."""
    cur.execute(query, params)
    return cur.fetchone()


def for_update(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> tuple[Any, ...] | None:
    """Execute SELECT ... FOR UPDATE and fetch one row.

    Use within a transaction to lock the selected row until commit/rollback.
    """
    full_query = query.rstrip().rstrip(";") + " FOR UPDATE"
    cur.execute(full_query, params)
    return cur.fetchone()
