"""Postgres access for the booking store, payment ledger and job leases.

psycopg2 with raw SQL. Every connection is tagged with an application name
and a statement timeout so a stuck sweep or payment update shows up in
pg_stat_activity and cannot hold row locks indefinitely.

Config:
    DATABASE_URL: libpq DSN or postgres:// URL (required)
    DB_PASSWORD: password, when it is mounted separately from the DSN
    DB_APPLICATION_NAME: default "carrental"
    DB_CONNECT_TIMEOUT_SECONDS: default 5
    DB_STATEMENT_TIMEOUT_MS: default 15000
"""

import os
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

import psycopg2
from psycopg2.extensions import connection as PgConnection, cursor as PgCursor


def _dsn_has_password(dsn: str) -> bool:
    """True if a libpq DSN or URL already carries a password."""
    if "://" in dsn:
        netloc = dsn.split("://", 1)[1].split("/", 1)[0]
        userinfo = netloc.rsplit("@", 1)[0] if "@" in netloc else ""
        return ":" in userinfo
    return "password=" in dsn


def _connect_kwargs(dsn: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {
        "application_name": os.environ.get("DB_APPLICATION_NAME", "carrental"),
        "connect_timeout": int(os.environ.get("DB_CONNECT_TIMEOUT_SECONDS", "5")),
        "options": f"-c statement_timeout={int(os.environ.get('DB_STATEMENT_TIMEOUT_MS', '15000'))}",
    }
    db_password = os.environ.get("DB_PASSWORD", "")
    if db_password and not _dsn_has_password(dsn):
        kwargs["password"] = db_password
    return kwargs


def get_conn() -> PgConnection:
    """Open a new connection from DATABASE_URL.

    Raises:
        RuntimeError: If DATABASE_URL is not set.
        psycopg2.Error: On connection failure.
    """
    dsn = os.environ.get("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL environment variable not set")
    return psycopg2.connect(dsn, **_connect_kwargs(dsn))


@contextmanager
def txn(conn: PgConnection | None = None) -> Iterator[PgCursor]:
    """One short transaction: commit on success, roll back on any exception.

    A connection opened here is closed on exit; a passed-in one is left open.

    Example:
        with txn() as cur:
            cur.execute("SELECT nextval('bookings_booking_seq')")
    """
    owns_conn = conn is None
    if owns_conn:
        conn = get_conn()

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
    """Run a query and return its first row, or None."""
    cur.execute(query, params)
    return cur.fetchone()


def fetchall(
    cur: PgCursor,
    query: str,
    params: Sequence[Any] | None = None,
) -> list[tuple[Any, ...]]:
    cur.execute(query, params)
    return cur.fetchall()
