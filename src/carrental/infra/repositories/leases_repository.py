"""Scheduler leases repository - named locks for recurring jobs.

Uses raw SQL with psycopg2 (no ORM). A lease row is taken when absent or
when its `locked_until` has passed; all timestamps come from the database
clock so that instances with skewed clocks agree.
"""

from datetime import timedelta

from psycopg2.extensions import cursor as PgCursor


def try_acquire_lease(
    cur: PgCursor,
    *,
    name: str,
    holder: str,
    max_hold: timedelta,
) -> bool:
    """Take the named lease for at most `max_hold`.

    Returns:
        True if this holder now owns the lease, False if it is held
        elsewhere and not yet expired.
    """
    cur.execute(
        """
        INSERT INTO scheduler_leases (name, locked_until, locked_at, locked_by)
        VALUES (%s, now() + %s, now(), %s)
        ON CONFLICT (name) DO UPDATE
        SET locked_until = EXCLUDED.locked_until,
            locked_at = EXCLUDED.locked_at,
            locked_by = EXCLUDED.locked_by
        WHERE scheduler_leases.locked_until <= now()
        """,
        (name, max_hold, holder),
    )
    return cur.rowcount == 1


def release_lease(
    cur: PgCursor,
    *,
    name: str,
    holder: str,
    min_hold: timedelta,
) -> None:
    """Release the lease, keeping it held until at least locked_at + min_hold."""
    cur.execute(
        """
        UPDATE scheduler_leases
        SET locked_until = GREATEST(locked_at + %s, now())
        WHERE name = %s AND locked_by = %s
        """,
        (min_hold, name, holder),
    )
