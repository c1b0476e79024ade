"""Bookings repository - persistence for booking records.

Uses raw SQL with psycopg2 (no ORM). Every mutation of a single booking
is guarded by its optimistic `version` column.
"""

from datetime import date
from typing import Any

from psycopg2.extensions import cursor as PgCursor

from carrental.domain.models import STATUS_CANCELLED, Booking
from carrental.domain.rules import AUTO_CANCEL_SQL_PREDICATE
from carrental.infra.db import fetchall, fetchone

_BOOKING_COLUMNS = """
    id, booking_id, customer_name, vehicle_id, vehicle_category,
    rental_start_date, rental_end_date, payment_mode, payment_reference,
    status, payment_amount, amount_received, version, created_at, updated_at
"""


def _row_to_booking(row: tuple[Any, ...]) -> Booking:
    (
        internal_id,
        booking_id,
        customer_name,
        vehicle_id,
        vehicle_category,
        rental_start_date,
        rental_end_date,
        payment_mode,
        payment_reference,
        status,
        payment_amount,
        amount_received,
        version,
        created_at,
        updated_at,
    ) = row
    return Booking(
        id=str(internal_id),
        booking_id=booking_id,
        customer_name=customer_name,
        vehicle_id=vehicle_id,
        vehicle_category=vehicle_category,
        rental_start_date=rental_start_date,
        rental_end_date=rental_end_date,
        payment_mode=payment_mode,
        payment_reference=payment_reference,
        status=status,
        payment_amount=payment_amount,
        amount_received=amount_received,
        version=version,
        created_at=created_at,
        updated_at=updated_at,
    )


def next_booking_sequence(cur: PgCursor) -> int:
    """Draw the next value of the durable booking id sequence."""
    row = fetchone(cur, "SELECT nextval('bookings_booking_seq')")
    return int(row[0])


def booking_id_exists(cur: PgCursor, booking_id: str) -> bool:
    row = fetchone(
        cur,
        "SELECT 1 FROM bookings WHERE booking_id = %s",
        (booking_id,),
    )
    return row is not None


def insert_booking(cur: PgCursor, booking: Booking) -> Booking:
    """Insert a new booking at version 0.

    Args:
        cur: Database cursor (within transaction).
        booking: Booking to persist. Its `id` is ignored.

    Returns:
        The booking as stored, with id and timestamps filled in.
    """
    row = fetchone(
        cur,
        f"""
        INSERT INTO bookings (
            booking_id, customer_name, vehicle_id, vehicle_category,
            rental_start_date, rental_end_date, payment_mode,
            payment_reference, status, payment_amount, amount_received,
            version
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, 0)
        RETURNING {_BOOKING_COLUMNS}
        """,
        (
            booking.booking_id,
            booking.customer_name,
            booking.vehicle_id,
            booking.vehicle_category,
            booking.rental_start_date,
            booking.rental_end_date,
            booking.payment_mode,
            booking.payment_reference,
            booking.status,
            booking.payment_amount,
            booking.amount_received,
        ),
    )
    return _row_to_booking(row)


def get_booking(cur: PgCursor, booking_id: str) -> Booking | None:
    """Fetch a booking by its external id, or None."""
    row = fetchone(
        cur,
        f"SELECT {_BOOKING_COLUMNS} FROM bookings WHERE booking_id = %s",
        (booking_id,),
    )
    if row is None:
        return None
    return _row_to_booking(row)


def update_booking_versioned(cur: PgCursor, booking: Booking) -> Booking | None:
    """Write status and amount back if the row is still at `booking.version`.

    Returns:
        The updated booking (version incremented), or None if another
        writer got there first (version mismatch or row gone).
    """
    row = fetchone(
        cur,
        f"""
        UPDATE bookings
        SET status = %s,
            amount_received = %s,
            version = version + 1,
            updated_at = now()
        WHERE booking_id = %s AND version = %s
        RETURNING {_BOOKING_COLUMNS}
        """,
        (
            booking.status,
            booking.amount_received,
            booking.booking_id,
            booking.version,
        ),
    )
    if row is None:
        return None
    return _row_to_booking(row)


def find_auto_cancel_ids(cur: PgCursor, deadline: date) -> list[str]:
    """Return ids of unpaid bank-transfer bookings due for cancellation."""
    rows = fetchall(
        cur,
        f"""
        SELECT booking_id FROM bookings
        WHERE {AUTO_CANCEL_SQL_PREDICATE}
        ORDER BY rental_start_date, booking_id
        """,
        (deadline,),
    )
    return [row[0] for row in rows]


def batch_cancel(cur: PgCursor, booking_ids: list[str], deadline: date) -> int:
    """Cancel the given bookings in one statement.

    The eligibility predicate is applied again so that a booking confirmed
    after `find_auto_cancel_ids` ran is left alone.

    Returns:
        Number of rows cancelled.
    """
    if not booking_ids:
        return 0

    cur.execute(
        f"""
        UPDATE bookings
        SET status = %s,
            version = version + 1,
            updated_at = now()
        WHERE booking_id = ANY(%s)
          AND {AUTO_CANCEL_SQL_PREDICATE}
        """,
        (STATUS_CANCELLED, list(booking_ids), deadline),
    )
    return cur.rowcount
