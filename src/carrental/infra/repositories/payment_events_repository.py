"""Processed payment events repository - the idempotency ledger.

Uses raw SQL with psycopg2 (no ORM).
"""

from psycopg2.extensions import cursor as PgCursor

from carrental.domain.models import ProcessedPaymentEvent
from carrental.infra.db import fetchone

# Column limit for error_message
MAX_ERROR_LENGTH = 1000


def payment_event_exists(cur: PgCursor, payment_id: str) -> bool:
    row = fetchone(
        cur,
        "SELECT 1 FROM processed_payment_events WHERE payment_id = %s",
        (payment_id,),
    )
    return row is not None


def insert_processed_event(cur: PgCursor, event: ProcessedPaymentEvent) -> bool:
    """Insert a ledger entry with ON CONFLICT DO NOTHING.

    Args:
        cur: Database cursor (within transaction).
        event: Ledger entry to record.

    Returns:
        True if inserted, False if the payment id was already recorded.
    """
    error_message = event.error_message
    if error_message is not None:
        error_message = error_message[:MAX_ERROR_LENGTH]

    cur.execute(
        """
        INSERT INTO processed_payment_events (
            payment_id, booking_id, status, error_message
        )
        VALUES (%s, %s, %s, %s)
        ON CONFLICT (payment_id) DO NOTHING
        """,
        (event.payment_id, event.booking_id, event.outcome, error_message),
    )
    return cur.rowcount == 1


def get_processed_event(cur: PgCursor, payment_id: str) -> ProcessedPaymentEvent | None:
    row = fetchone(
        cur,
        """
        SELECT payment_id, booking_id, status, error_message, processed_at
        FROM processed_payment_events
        WHERE payment_id = %s
        """,
        (payment_id,),
    )
    if row is None:
        return None
    return ProcessedPaymentEvent(
        payment_id=row[0],
        booking_id=row[1],
        outcome=row[2],
        error_message=row[3],
        processed_at=row[4],
    )
