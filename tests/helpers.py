"""Shared test helper functions for carrental tests.

Regular functions, not fixtures, so both conftest.py and test modules
can import them.
"""

from __future__ import annotations

import json
from datetime import date, timedelta
from decimal import Decimal

from carrental.domain.models import Booking


def make_booking(
    booking_id: str = "BKG0000001",
    *,
    payment_mode: str = "BANK_TRANSFER",
    status: str = "PENDING_PAYMENT",
    payment_amount: Decimal = Decimal("200.00"),
    amount_received: Decimal = Decimal("0"),
    start_in_days: int = 10,
    today: date | None = None,
) -> Booking:
    """Build an unsaved Booking starting `start_in_days` after `today`."""
    start = (today or date.today()) + timedelta(days=start_in_days)
    return Booking(
        booking_id=booking_id,
        customer_name="Jane Doe",
        vehicle_id="VH-001",
        vehicle_category="SEDAN",
        rental_start_date=start,
        rental_end_date=start + timedelta(days=3),
        payment_mode=payment_mode,
        payment_reference="REF-0001",
        payment_amount=payment_amount,
        amount_received=amount_received,
        status=status,
    )


def payment_message(
    payment_id: str = "PAY-001",
    *,
    booking_id: str = "BKG0000001",
    amount: str = "100.00",
    transaction_details: str | None = None,
    sender: str = "GB29NWBK60161331926819",
) -> str:
    """Raw feed message as the bank publishes it."""
    details = transaction_details if transaction_details is not None else f"TXN987654321 {booking_id}"
    # paymentAmount is a JSON number, written verbatim to keep its decimal digits
    return (
        "{"
        f"\"paymentId\": {json.dumps(payment_id)}, "
        f"\"senderAccountNumber\": {json.dumps(sender)}, "
        f"\"paymentAmount\": {amount}, "
        f"\"transactionDetails\": {json.dumps(details)}"
        "}"
    )
