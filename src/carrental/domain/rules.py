"""Booking business rules.

Validation of incoming booking requests, booking id formatting, and the
auto-cancellation eligibility predicate. The predicate exists in two
renderings that must stay in lock-step: `is_auto_cancel_eligible` for
in-process checks and `AUTO_CANCEL_SQL_PREDICATE` for the Postgres store.
Both are defined here and nowhere else.
"""

from __future__ import annotations

from datetime import date, timedelta

from carrental.domain.models import (
    MODE_BANK_TRANSFER,
    STATUS_PENDING_PAYMENT,
    Booking,
    BookingRequest,
)

MAX_RENTAL_DAYS = 21

# Bank transfers must be fully paid this many days before rental start
AUTO_CANCEL_LEAD_DAYS = 2

BOOKING_ID_PREFIX = "BKG"
BOOKING_ID_DIGITS = 7


class BookingValidationError(Exception):
    """Booking request violates a business rule."""

    def __init__(self, rule: str, message: str):
        self.rule = rule
        super().__init__(message)


def validate_rental_dates(start: date, end: date) -> None:
    """Validate the rental period.

    Raises:
        BookingValidationError: If end is not after start, or the span
            exceeds MAX_RENTAL_DAYS.
    """
    if end <= start:
        raise BookingValidationError(
            "rental_end_after_start",
            "Rental end date must be after rental start date",
        )

    rental_days = (end - start).days
    if rental_days > MAX_RENTAL_DAYS:
        raise BookingValidationError(
            "max_rental_days",
            f"A vehicle cannot be booked for more than {MAX_RENTAL_DAYS} days. "
            f"Requested: {rental_days} days",
        )


def validate_vehicle_id(vehicle_id: str | None) -> None:
    """Raises BookingValidationError if the vehicle id is missing or blank."""
    if vehicle_id is None or not vehicle_id.strip():
        raise BookingValidationError("vehicle_id_required", "Vehicle ID is required")


def validate_booking_request(request: BookingRequest) -> None:
    validate_rental_dates(request.rental_start_date, request.rental_end_date)
    validate_vehicle_id(request.vehicle_id)


def format_booking_id(sequence: int) -> str:
    """Render a sequence number as an external booking id (BKG0012345)."""
    return f"{BOOKING_ID_PREFIX}{sequence % 10**BOOKING_ID_DIGITS:0{BOOKING_ID_DIGITS}d}"


def auto_cancel_deadline(today: date) -> date:
    """Latest rental start date that is due for auto-cancellation today."""
    return today + timedelta(days=AUTO_CANCEL_LEAD_DAYS)


def is_auto_cancel_eligible(booking: Booking, deadline: date) -> bool:
    """Return True if an unpaid bank transfer must be cancelled.

    Eligible means: bank transfer, still PENDING_PAYMENT, amount received
    short of the amount due, and rental start on or before `deadline`.
    """
    return (
        booking.payment_mode == MODE_BANK_TRANSFER
        and booking.status == STATUS_PENDING_PAYMENT
        and not booking.is_fully_paid
        and booking.rental_start_date <= deadline
    )


# SQL rendering of is_auto_cancel_eligible; binds one parameter (deadline).
AUTO_CANCEL_SQL_PREDICATE = f"""
    payment_mode = '{MODE_BANK_TRANSFER}'
    AND status = '{STATUS_PENDING_PAYMENT}'
    AND amount_received < payment_amount
    AND rental_start_date <= %s
"""
