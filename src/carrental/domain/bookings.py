"""Booking lifecycle - create, pay, cancel.

State machine:
    PENDING_PAYMENT -> CONFIRMED
    PENDING_PAYMENT -> CANCELLED
CONFIRMED and CANCELLED are terminal.

Single-row writes go through store.update(), which refuses to overwrite a
row that changed since it was read (ConcurrentModificationError).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Literal, Mapping

from carrental.domain.models import (
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    Booking,
    BookingRequest,
    BookingResult,
    PaymentMode,
)
from carrental.domain.rules import format_booking_id, validate_booking_request
from carrental.domain.strategies import PaymentStrategy, select_strategy
from carrental.infra.stores import BookingStore, ConcurrentModificationError
from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context

logger = get_logger(__name__)

ApplyResult = Literal["applied", "confirmed", "noop"]

# Attempts at drawing an unused booking id before giving up
MAX_ID_ATTEMPTS = 5

# Read-modify-write attempts for apply_payment under version conflicts
MAX_APPLY_ATTEMPTS = 3


class BookingNotFoundError(Exception):
    """Raised when the booking does not exist."""

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking not found with ID: {booking_id}")


class InvalidBookingStateError(Exception):
    """Raised when the booking is not in a state that allows the operation."""

    pass


def _generate_booking_id(store: BookingStore) -> str:
    for _ in range(MAX_ID_ATTEMPTS):
        booking_id = format_booking_id(store.next_booking_sequence())
        if not store.exists(booking_id):
            return booking_id
    raise RuntimeError(f"Could not allocate a booking id after {MAX_ID_ATTEMPTS} attempts")


def confirm_booking(
    request: BookingRequest,
    *,
    store: BookingStore,
    strategies: Mapping[PaymentMode, PaymentStrategy],
) -> BookingResult:
    """Create a booking and settle its initial status through the payment strategy.

    This function:
    1. Validates rental dates and vehicle id
    2. Allocates a fresh BKG booking id
    3. Runs the strategy for the payment mode
    4. Persists the booking with amount_received = 0

    Nothing is persisted when validation or the strategy raises.

    Raises:
        BookingValidationError: Request breaks a booking rule.
        PaymentRejectedError: Card payment declined.
        CardServiceUnavailableError: Card service unreachable.
    """
    validate_booking_request(request)
    strategy = select_strategy(strategies, request.payment_mode)

    booking = Booking(
        booking_id=_generate_booking_id(store),
        customer_name=request.customer_name,
        vehicle_id=request.vehicle_id,
        vehicle_category=request.vehicle_category,
        rental_start_date=request.rental_start_date,
        rental_end_date=request.rental_end_date,
        payment_mode=request.payment_mode,
        payment_reference=request.payment_reference,
        payment_amount=request.payment_amount,
    )

    booking.status = strategy.process(booking, request.payment_reference)
    saved = store.insert(booking)

    logger.info(
        "booking created",
        extra={
            "extra_fields": safe_log_context(
                booking_id=saved.booking_id,
                payment_mode=saved.payment_mode,
                status=saved.status,
            )
        },
    )
    return BookingResult(booking_id=saved.booking_id, status=saved.status)


def apply_payment(booking_id: str, amount: Decimal, *, store: BookingStore) -> ApplyResult:
    """Add a received amount to a pending booking.

    Args:
        booking_id: External booking id.
        amount: Amount received (positive).
        store: Booking store.

    Returns:
        - "noop": booking missing or no longer PENDING_PAYMENT
        - "applied": amount added, still short of the amount due
        - "confirmed": amount added and booking now CONFIRMED

    Raises:
        ConcurrentModificationError: Version conflict on every attempt.
    """
    for attempt in range(1, MAX_APPLY_ATTEMPTS + 1):
        booking = store.get(booking_id)
        if booking is None:
            logger.warning(
                "payment for unknown booking ignored",
                extra={"extra_fields": safe_log_context(booking_id=booking_id)},
            )
            return "noop"

        if not booking.is_pending_payment:
            logger.warning(
                "payment for non-pending booking ignored",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking_id, status=booking.status
                    )
                },
            )
            return "noop"

        booking.amount_received = booking.amount_received + amount
        if booking.is_fully_paid:
            booking.status = STATUS_CONFIRMED

        try:
            saved = store.update(booking)
        except ConcurrentModificationError:
            if attempt == MAX_APPLY_ATTEMPTS:
                raise
            logger.info(
                "payment version conflict, retrying",
                extra={
                    "extra_fields": safe_log_context(booking_id=booking_id, attempt=attempt)
                },
            )
            continue

        result: ApplyResult = "confirmed" if saved.status == STATUS_CONFIRMED else "applied"
        logger.info(
            "payment applied",
            extra={
                "extra_fields": safe_log_context(
                    booking_id=booking_id,
                    amount=amount,
                    amount_received=saved.amount_received,
                    payment_amount=saved.payment_amount,
                    result=result,
                )
            },
        )
        return result

    # Unreachable: the last attempt returns or raises
    raise ConcurrentModificationError(booking_id, -1)


def cancel_booking(booking_id: str, *, store: BookingStore) -> BookingResult:
    """Cancel a booking that is still awaiting payment.

    Raises:
        BookingNotFoundError: No such booking.
        InvalidBookingStateError: Booking is CONFIRMED or already CANCELLED.
        ConcurrentModificationError: Booking changed while cancelling.
    """
    booking = store.get(booking_id)
    if booking is None:
        raise BookingNotFoundError(booking_id)

    if not booking.is_pending_payment:
        raise InvalidBookingStateError(
            f"Booking {booking_id} cannot be cancelled in status {booking.status}"
        )

    booking.status = STATUS_CANCELLED
    saved = store.update(booking)

    logger.info(
        "booking cancelled",
        extra={"extra_fields": safe_log_context(booking_id=booking_id)},
    )
    return BookingResult(booking_id=saved.booking_id, status=saved.status)


def get_booking(booking_id: str, *, store: BookingStore) -> Booking:
    """Raises BookingNotFoundError if the booking does not exist."""
    booking = store.get(booking_id)
    if booking is None:
        raise BookingNotFoundError(booking_id)
    return booking
