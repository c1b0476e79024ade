"""Bank-transfer payment event processing.

Each message from the payment feed is handled exactly once from the
caller's point of view: whatever happens, the caller acknowledges it
afterwards. Outcomes are recorded in the idempotency ledger and, for
anything that could not be applied, in the dead-letter channel.

Per message:
1. Parse JSON (poison on failure, dead-lettered, no ledger row)
2. Validate required fields (poison on failure)
3. Dedupe by paymentId against the ledger
4. Resolve the booking id from transactionDetails (SKIPPED if impossible)
5. apply_payment (SUCCESS). FAILED on any error, and also when the
   booking is unknown or no longer awaiting payment

Security: NEVER log raw payloads or full sender account numbers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Literal

from carrental.domain.bookings import apply_payment
from carrental.domain.models import (
    OUTCOME_DUPLICATE,
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    OUTCOME_SUCCESS,
    UNKNOWN_BOOKING_ID,
    EventOutcome,
    ProcessedPaymentEvent,
)
from carrental.feed.dead_letters import DeadLetterPublisher
from carrental.infra.stores import BookingStore, PaymentLedger
from carrental.observability.logging import get_logger
from carrental.observability.redaction import mask_identifier, safe_log_context

logger = get_logger(__name__)

# transactionDetails layout: <12-char transaction ref><separator><booking id>
TRANSACTION_REF_LENGTH = 12
BOOKING_ID_OFFSET = 13
MIN_TRANSACTION_DETAILS_LENGTH = 23

OUTCOME_POISON = "POISON"

PipelineOutcome = Literal["SUCCESS", "FAILED", "SKIPPED", "DUPLICATE", "POISON"]

REASON_UNRESOLVED_BOOKING = "Invalid transactionDetails format - cannot extract bookingId"


class InvalidPaymentEventError(Exception):
    """Raised when a payment event is malformed (poison message)."""

    pass


@dataclass(frozen=True)
class PaymentEvent:
    """A bank-transfer payment notification from the feed."""

    payment_id: str
    sender_account_number: str | None
    payment_amount: Decimal
    transaction_details: str

    @property
    def booking_id(self) -> str | None:
        return extract_booking_id(self.transaction_details)

    @property
    def transaction_reference(self) -> str | None:
        return extract_transaction_reference(self.transaction_details)


@dataclass(frozen=True)
class PipelineResult:
    outcome: PipelineOutcome
    payment_id: str | None = None
    booking_id: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "paymentId": self.payment_id,
            "bookingId": self.booking_id,
            "reason": self.reason,
        }


def extract_booking_id(transaction_details: str | None) -> str | None:
    """Booking id from transactionDetails, or None if it is too short.

    Example:
        "TXN987654321 BKG0012345" -> "BKG0012345"
    """
    if transaction_details is None or len(transaction_details) < MIN_TRANSACTION_DETAILS_LENGTH:
        return None
    booking_id = transaction_details[BOOKING_ID_OFFSET:].strip()
    return booking_id or None


def extract_transaction_reference(transaction_details: str | None) -> str | None:
    if transaction_details is None or len(transaction_details) < TRANSACTION_REF_LENGTH:
        return None
    return transaction_details[:TRANSACTION_REF_LENGTH]


def _parse_amount(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (Decimal, int, str)):
        try:
            amount = Decimal(value) if not isinstance(value, str) else Decimal(value.strip())
        except InvalidOperation:
            return None
        return amount if amount.is_finite() else None
    return None


def parse_payment_event(raw: str) -> PaymentEvent:
    """Parse and validate a raw feed message.

    Raises:
        json.JSONDecodeError: Not valid JSON.
        InvalidPaymentEventError: Valid JSON but not a usable payment event.
    """
    data = json.loads(raw, parse_float=Decimal)
    if not isinstance(data, dict):
        raise InvalidPaymentEventError("payload must be a JSON object")

    payment_id = data.get("paymentId")
    if not isinstance(payment_id, str) or not payment_id.strip():
        raise InvalidPaymentEventError("paymentId is required")

    amount = _parse_amount(data.get("paymentAmount"))
    if amount is None or amount <= 0:
        raise InvalidPaymentEventError("paymentAmount must be positive")

    details = data.get("transactionDetails")
    if not isinstance(details, str) or not details.strip():
        raise InvalidPaymentEventError("transactionDetails is required")

    sender = data.get("senderAccountNumber")
    return PaymentEvent(
        payment_id=payment_id,
        sender_account_number=sender if isinstance(sender, str) else None,
        payment_amount=amount,
        transaction_details=details,
    )


def _record(
    ledger: PaymentLedger,
    *,
    payment_id: str,
    booking_id: str,
    outcome: EventOutcome,
    error_message: str | None = None,
) -> None:
    """Write a ledger row. Failures are logged, never raised."""
    try:
        ledger.record(
            ProcessedPaymentEvent(
                payment_id=payment_id,
                booking_id=booking_id,
                outcome=outcome,
                error_message=error_message,
            )
        )
    except Exception as e:
        logger.error(
            "failed to record processed event",
            extra={
                "extra_fields": safe_log_context(
                    payment_id=payment_id, outcome=outcome, error=str(e)
                )
            },
        )


def _dead_letter(dead_letters: DeadLetterPublisher, raw: str, reason: str) -> None:
    """Publish to the dead-letter channel. Failures are logged, never raised."""
    try:
        dead_letters.publish(raw, reason)
    except Exception as e:
        logger.error(
            "failed to publish dead letter",
            extra={"extra_fields": safe_log_context(reason=reason, error=str(e))},
        )


def _poison(dead_letters: DeadLetterPublisher, raw: str, reason: str) -> PipelineResult:
    logger.error(
        "poison message detected",
        extra={"extra_fields": safe_log_context(reason=reason)},
    )
    _dead_letter(dead_letters, raw, reason)
    return PipelineResult(outcome=OUTCOME_POISON, reason=reason)


def _failed(
    ledger: PaymentLedger,
    dead_letters: DeadLetterPublisher,
    raw: str,
    payment_id: str,
    booking_id: str,
    error: str,
) -> PipelineResult:
    reason = f"Processing failed: {error}"
    _record(
        ledger,
        payment_id=payment_id,
        booking_id=booking_id,
        outcome=OUTCOME_FAILED,
        error_message=error,
    )
    _dead_letter(dead_letters, raw, reason)
    return PipelineResult(
        outcome=OUTCOME_FAILED,
        payment_id=payment_id,
        booking_id=booking_id,
        reason=reason,
    )


def _not_applied_reason(store: BookingStore, booking_id: str) -> str:
    """Why apply_payment left a booking untouched."""
    try:
        booking = store.get(booking_id)
    except Exception as e:
        logger.warning(
            "booking lookup failed after no-op payment",
            extra={"extra_fields": safe_log_context(booking_id=booking_id, error=str(e))},
        )
        return f"Booking {booking_id} could not be updated"
    if booking is None:
        return f"Booking not found with ID: {booking_id}"
    return f"Booking {booking_id} is not in PENDING_PAYMENT (status {booking.status})"


def process_payment_message(
    raw: str,
    *,
    store: BookingStore,
    ledger: PaymentLedger,
    dead_letters: DeadLetterPublisher,
) -> PipelineResult:
    """Run one raw feed message through the pipeline.

    Never raises for message-level problems; the caller acknowledges the
    message whatever the outcome.

    Returns:
        PipelineResult with outcome SUCCESS, FAILED, SKIPPED, DUPLICATE or POISON.
    """
    try:
        event = parse_payment_event(raw)
    except json.JSONDecodeError as e:
        return _poison(dead_letters, raw, f"Invalid JSON format: {e}")
    except InvalidPaymentEventError as e:
        return _poison(dead_letters, raw, f"Schema validation failed: {e}")

    payment_id = event.payment_id

    try:
        already_processed = ledger.has_processed(payment_id)
    except Exception as e:
        reason = f"Processing failed: {e}"
        logger.error(
            "idempotency check failed",
            extra={"extra_fields": safe_log_context(payment_id=payment_id, error=str(e))},
        )
        _dead_letter(dead_letters, raw, reason)
        return PipelineResult(outcome=OUTCOME_FAILED, payment_id=payment_id, reason=reason)

    if already_processed:
        logger.warning(
            "duplicate payment event skipped",
            extra={"extra_fields": safe_log_context(payment_id=payment_id)},
        )
        return PipelineResult(outcome=OUTCOME_DUPLICATE, payment_id=payment_id)

    booking_id = event.booking_id
    if booking_id is None:
        logger.error(
            "could not extract booking id from transaction details",
            extra={
                "extra_fields": safe_log_context(
                    payment_id=payment_id,
                    details_length=len(event.transaction_details),
                )
            },
        )
        _record(
            ledger,
            payment_id=payment_id,
            booking_id=UNKNOWN_BOOKING_ID,
            outcome=OUTCOME_SKIPPED,
            error_message="Could not extract booking ID from transactionDetails",
        )
        _dead_letter(dead_letters, raw, REASON_UNRESOLVED_BOOKING)
        return PipelineResult(
            outcome=OUTCOME_SKIPPED,
            payment_id=payment_id,
            reason=REASON_UNRESOLVED_BOOKING,
        )

    logger.info(
        "processing payment event",
        extra={
            "extra_fields": safe_log_context(
                payment_id=payment_id,
                booking_id=booking_id,
                amount=event.payment_amount,
                transaction_ref=mask_identifier(event.transaction_reference),
                sender=mask_identifier(event.sender_account_number),
            )
        },
    )

    try:
        applied = apply_payment(booking_id, event.payment_amount, store=store)
    except Exception as e:
        logger.error(
            "failed to process payment event",
            extra={
                "extra_fields": safe_log_context(
                    payment_id=payment_id,
                    booking_id=booking_id,
                    error_type=type(e).__name__,
                )
            },
            exc_info=True,
        )
        return _failed(ledger, dead_letters, raw, payment_id, booking_id, str(e))

    if applied == "noop":
        error = _not_applied_reason(store, booking_id)
        logger.error(
            "payment not applied to booking",
            extra={
                "extra_fields": safe_log_context(
                    payment_id=payment_id, booking_id=booking_id, error=error
                )
            },
        )
        return _failed(ledger, dead_letters, raw, payment_id, booking_id, error)

    _record(ledger, payment_id=payment_id, booking_id=booking_id, outcome=OUTCOME_SUCCESS)
    return PipelineResult(outcome=OUTCOME_SUCCESS, payment_id=payment_id, booking_id=booking_id)
