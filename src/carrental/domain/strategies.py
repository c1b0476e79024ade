"""Payment strategies - one per payment mode.

Each strategy decides the status a new booking starts in, doing any
external validation the mode needs. The table is built once and must
cover every PaymentMode.
"""

from __future__ import annotations

from typing import Mapping, Protocol

from carrental.domain.models import (
    MODE_BANK_TRANSFER,
    MODE_CREDIT_CARD,
    MODE_DIGITAL_WALLET,
    PAYMENT_MODES,
    STATUS_CONFIRMED,
    STATUS_PENDING_PAYMENT,
    Booking,
    BookingStatus,
    PaymentMode,
)
from carrental.observability.logging import get_logger
from carrental.observability.redaction import mask_identifier, safe_log_context
from carrental.payments.card_client import CardValidationRejectedError

logger = get_logger(__name__)


class PaymentRejectedError(Exception):
    """Raised when the payment for a new booking is definitively declined."""

    pass


class UnsupportedPaymentModeError(Exception):
    """Raised when a payment mode has no strategy."""

    pass


class CardApprover(Protocol):
    def validate_payment(self, payment_reference: str) -> bool: ...


class PaymentStrategy(Protocol):
    def process(self, booking: Booking, payment_reference: str) -> BookingStatus: ...


class DigitalWalletStrategy:
    """Wallet payments settle at checkout."""

    def process(self, booking: Booking, payment_reference: str) -> BookingStatus:
        return STATUS_CONFIRMED


class CreditCardStrategy:
    """Ask the card service; confirmed only when it approves.

    CardServiceUnavailableError propagates unchanged: an unreachable
    service is not a rejection.
    """

    def __init__(self, approver: CardApprover) -> None:
        self._approver = approver

    def process(self, booking: Booking, payment_reference: str) -> BookingStatus:
        try:
            approved = self._approver.validate_payment(payment_reference)
        except CardValidationRejectedError as e:
            raise PaymentRejectedError(str(e)) from e

        if not approved:
            logger.info(
                "credit card payment rejected",
                extra={
                    "extra_fields": safe_log_context(
                        booking_id=booking.booking_id,
                        reference=mask_identifier(payment_reference),
                    )
                },
            )
            raise PaymentRejectedError("Credit card payment was rejected")
        return STATUS_CONFIRMED


class BankTransferStrategy:
    """Transfers are confirmed later by the payment feed."""

    def process(self, booking: Booking, payment_reference: str) -> BookingStatus:
        return STATUS_PENDING_PAYMENT


def ensure_total(strategies: Mapping[PaymentMode, PaymentStrategy]) -> None:
    """Raises UnsupportedPaymentModeError if any PaymentMode has no strategy."""
    missing = [mode for mode in PAYMENT_MODES if mode not in strategies]
    if missing:
        raise UnsupportedPaymentModeError(
            f"No payment strategy for mode(s): {', '.join(missing)}"
        )


def build_strategies(card_approver: CardApprover) -> dict[PaymentMode, PaymentStrategy]:
    """Build the strategy table for every payment mode.

    Args:
        card_approver: Approval capability used by the credit-card strategy.

    Returns:
        Dict keyed by PaymentMode.
    """
    strategies: dict[PaymentMode, PaymentStrategy] = {
        MODE_DIGITAL_WALLET: DigitalWalletStrategy(),
        MODE_CREDIT_CARD: CreditCardStrategy(card_approver),
        MODE_BANK_TRANSFER: BankTransferStrategy(),
    }
    ensure_total(strategies)
    return strategies


def select_strategy(
    strategies: Mapping[PaymentMode, PaymentStrategy],
    mode: PaymentMode,
) -> PaymentStrategy:
    try:
        return strategies[mode]
    except KeyError:
        raise UnsupportedPaymentModeError(f"Unsupported payment mode: {mode}") from None
