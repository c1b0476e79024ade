"""Booking domain models.

Plain dataclasses shared by the lifecycle service, the payment pipeline,
the stores and the API layer. Status and mode values are the uppercase
strings used on the wire and in the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Literal

BookingStatus = Literal["PENDING_PAYMENT", "CONFIRMED", "CANCELLED"]
PaymentMode = Literal["DIGITAL_WALLET", "CREDIT_CARD", "BANK_TRANSFER"]
VehicleCategory = Literal["SEDAN", "SUV", "COMPACT", "LUXURY"]
EventOutcome = Literal["SUCCESS", "FAILED", "SKIPPED", "DUPLICATE"]

STATUS_PENDING_PAYMENT: BookingStatus = "PENDING_PAYMENT"
STATUS_CONFIRMED: BookingStatus = "CONFIRMED"
STATUS_CANCELLED: BookingStatus = "CANCELLED"

MODE_DIGITAL_WALLET: PaymentMode = "DIGITAL_WALLET"
MODE_CREDIT_CARD: PaymentMode = "CREDIT_CARD"
MODE_BANK_TRANSFER: PaymentMode = "BANK_TRANSFER"

PAYMENT_MODES: tuple[PaymentMode, ...] = (
    MODE_DIGITAL_WALLET,
    MODE_CREDIT_CARD,
    MODE_BANK_TRANSFER,
)
VEHICLE_CATEGORIES: tuple[VehicleCategory, ...] = ("SEDAN", "SUV", "COMPACT", "LUXURY")

OUTCOME_SUCCESS: EventOutcome = "SUCCESS"
OUTCOME_FAILED: EventOutcome = "FAILED"
OUTCOME_SKIPPED: EventOutcome = "SKIPPED"
OUTCOME_DUPLICATE: EventOutcome = "DUPLICATE"

# Ledger booking id when the event could not be tied to a booking
UNKNOWN_BOOKING_ID = "UNKNOWN"


@dataclass(frozen=True)
class BookingRequest:
    """Validated-shape booking request handed over by the request surface."""

    customer_name: str
    vehicle_id: str
    vehicle_category: VehicleCategory
    rental_start_date: date
    rental_end_date: date
    payment_mode: PaymentMode
    payment_reference: str
    payment_amount: Decimal


@dataclass
class Booking:
    """A vehicle reservation for a date range, tied to one payment mode.

    Attributes:
        booking_id: External identifier (BKG + 7 digits).
        version: Optimistic version the row was read at; 0 for a new booking.
        id: Internal storage key, assigned by the store on insert.
    """

    booking_id: str
    customer_name: str
    vehicle_id: str
    vehicle_category: VehicleCategory
    rental_start_date: date
    rental_end_date: date
    payment_mode: PaymentMode
    payment_reference: str
    payment_amount: Decimal
    amount_received: Decimal = Decimal("0")
    status: BookingStatus = STATUS_PENDING_PAYMENT
    version: int = 0
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_pending_payment(self) -> bool:
        return self.status == STATUS_PENDING_PAYMENT

    @property
    def is_fully_paid(self) -> bool:
        return self.amount_received >= self.payment_amount


@dataclass(frozen=True)
class BookingResult:
    """What the request surface returns for a booking."""

    booking_id: str
    status: BookingStatus

    def to_dict(self) -> dict[str, str]:
        return {"bookingId": self.booking_id, "status": self.status}


@dataclass(frozen=True)
class ProcessedPaymentEvent:
    """Idempotency ledger entry for one payment event id."""

    payment_id: str
    booking_id: str
    outcome: EventOutcome
    error_message: str | None = None
    processed_at: datetime | None = None
