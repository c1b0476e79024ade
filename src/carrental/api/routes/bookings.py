"""Booking endpoints.

POST   /api/v1/bookings              create (201)
GET    /api/v1/bookings/{bookingId}  read
DELETE /api/v1/bookings/{bookingId}  cancel (PENDING_PAYMENT only)

Domain errors are turned into error responses by api.errors.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from carrental.domain.bookings import cancel_booking, confirm_booking, get_booking
from carrental.domain.models import BookingRequest, PaymentMode, VehicleCategory
from carrental.domain.strategies import PaymentStrategy, build_strategies
from carrental.infra.stores import BookingStore, get_booking_store
from carrental.observability.correlation import get_correlation_id
from carrental.observability.logging import get_logger
from carrental.observability.redaction import safe_log_context
from carrental.payments.card_client import CardValidationClient

router = APIRouter(prefix="/api/v1/bookings", tags=["bookings"])

logger = get_logger(__name__)


class CreateBookingRequest(BaseModel):
    """Request body for booking creation (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    customer_name: str = Field(alias="customerName", min_length=2, max_length=100)
    vehicle_id: str = Field(alias="vehicleId", min_length=1)
    vehicle_category: VehicleCategory = Field(alias="vehicleCategory")
    rental_start_date: date = Field(alias="rentalStartDate")
    rental_end_date: date = Field(alias="rentalEndDate")
    payment_mode: PaymentMode = Field(alias="paymentMode")
    payment_reference: str = Field(alias="paymentReference", min_length=1)
    payment_amount: Decimal = Field(alias="paymentAmount", ge=Decimal("0.01"))

    def to_domain(self) -> BookingRequest:
        return BookingRequest(
            customer_name=self.customer_name,
            vehicle_id=self.vehicle_id,
            vehicle_category=self.vehicle_category,
            rental_start_date=self.rental_start_date,
            rental_end_date=self.rental_end_date,
            payment_mode=self.payment_mode,
            payment_reference=self.payment_reference,
            payment_amount=self.payment_amount,
        )


_strategies: dict[PaymentMode, PaymentStrategy] | None = None


def _get_booking_store() -> BookingStore:
    """Get booking store (allows override in tests)."""
    return get_booking_store()


def _get_strategies() -> dict[PaymentMode, PaymentStrategy]:
    """Get payment strategies (allows override in tests)."""
    global _strategies
    if _strategies is None:
        _strategies = build_strategies(CardValidationClient())
    return _strategies


@router.post("", status_code=201)
def create_booking(body: CreateBookingRequest) -> JSONResponse:
    """Create a booking; status depends on the payment mode."""
    logger.info(
        "create booking request",
        extra={
            "extra_fields": safe_log_context(
                correlationId=get_correlation_id(),
                payment_mode=body.payment_mode,
                vehicle_category=body.vehicle_category,
            )
        },
    )
    result = confirm_booking(
        body.to_domain(),
        store=_get_booking_store(),
        strategies=_get_strategies(),
    )
    return JSONResponse(status_code=201, content=result.to_dict())


@router.get("/{booking_id}")
def read_booking(booking_id: str) -> dict:
    booking = get_booking(booking_id, store=_get_booking_store())
    return {"bookingId": booking.booking_id, "status": booking.status}


@router.delete("/{booking_id}")
def delete_booking(booking_id: str) -> dict:
    """Cancel a booking. 409 unless it is still PENDING_PAYMENT."""
    result = cancel_booking(booking_id, store=_get_booking_store())
    return result.to_dict()
