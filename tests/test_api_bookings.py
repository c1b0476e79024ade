"""Tests for the booking HTTP API."""

from datetime import date, timedelta
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from helpers import make_booking

from carrental.api.factory import create_app
from carrental.domain.strategies import build_strategies
from carrental.payments.card_client import (
    CardServiceUnavailableError,
    CardValidationRejectedError,
)


@pytest.fixture
def card():
    approver = MagicMock()
    approver.validate_payment.return_value = True
    return approver


@pytest.fixture
def client(store, card):
    """Public app wired to an in-memory store and a fake card service."""
    with patch(
        "carrental.api.routes.bookings._get_booking_store", return_value=store
    ), patch(
        "carrental.api.routes.bookings._get_strategies",
        return_value=build_strategies(card),
    ):
        yield TestClient(create_app(role="public"), raise_server_exceptions=False)


def _payload(**overrides):
    start = date.today() + timedelta(days=10)
    body = {
        "customerName": "Jane Doe",
        "vehicleId": "VH-001",
        "vehicleCategory": "SEDAN",
        "rentalStartDate": start.isoformat(),
        "rentalEndDate": (start + timedelta(days=3)).isoformat(),
        "paymentMode": "BANK_TRANSFER",
        "paymentReference": "REF-0001",
        "paymentAmount": 200.00,
    }
    body.update(overrides)
    return body


class TestCreateBooking:
    @pytest.mark.parametrize(
        "mode, status",
        [
            ("DIGITAL_WALLET", "CONFIRMED"),
            ("CREDIT_CARD", "CONFIRMED"),
            ("BANK_TRANSFER", "PENDING_PAYMENT"),
        ],
    )
    def test_status_by_payment_mode(self, client, store, mode, status):
        response = client.post("/api/v1/bookings", json=_payload(paymentMode=mode))

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == status
        assert body["bookingId"].startswith("BKG")
        assert len(body["bookingId"]) == 10
        assert store.get(body["bookingId"]).status == status

    def test_card_declined_is_422(self, client, store, card):
        card.validate_payment.return_value = False

        response = client.post("/api/v1/bookings", json=_payload(paymentMode="CREDIT_CARD"))

        assert response.status_code == 422
        assert response.json()["errorCode"] == "PAYMENT_REJECTED"
        assert not store.exists("BKG0000001")

    def test_card_client_error_is_422(self, client, card):
        card.validate_payment.side_effect = CardValidationRejectedError(400, "bad reference")

        response = client.post("/api/v1/bookings", json=_payload(paymentMode="CREDIT_CARD"))
        assert response.status_code == 422

    def test_card_service_down_is_503(self, client, card):
        card.validate_payment.side_effect = CardServiceUnavailableError("circuit open")

        response = client.post("/api/v1/bookings", json=_payload(paymentMode="CREDIT_CARD"))

        assert response.status_code == 503
        assert response.json()["errorCode"] == "SERVICE_UNAVAILABLE"

    def test_end_before_start_is_400(self, client):
        start = date.today() + timedelta(days=10)
        response = client.post(
            "/api/v1/bookings",
            json=_payload(
                rentalStartDate=start.isoformat(),
                rentalEndDate=(start - timedelta(days=1)).isoformat(),
            ),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["errorCode"] == "VALIDATION_ERROR"
        assert "after rental start" in body["message"]

    def test_too_long_rental_is_400(self, client):
        start = date.today() + timedelta(days=10)
        response = client.post(
            "/api/v1/bookings",
            json=_payload(rentalEndDate=(start + timedelta(days=22)).isoformat()),
        )
        assert response.status_code == 400
        assert "21 days" in response.json()["message"]

    def test_field_errors_map(self, client):
        response = client.post(
            "/api/v1/bookings",
            json=_payload(customerName="J", paymentAmount=0, vehicleCategory="TANK"),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["status"] == 400
        assert body["message"] == "Validation failed"
        assert set(body["errors"]) == {"customerName", "paymentAmount", "vehicleCategory"}

    def test_missing_field(self, client):
        body = _payload()
        del body["paymentReference"]

        response = client.post("/api/v1/bookings", json=body)
        assert response.status_code == 400
        assert "paymentReference" in response.json()["errors"]


class TestReadBooking:
    def test_found(self, client, store):
        store.insert(make_booking("BKG0000042"))

        response = client.get("/api/v1/bookings/BKG0000042")

        assert response.status_code == 200
        assert response.json() == {"bookingId": "BKG0000042", "status": "PENDING_PAYMENT"}

    def test_not_found(self, client):
        response = client.get("/api/v1/bookings/BKG0000404")

        assert response.status_code == 404
        body = response.json()
        assert body["errorCode"] == "BOOKING_NOT_FOUND"
        assert body["message"] == "Booking not found with ID: BKG0000404"
        assert "timestamp" in body


class TestCancelBooking:
    def test_pending_cancelled(self, client, store):
        store.insert(make_booking("BKG0000042"))

        response = client.delete("/api/v1/bookings/BKG0000042")

        assert response.status_code == 200
        assert response.json() == {"bookingId": "BKG0000042", "status": "CANCELLED"}
        assert store.get("BKG0000042").status == "CANCELLED"

    def test_confirmed_is_409(self, client, store):
        store.insert(make_booking("BKG0000042", status="CONFIRMED"))

        response = client.delete("/api/v1/bookings/BKG0000042")

        assert response.status_code == 409
        assert response.json()["errorCode"] == "INVALID_STATE"

    def test_missing_is_404(self, client):
        assert client.delete("/api/v1/bookings/BKG0000404").status_code == 404


def test_unexpected_error_is_500(store):
    broken = MagicMock()
    broken.get.side_effect = RuntimeError("disk on fire")
    with patch("carrental.api.routes.bookings._get_booking_store", return_value=broken):
        client = TestClient(create_app(role="public"), raise_server_exceptions=False)
        response = client.get("/api/v1/bookings/BKG0000001")

    assert response.status_code == 500
    body = response.json()
    assert body["errorCode"] == "INTERNAL_ERROR"
    assert "disk on fire" not in body["message"]
