"""Shared pytest fixtures for carrental tests."""
import sys
sys.dont_write_bytecode = True

from datetime import date, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402

from carrental.domain.models import BookingRequest  # noqa: E402
from carrental.feed.dead_letters import (  # noqa: E402
    InMemoryDeadLetterPublisher,
    reset_dead_letter_publisher,
)
from carrental.infra.leases import reset_lease_lock  # noqa: E402
from carrental.infra.stores import (  # noqa: E402
    InMemoryBookingStore,
    InMemoryPaymentLedger,
    reset_stores,
)


@pytest.fixture(autouse=True)
def _memory_backends(monkeypatch):
    """Force in-memory backends and drop process-wide singletons between tests."""
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("DEAD_LETTER_BACKEND", "memory")
    reset_stores()
    reset_lease_lock()
    reset_dead_letter_publisher()
    yield
    reset_stores()
    reset_lease_lock()
    reset_dead_letter_publisher()


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def ledger():
    return InMemoryPaymentLedger()


@pytest.fixture
def dead_letters():
    return InMemoryDeadLetterPublisher()


@pytest.fixture
def make_request():
    """Factory for BookingRequest with sensible defaults."""

    def _make(**overrides) -> BookingRequest:
        start = date.today() + timedelta(days=10)
        fields = {
            "customer_name": "Jane Doe",
            "vehicle_id": "VH-001",
            "vehicle_category": "SEDAN",
            "rental_start_date": start,
            "rental_end_date": start + timedelta(days=3),
            "payment_mode": "BANK_TRANSFER",
            "payment_reference": "REF-0001",
            "payment_amount": Decimal("200.00"),
        }
        fields.update(overrides)
        return BookingRequest(**fields)

    return _make
