"""Tests for booking store and payment ledger backends."""

import os
from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal

import pytest

from helpers import make_booking

from carrental.domain.models import ProcessedPaymentEvent
from carrental.infra.stores import (
    ConcurrentModificationError,
    InMemoryBookingStore,
    InMemoryPaymentLedger,
    PostgresBookingStore,
    get_booking_store,
    get_payment_ledger,
    reset_stores,
)

TODAY = date(2026, 11, 1)


class TestInMemoryBookingStore:
    def test_sequence_is_monotonic(self, store):
        first = store.next_booking_sequence()
        second = store.next_booking_sequence()
        assert second == first + 1

    def test_insert_sets_version_and_timestamps(self, store):
        saved = store.insert(make_booking("BKG0000001"))
        assert saved.version == 0
        assert saved.id is not None
        assert saved.created_at is not None
        assert saved.updated_at == saved.created_at

    def test_insert_duplicate_id_rejected(self, store):
        store.insert(make_booking("BKG0000001"))
        with pytest.raises(ValueError, match="Duplicate"):
            store.insert(make_booking("BKG0000001"))

    def test_exists(self, store):
        assert not store.exists("BKG0000001")
        store.insert(make_booking("BKG0000001"))
        assert store.exists("BKG0000001")

    def test_get_missing_returns_none(self, store):
        assert store.get("BKG9999999") is None

    def test_get_returns_copy(self, store):
        store.insert(make_booking("BKG0000001"))
        loaded = store.get("BKG0000001")
        loaded.status = "CANCELLED"
        assert store.get("BKG0000001").status == "PENDING_PAYMENT"

    def test_update_bumps_version(self, store):
        store.insert(make_booking("BKG0000001"))
        booking = store.get("BKG0000001")
        booking.amount_received = Decimal("50.00")
        updated = store.update(booking)
        assert updated.version == 1
        assert store.get("BKG0000001").amount_received == Decimal("50.00")

    def test_update_with_stale_version_raises(self, store):
        store.insert(make_booking("BKG0000001"))
        first = store.get("BKG0000001")
        second = store.get("BKG0000001")

        first.amount_received = Decimal("100.00")
        store.update(first)

        second.amount_received = Decimal("100.00")
        with pytest.raises(ConcurrentModificationError) as exc_info:
            store.update(second)
        assert exc_info.value.booking_id == "BKG0000001"
        assert store.get("BKG0000001").amount_received == Decimal("100.00")

    def test_update_missing_raises(self, store):
        with pytest.raises(ConcurrentModificationError):
            store.update(make_booking("BKG0000404"))


class TestInMemoryAutoCancelQueries:
    def _seed(self, store):
        store.insert(make_booking("BKG0000001", start_in_days=1, today=TODAY))
        store.insert(make_booking("BKG0000002", start_in_days=5, today=TODAY))
        store.insert(
            make_booking(
                "BKG0000003",
                start_in_days=1,
                today=TODAY,
                amount_received=Decimal("200.00"),
            )
        )
        store.insert(
            make_booking("BKG0000004", start_in_days=0, today=TODAY, payment_mode="CREDIT_CARD")
        )

    def test_find_returns_only_eligible(self, store):
        self._seed(store)
        assert store.find_auto_cancel_ids(TODAY + timedelta(days=2)) == ["BKG0000001"]

    def test_batch_cancel_rechecks_predicate(self, store):
        self._seed(store)
        deadline = TODAY + timedelta(days=2)
        ids = store.find_auto_cancel_ids(deadline)

        # Paid in full between scan and update
        booking = store.get("BKG0000001")
        booking.amount_received = Decimal("200.00")
        booking.status = "CONFIRMED"
        store.update(booking)

        assert store.batch_cancel(ids, deadline) == 0
        assert store.get("BKG0000001").status == "CONFIRMED"

    def test_batch_cancel_bumps_version(self, store):
        self._seed(store)
        deadline = TODAY + timedelta(days=2)
        assert store.batch_cancel(["BKG0000001", "BKG0000002"], deadline) == 1
        cancelled = store.get("BKG0000001")
        assert cancelled.status == "CANCELLED"
        assert cancelled.version == 1
        assert store.get("BKG0000002").status == "PENDING_PAYMENT"


class TestInMemoryPaymentLedger:
    def test_record_then_has_processed(self, ledger):
        assert not ledger.has_processed("PAY-1")
        assert ledger.record(ProcessedPaymentEvent("PAY-1", "BKG0000001", "SUCCESS"))
        assert ledger.has_processed("PAY-1")

    def test_second_record_ignored(self, ledger):
        ledger.record(ProcessedPaymentEvent("PAY-1", "BKG0000001", "SUCCESS"))
        assert not ledger.record(ProcessedPaymentEvent("PAY-1", "BKG0000001", "FAILED"))
        assert ledger.get("PAY-1").outcome == "SUCCESS"

    def test_error_truncated(self, ledger):
        ledger.record(
            ProcessedPaymentEvent("PAY-1", "UNKNOWN", "FAILED", error_message="x" * 5000)
        )
        assert len(ledger.get("PAY-1").error_message) == 1000

    def test_processed_at_set(self, ledger):
        ledger.record(ProcessedPaymentEvent("PAY-1", "BKG0000001", "SUCCESS"))
        assert ledger.get("PAY-1").processed_at is not None


class TestBackendSelection:
    def test_memory_is_default(self, monkeypatch):
        monkeypatch.delenv("STORE_BACKEND", raising=False)
        reset_stores()
        assert isinstance(get_booking_store(), InMemoryBookingStore)
        assert isinstance(get_payment_ledger(), InMemoryPaymentLedger)

    def test_singleton(self):
        assert get_booking_store() is get_booking_store()

    def test_postgres_backend(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "postgres")
        reset_stores()
        assert isinstance(get_booking_store(), PostgresBookingStore)

    def test_unknown_backend_raises(self, monkeypatch):
        monkeypatch.setenv("STORE_BACKEND", "redis")
        reset_stores()
        with pytest.raises(ValueError, match="STORE_BACKEND"):
            get_booking_store()


# Skip integration tests if DATABASE_URL is not set
_skip_no_db = pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping Postgres store tests",
)


@pytest.fixture
def pg_store():
    """Postgres store with test rows cleaned up after the test."""
    from carrental.infra.db import txn

    created: list[str] = []
    pg = PostgresBookingStore()
    yield pg, created
    with txn() as cur:
        cur.execute("DELETE FROM bookings WHERE booking_id = ANY(%s)", (created,))


@_skip_no_db
class TestPostgresBookingStore:
    def _insert(self, pg, created, **kwargs):
        booking_id = f"BKG{pg.next_booking_sequence() % 10**7:07d}"
        created.append(booking_id)
        return pg.insert(make_booking(booking_id, **kwargs))

    def test_insert_and_get(self, pg_store):
        pg, created = pg_store
        saved = self._insert(pg, created)
        loaded = pg.get(saved.booking_id)
        assert loaded.booking_id == saved.booking_id
        assert loaded.version == 0
        assert loaded.payment_amount == Decimal("200.00")

    def test_versioned_update_conflict(self, pg_store):
        pg, created = pg_store
        saved = self._insert(pg, created)

        pg.update(replace(saved, amount_received=Decimal("50.00")))
        with pytest.raises(ConcurrentModificationError):
            pg.update(replace(saved, amount_received=Decimal("60.00")))
        assert pg.get(saved.booking_id).amount_received == Decimal("50.00")

    def test_auto_cancel_predicate_matches_memory(self, pg_store):
        pg, created = pg_store
        today = date.today()
        due = self._insert(pg, created, start_in_days=1, today=today)
        later = self._insert(pg, created, start_in_days=5, today=today)
        paid = self._insert(
            pg, created, start_in_days=1, today=today, amount_received=Decimal("200.00")
        )

        deadline = today + timedelta(days=2)
        ids = pg.find_auto_cancel_ids(deadline)
        assert due.booking_id in ids
        assert later.booking_id not in ids
        assert paid.booking_id not in ids

        assert pg.batch_cancel([due.booking_id, later.booking_id], deadline) == 1
        assert pg.get(due.booking_id).status == "CANCELLED"
        assert pg.get(later.booking_id).status == "PENDING_PAYMENT"
