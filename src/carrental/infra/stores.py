"""Booking store and idempotency ledger backends.

Provides multiple backends selectable via STORE_BACKEND env var:
- memory (default): process-local dicts guarded by a lock (for dev/tests)
- postgres: psycopg2 repositories, one transaction per operation
"""

from __future__ import annotations

import os
import threading
from dataclasses import replace
from datetime import date
from typing import Protocol

from carrental.domain.models import STATUS_CANCELLED, Booking, ProcessedPaymentEvent
from carrental.domain.rules import is_auto_cancel_eligible
from carrental.infra.db import txn
from carrental.infra.repositories import bookings_repository, payment_events_repository
from carrental.infra.repositories.payment_events_repository import MAX_ERROR_LENGTH
from carrental.infra.time import utc_now


class ConcurrentModificationError(Exception):
    """A booking changed between read and write (optimistic version clash)."""

    def __init__(self, booking_id: str, expected_version: int):
        self.booking_id = booking_id
        self.expected_version = expected_version
        super().__init__(
            f"Booking {booking_id} was modified concurrently "
            f"(expected version {expected_version})"
        )


class BookingStore(Protocol):
    """Persistence contract for booking records."""

    def next_booking_sequence(self) -> int: ...

    def exists(self, booking_id: str) -> bool: ...

    def insert(self, booking: Booking) -> Booking: ...

    def get(self, booking_id: str) -> Booking | None: ...

    def update(self, booking: Booking) -> Booking:
        """Persist status/amount if the row is still at booking.version.

        Raises:
            ConcurrentModificationError: On version mismatch.
        """
        ...

    def find_auto_cancel_ids(self, deadline: date) -> list[str]: ...

    def batch_cancel(self, booking_ids: list[str], deadline: date) -> int: ...


class PaymentLedger(Protocol):
    """Persistence contract for processed payment event ids."""

    def has_processed(self, payment_id: str) -> bool: ...

    def record(self, event: ProcessedPaymentEvent) -> bool: ...

    def get(self, payment_id: str) -> ProcessedPaymentEvent | None: ...


class InMemoryBookingStore:
    """Booking store backed by a dict. Copies in and out, never shares rows."""

    def __init__(self) -> None:
        self._rows: dict[str, Booking] = {}
        self._sequence = 0
        self._lock = threading.Lock()

    def next_booking_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def exists(self, booking_id: str) -> bool:
        with self._lock:
            return booking_id in self._rows

    def insert(self, booking: Booking) -> Booking:
        with self._lock:
            if booking.booking_id in self._rows:
                raise ValueError(f"Duplicate booking id: {booking.booking_id}")
            now = utc_now()
            stored = replace(
                booking,
                id=str(len(self._rows) + 1),
                version=0,
                created_at=now,
                updated_at=now,
            )
            self._rows[booking.booking_id] = stored
            return replace(stored)

    def get(self, booking_id: str) -> Booking | None:
        with self._lock:
            row = self._rows.get(booking_id)
            return replace(row) if row is not None else None

    def update(self, booking: Booking) -> Booking:
        with self._lock:
            current = self._rows.get(booking.booking_id)
            if current is None or current.version != booking.version:
                raise ConcurrentModificationError(booking.booking_id, booking.version)
            stored = replace(
                current,
                status=booking.status,
                amount_received=booking.amount_received,
                version=current.version + 1,
                updated_at=utc_now(),
            )
            self._rows[booking.booking_id] = stored
            return replace(stored)

    def find_auto_cancel_ids(self, deadline: date) -> list[str]:
        with self._lock:
            eligible = [
                row for row in self._rows.values()
                if is_auto_cancel_eligible(row, deadline)
            ]
        eligible.sort(key=lambda row: (row.rental_start_date, row.booking_id))
        return [row.booking_id for row in eligible]

    def batch_cancel(self, booking_ids: list[str], deadline: date) -> int:
        cancelled = 0
        now = utc_now()
        with self._lock:
            for booking_id in booking_ids:
                row = self._rows.get(booking_id)
                if row is None or not is_auto_cancel_eligible(row, deadline):
                    continue
                self._rows[booking_id] = replace(
                    row,
                    status=STATUS_CANCELLED,
                    version=row.version + 1,
                    updated_at=now,
                )
                cancelled += 1
        return cancelled


class InMemoryPaymentLedger:
    """Idempotency ledger backed by a dict."""

    def __init__(self) -> None:
        self._events: dict[str, ProcessedPaymentEvent] = {}
        self._lock = threading.Lock()

    def has_processed(self, payment_id: str) -> bool:
        with self._lock:
            return payment_id in self._events

    def record(self, event: ProcessedPaymentEvent) -> bool:
        error_message = event.error_message
        if error_message is not None:
            error_message = error_message[:MAX_ERROR_LENGTH]
        with self._lock:
            if event.payment_id in self._events:
                return False
            self._events[event.payment_id] = replace(
                event,
                error_message=error_message,
                processed_at=event.processed_at or utc_now(),
            )
            return True

    def get(self, payment_id: str) -> ProcessedPaymentEvent | None:
        with self._lock:
            return self._events.get(payment_id)


class PostgresBookingStore:
    """Booking store over the bookings table; one transaction per call."""

    def next_booking_sequence(self) -> int:
        with txn() as cur:
            return bookings_repository.next_booking_sequence(cur)

    def exists(self, booking_id: str) -> bool:
        with txn() as cur:
            return bookings_repository.booking_id_exists(cur, booking_id)

    def insert(self, booking: Booking) -> Booking:
        with txn() as cur:
            return bookings_repository.insert_booking(cur, booking)

    def get(self, booking_id: str) -> Booking | None:
        with txn() as cur:
            return bookings_repository.get_booking(cur, booking_id)

    def update(self, booking: Booking) -> Booking:
        with txn() as cur:
            updated = bookings_repository.update_booking_versioned(cur, booking)
        if updated is None:
            raise ConcurrentModificationError(booking.booking_id, booking.version)
        return updated

    def find_auto_cancel_ids(self, deadline: date) -> list[str]:
        with txn() as cur:
            return bookings_repository.find_auto_cancel_ids(cur, deadline)

    def batch_cancel(self, booking_ids: list[str], deadline: date) -> int:
        with txn() as cur:
            return bookings_repository.batch_cancel(cur, booking_ids, deadline)


class PostgresPaymentLedger:
    """Idempotency ledger over the processed_payment_events table."""

    def has_processed(self, payment_id: str) -> bool:
        with txn() as cur:
            return payment_events_repository.payment_event_exists(cur, payment_id)

    def record(self, event: ProcessedPaymentEvent) -> bool:
        with txn() as cur:
            return payment_events_repository.insert_processed_event(cur, event)

    def get(self, payment_id: str) -> ProcessedPaymentEvent | None:
        with txn() as cur:
            return payment_events_repository.get_processed_event(cur, payment_id)


_booking_store: BookingStore | None = None
_payment_ledger: PaymentLedger | None = None
_singleton_lock = threading.Lock()


def _backend() -> str:
    backend = os.environ.get("STORE_BACKEND", "memory")
    if backend not in ("memory", "postgres"):
        raise ValueError(f"Unknown STORE_BACKEND: {backend}")
    return backend


def get_booking_store() -> BookingStore:
    """Get the process-wide booking store for the configured backend."""
    global _booking_store
    with _singleton_lock:
        if _booking_store is None:
            if _backend() == "postgres":
                _booking_store = PostgresBookingStore()
            else:
                _booking_store = InMemoryBookingStore()
        return _booking_store


def get_payment_ledger() -> PaymentLedger:
    """Get the process-wide payment ledger for the configured backend."""
    global _payment_ledger
    with _singleton_lock:
        if _payment_ledger is None:
            if _backend() == "postgres":
                _payment_ledger = PostgresPaymentLedger()
            else:
                _payment_ledger = InMemoryPaymentLedger()
        return _payment_ledger


def reset_stores() -> None:
    """Drop the process-wide store singletons (useful for testing)."""
    global _booking_store, _payment_ledger
    with _singleton_lock:
        _booking_store = None
        _payment_ledger = None
