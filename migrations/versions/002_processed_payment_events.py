"""Idempotency ledger for bank-transfer payment events.

Revision ID: 002_processed_payment_events
Revises: 001_bookings
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op


revision = "002_processed_payment_events"
down_revision = "001_bookings"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE processed_payment_events (
            payment_id VARCHAR(255) PRIMARY KEY,
            booking_id VARCHAR(255) NOT NULL,
            status VARCHAR(20) NOT NULL
                CHECK (status IN ('SUCCESS', 'FAILED', 'SKIPPED', 'DUPLICATE')),
            error_message VARCHAR(1000),
            processed_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
        """
    )
    op.execute(
        "CREATE INDEX idx_processed_payment_events_booking ON processed_payment_events (booking_id)"
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS processed_payment_events")
