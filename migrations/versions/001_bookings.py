"""Bookings table and booking id sequence.

Revision ID: 001_bookings
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op


# revision identifiers, used by Alembic.
revision = "001_bookings"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")
    op.execute("CREATE SEQUENCE IF NOT EXISTS bookings_booking_seq")
    op.execute(
        """
        CREATE TABLE bookings (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            booking_id VARCHAR(10) NOT NULL UNIQUE,
            customer_name VARCHAR(100) NOT NULL,
            vehicle_id VARCHAR(50) NOT NULL,
            vehicle_category VARCHAR(20) NOT NULL
                CHECK (vehicle_category IN ('SEDAN', 'SUV', 'COMPACT', 'LUXURY')),
            rental_start_date DATE NOT NULL,
            rental_end_date DATE NOT NULL,
            payment_mode VARCHAR(20) NOT NULL
                CHECK (payment_mode IN ('DIGITAL_WALLET', 'CREDIT_CARD', 'BANK_TRANSFER')),
            payment_reference VARCHAR(100) NOT NULL,
            status VARCHAR(20) NOT NULL
                CHECK (status IN ('PENDING_PAYMENT', 'CONFIRMED', 'CANCELLED')),
            payment_amount NUMERIC(10, 2) NOT NULL,
            amount_received NUMERIC(10, 2) NOT NULL DEFAULT 0,
            version BIGINT NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT bookings_rental_dates_check CHECK (rental_end_date > rental_start_date)
        )
        """
    )
    # Auto-cancel sweep scans by mode, status and start date
    op.execute(
        """
        CREATE INDEX idx_bookings_auto_cancel
        ON bookings (payment_mode, status, rental_start_date)
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS bookings")
    op.execute("DROP SEQUENCE IF EXISTS bookings_booking_seq")
