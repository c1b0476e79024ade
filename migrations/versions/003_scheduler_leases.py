"""Named leases for recurring jobs.

Revision ID: 003_scheduler_leases
Revises: 002_processed_payment_events
Create Date: 2026-10-18
"""

from __future__ import annotations

from alembic import op


revision = "003_scheduler_leases"
down_revision = "002_processed_payment_events"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE TABLE scheduler_leases (
            name VARCHAR(64) PRIMARY KEY,
            locked_until TIMESTAMPTZ NOT NULL,
            locked_at TIMESTAMPTZ NOT NULL,
            locked_by VARCHAR(255) NOT NULL
        )
        """
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS scheduler_leases")
