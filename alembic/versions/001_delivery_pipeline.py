"""Orders, order change feed and processed events

Revision ID: 001
Revises:
Create Date: 2026-10-19

Creates: orders, order_change_events, processed_events
Indexes: one CHANGES_REQUESTED order per gallery, pending change records
"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. Orders ─────────────────────────────────────────────────────────
    op.execute("""
        CREATE TABLE orders (
            gallery_id VARCHAR(128) NOT NULL,
            order_id VARCHAR(128) NOT NULL,
            delivery_status VARCHAR(32) NOT NULL DEFAULT 'CLIENT_SELECTING',
            selected_keys JSONB NOT NULL DEFAULT '[]',
            change_requests_blocked BOOLEAN NOT NULL DEFAULT false,
            final_zip_generating BOOLEAN,
            final_zip_generating_since TIMESTAMPTZ,
            final_zip_files_hash VARCHAR(64),
            final_zip_error_attempts INTEGER NOT NULL DEFAULT 0,
            final_zip_last_error TEXT,
            delivered_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            PRIMARY KEY (gallery_id, order_id),
            CONSTRAINT ck_orders_delivery_status CHECK (delivery_status IN (
                'CLIENT_SELECTING', 'CLIENT_APPROVED', 'CHANGES_REQUESTED',
                'PREPARING_DELIVERY', 'DELIVERED'
            ))
        );
    """)
    op.execute("CREATE INDEX ix_orders_delivery_status ON orders (delivery_status);")
    op.execute("""
        CREATE UNIQUE INDEX uq_orders_gallery_changes_requested
            ON orders (gallery_id)
            WHERE delivery_status = 'CHANGES_REQUESTED';
    """)
    op.execute("""
        CREATE INDEX ix_orders_final_zip_generating
            ON orders (final_zip_generating_since)
            WHERE final_zip_generating IS TRUE;
    """)

    # ── 2. Order change feed ──────────────────────────────────────────────
    op.execute("""
        CREATE TABLE order_change_events (
            sequence_number BIGSERIAL PRIMARY KEY,
            event_id UUID NOT NULL UNIQUE,
            event_name VARCHAR(16) NOT NULL,
            gallery_id VARCHAR(128) NOT NULL,
            order_id VARCHAR(128) NOT NULL,
            old_image JSONB,
            new_image JSONB,
            status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 5,
            last_error TEXT,
            processed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            CONSTRAINT ck_order_change_events_event_name
                CHECK (event_name IN ('INSERT', 'MODIFY', 'REMOVE')),
            CONSTRAINT ck_order_change_events_status
                CHECK (status IN ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED'))
        );
    """)
    op.execute("""
        CREATE INDEX ix_order_change_events_order
            ON order_change_events (gallery_id, order_id);
    """)
    op.execute("""
        CREATE INDEX ix_order_change_events_pending
            ON order_change_events (sequence_number)
            WHERE status = 'PENDING';
    """)

    # ── 3. Processed events (idempotency) ─────────────────────────────────
    op.execute("""
        CREATE TABLE processed_events (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            event_id UUID NOT NULL UNIQUE,
            sequence_number BIGINT,
            event_name VARCHAR(32) NOT NULL,
            gallery_id VARCHAR(128) NOT NULL,
            order_id VARCHAR(128) NOT NULL,
            handler_name VARCHAR(512) NOT NULL,
            processed_at TIMESTAMPTZ NOT NULL DEFAULT now(),
            expires_at TIMESTAMPTZ NOT NULL
        );
    """)
    op.execute("CREATE INDEX ix_processed_events_expires_at ON processed_events (expires_at);")
    op.execute("CREATE INDEX ix_processed_events_order ON processed_events (gallery_id, order_id);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS processed_events;")
    op.execute("DROP TABLE IF EXISTS order_change_events;")
    op.execute("DROP TABLE IF EXISTS orders;")
