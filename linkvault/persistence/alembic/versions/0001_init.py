"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "partners",
        sa.Column("id", sa.String(), primary_key=True),
        # PII columns hold field-cipher ciphertext.
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("state", sa.Text(), nullable=False),
        sa.Column("organization_name", sa.Text(), nullable=False),
        sa.Column("website_link", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("business_address", sa.Text(), nullable=True),
        sa.Column("city", sa.Text(), nullable=True),
        sa.Column("zip_code", sa.Text(), nullable=True),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("secure_links_generated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_revenue", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_partners_email", "partners", ["email"], unique=True)

    op.create_table(
        "brand_settings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("brand_name", sa.String(), nullable=False),
        sa.Column("logo_url", sa.String(), nullable=True),
        sa.Column("primary_color", sa.String(), nullable=False, server_default="#3B82F6"),
        sa.Column("secondary_color", sa.String(), nullable=False, server_default="#10B981"),
        sa.Column("website_url", sa.String(), nullable=True),
        sa.Column("is_deployed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_deployed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_brand_settings_owner_id", "brand_settings", ["owner_id"], unique=True)

    op.create_table(
        "secure_links",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("token", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("session_ref", sa.String(), nullable=False),
        sa.Column("batch_no", sa.String(), nullable=False, server_default="basicstarter"),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_sold", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("sold_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_secure_links_token", "secure_links", ["token"], unique=True)
    op.create_index("ix_secure_links_owner_id", "secure_links", ["owner_id"])
    # Listing and inventory selection filter on owner plus both state flags.
    op.create_index("ix_secure_links_owner_state", "secure_links", ["owner_id", "is_used", "is_sold"])
    op.create_index("ix_secure_links_expires_at", "secure_links", ["expires_at"])

    op.create_table(
        "partner_transactions",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column("customer_email", sa.String(), nullable=True),
        sa.Column("plan_name", sa.String(), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(), nullable=False, server_default="USD"),
        sa.Column("payment_method", sa.String(), nullable=False, server_default="stripe"),
        sa.Column("status", sa.String(), nullable=False, server_default="completed"),
        sa.Column("transaction_date", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_partner_transactions_transaction_id", "partner_transactions", ["transaction_id"], unique=True
    )
    op.create_index("ix_partner_transactions_owner_id", "partner_transactions", ["owner_id"])
    op.create_index("ix_partner_transactions_status", "partner_transactions", ["status"])
    op.create_index(
        "ix_partner_transactions_owner_date", "partner_transactions", ["owner_id", "transaction_date"]
    )
    op.create_index(
        "ix_partner_transactions_owner_type", "partner_transactions", ["owner_id", "transaction_type"]
    )

    op.create_table(
        "idempotency_records",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("transaction_id", sa.String(), nullable=False),
        sa.Column("scope", sa.String(), nullable=False),
        sa.Column("result_json", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    # Unique key is the duplicate-delivery guard for gateway events and sales.
    op.create_index(
        "ix_idempotency_records_transaction_id", "idempotency_records", ["transaction_id"], unique=True
    )
    op.create_index("ix_idempotency_records_expires_at", "idempotency_records", ["expires_at"])

    op.create_table(
        "notification_jobs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("recipient_email", sa.String(), nullable=True),
        sa.Column("payload_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notification_jobs_event_type", "notification_jobs", ["event_type"])
    op.create_index("ix_notification_jobs_owner_id", "notification_jobs", ["owner_id"])
    op.create_index(
        "ix_notification_jobs_status_next_attempt", "notification_jobs", ["status", "next_attempt_at"]
    )


def downgrade() -> None:
    op.drop_table("notification_jobs")
    op.drop_table("idempotency_records")
    op.drop_table("partner_transactions")
    op.drop_table("secure_links")
    op.drop_table("brand_settings")
    op.drop_table("partners")
