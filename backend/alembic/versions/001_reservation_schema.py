# backend/alembic/versions/001_reservation_schema.py
"""Reservation schema - resources, bookings, payments, settings, audit trail

Revision ID: 001_reservation_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000

On PostgreSQL the bookings table also carries an exclusion constraint so two
live bookings can never overlap on the same resource, even when concurrent
inserts both pass the application-level check.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_reservation_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _is_postgres() -> bool:
    bind = op.get_bind()
    return bind is not None and bind.dialect.name == "postgresql"


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create reservation tables."""
    is_postgres = _is_postgres()

    op.create_table(
        "resources",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("hourly_rate >= 0", name="check_resource_rate_non_negative"),
    )
    op.create_index("ix_resources_id", "resources", ["id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("resource_id", sa.String(26), nullable=False),
        sa.Column("requester_id", sa.String(26), nullable=True),
        sa.Column("requester_email", sa.String(255), nullable=True),
        sa.Column("guest_name", sa.String(200), nullable=True),
        sa.Column("guest_email", sa.String(255), nullable=True),
        sa.Column("guest_phone", sa.String(50), nullable=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("attendees", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("total_price", sa.Numeric(14, 4), nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("approved_by", sa.String(26), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        sa.Column("rejected_by", sa.String(26), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("payment_received", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("payment_received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_received_by", sa.String(26), nullable=True),
        sa.Column("invoice_issued", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("invoice_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_issued_by", sa.String(26), nullable=True),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(26), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["resource_id"], ["resources.id"]),
        sa.CheckConstraint("start_time < end_time", name="check_booking_time_order"),
        sa.CheckConstraint("total_price >= 0", name="check_booking_price_non_negative"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_requester_id", "bookings", ["requester_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index(
        "ix_bookings_resource_window", "bookings", ["resource_id", "start_time", "end_time"]
    )
    op.create_index("ix_bookings_status_payment", "bookings", ["status", "payment_status"])

    if is_postgres:
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            """
            ALTER TABLE bookings
              ADD CONSTRAINT bookings_no_overlap_per_resource
              EXCLUDE USING gist (
                resource_id WITH =,
                tstzrange(start_time, end_time, '[)') WITH &&
              )
              WHERE (status IN ('PENDING','APPROVED'))
            """
        )

    op.create_table(
        "booking_additional_resources",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("resource_id", sa.String(26), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["resource_id"], ["resources.id"]),
        sa.CheckConstraint("quantity >= 1", name="check_additional_quantity_positive"),
    )
    op.create_index(
        "ix_booking_additional_resources_booking_id",
        "booking_additional_resources",
        ["booking_id"],
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("method", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("stripe_session_id", sa.String(255), nullable=True),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=True),
        sa.Column("checkout_url", sa.String(2048), nullable=True),
        sa.Column("checkout_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bank_transfer_code", sa.String(64), nullable=True),
        sa.Column("bank_transfer_note", sa.String(500), nullable=True),
        sa.Column(
            "bank_transfer_verified", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("bank_transfer_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_by", sa.String(26), nullable=True),
        sa.Column("refunded_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_refund_id", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("booking_id", name="uq_payments_booking_id"),
        sa.UniqueConstraint("stripe_session_id", name="uq_payments_stripe_session_id"),
        sa.UniqueConstraint(
            "stripe_payment_intent_id", name="uq_payments_stripe_payment_intent_id"
        ),
        sa.UniqueConstraint("bank_transfer_code", name="uq_payments_bank_transfer_code"),
    )
    op.create_index("ix_payments_status", "payments", ["status"])

    op.create_table(
        "payment_settings",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("stripe_enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("stripe_publishable_key", sa.String(255), nullable=True),
        sa.Column("stripe_secret_key", sa.Text(), nullable=True),
        sa.Column("stripe_webhook_secret", sa.Text(), nullable=True),
        sa.Column(
            "bank_transfer_enabled", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("bank_name", sa.String(200), nullable=True),
        sa.Column("bank_account_holder", sa.String(200), nullable=True),
        sa.Column("bank_iban", sa.String(64), nullable=True),
        sa.Column("bank_bic", sa.String(32), nullable=True),
        sa.Column("bank_address", sa.String(500), nullable=True),
        sa.Column("bank_transfer_note", sa.String(500), nullable=True),
        sa.Column("payment_deadline_days", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("payment_reminder_hours", sa.Integer(), nullable=False, server_default="24"),
        sa.Column("send_reminders", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("currency", sa.String(3), nullable=False, server_default="EUR"),
        sa.Column("tax_rate", sa.Numeric(5, 2), nullable=False, server_default="22"),
        sa.Column("invoice_prefix", sa.String(20), nullable=False, server_default="INV"),
        sa.Column("invoice_start_number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_invoice_number", sa.Integer(), nullable=False, server_default="1"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    metadata_type = postgresql.JSONB(astext_type=sa.Text()) if is_postgres else sa.JSON()
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(26), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("actor_email", sa.String(255), nullable=True),
        sa.Column("actor_role", sa.String(30), nullable=True),
        sa.Column("action", sa.String(30), nullable=False),
        sa.Column("entity", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=True),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("metadata", metadata_type, nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity", "entity_id"])


def downgrade() -> None:
    """Drop reservation tables."""
    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("payment_settings")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_table("payments")
    op.drop_index(
        "ix_booking_additional_resources_booking_id", table_name="booking_additional_resources"
    )
    op.drop_table("booking_additional_resources")
    if _is_postgres():
        op.execute("ALTER TABLE bookings DROP CONSTRAINT IF EXISTS bookings_no_overlap_per_resource")
    op.drop_index("ix_bookings_status_payment", table_name="bookings")
    op.drop_index("ix_bookings_resource_window", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_requester_id", table_name="bookings")
    op.drop_index("ix_bookings_id", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_resources_id", table_name="resources")
    op.drop_table("resources")
