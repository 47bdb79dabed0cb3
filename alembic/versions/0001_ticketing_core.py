"""ticketing core tables

Revision ID: 0001_ticketing_core
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_ticketing_core"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _enum(name: str, *values: str) -> sa.Enum:
    # 与模型一致：VARCHAR + CHECK，不建 PG 原生 ENUM
    return sa.Enum(*values, name=name, native_enum=False, length=32, create_constraint=True)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("category_name", sa.String(128), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", _enum("event_status", "draft", "published", "cancelled", "completed"), nullable=False),
        sa.Column("price", sa.Numeric(15, 2), nullable=False),
        sa.Column("quota", sa.Integer, nullable=False),
        sa.Column("available", sa.Integer, nullable=False),
        sa.Column("seat_counter", sa.Integer, nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("available >= 0 AND available <= quota", name="ck_events_available_range"),
        sa.CheckConstraint("seat_counter >= 0", name="ck_events_seat_counter_nonneg"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_no", sa.String(32), nullable=False),
        sa.Column("invoice_no", sa.String(32), nullable=False),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("buyer_email", sa.String(255), nullable=True),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("unit_price", sa.Numeric(15, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(15, 2), nullable=False),
        sa.Column(
            "status",
            _enum("order_status", "pending", "awaiting_payment", "paid", "cancelled", "expired"),
            nullable=False,
        ),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("quantity >= 1", name="ck_orders_quantity_pos"),
        sa.UniqueConstraint("invoice_no", name="uq_orders_invoice_no"),
    )
    op.create_index("ix_orders_order_no", "orders", ["order_no"], unique=True)
    op.create_index("ix_orders_event_id", "orders", ["event_id"])
    op.create_index("ix_orders_status_expires_at", "orders", ["status", "expires_at"])
    op.create_index("ix_orders_buyer_created", "orders", ["buyer_id", "created_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("provider", _enum("payment_provider", "mock", "xendit"), nullable=False),
        sa.Column("type", _enum("payment_type", "invoice", "direct", "refund"), nullable=False),
        sa.Column("payment_method", sa.String(64), nullable=True),
        sa.Column(
            "channel",
            _enum("payment_channel", "virtual_account", "e_wallet", "qris", "credit_card", "retail_outlet"),
            nullable=True,
        ),
        sa.Column(
            "channel_code",
            _enum(
                "payment_channel_code",
                "various",
                "CREDIT_CARD",
                "BCA",
                "BNI",
                "BRI",
                "MANDIRI",
                "PERMATA",
                "OVO",
                "DANA",
                "SHOPEEPAY",
                "LINKAJA",
                "ALFAMART",
                "INDOMARET",
                "QRIS",
            ),
            nullable=True,
        ),
        sa.Column("reference_id", sa.String(64), nullable=False),
        sa.Column("amount", sa.Numeric(15, 2), nullable=False),
        sa.Column("status", _enum("payment_status", "pending", "paid", "expired", "failed"), nullable=False),
        sa.Column("redirect_url", sa.Text, nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("order_id", name="uq_payments_order_id"),
        sa.UniqueConstraint("reference_id", name="uq_payments_reference_id"),
    )

    op.create_table(
        "tickets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("order_id", sa.String(36), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.id", ondelete="CASCADE"), nullable=False),
        sa.Column("buyer_id", sa.String(64), nullable=False),
        sa.Column("seq", sa.Integer, nullable=False),
        sa.Column("ticket_number", sa.String(100), nullable=False),
        sa.Column("seat_number", sa.String(16), nullable=False),
        sa.Column("status", _enum("ticket_status", "active", "used", "cancelled", "expired"), nullable=False),
        sa.Column("checked_in", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_by", sa.String(64), nullable=True),
        sa.Column("qr_url", sa.Text, nullable=True),
        sa.Column("pdf_url", sa.Text, nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("ticket_number", name="uq_tickets_ticket_number"),
        sa.UniqueConstraint("event_id", "seat_number", name="uq_tickets_event_seat"),
        sa.UniqueConstraint("order_id", "seq", name="uq_tickets_order_seq"),
    )
    op.create_index("ix_tickets_order_id", "tickets", ["order_id"])
    op.create_index("ix_tickets_status_event", "tickets", ["status", "event_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column(
            "category",
            _enum(
                "notification_category",
                "payment_pending",
                "payment_success",
                "payment_failed",
                "order_cancelled",
                "order_expired",
                "event_reminder",
            ),
            nullable=False,
        ),
        sa.Column("channel", _enum("notification_channel", "in_app", "email"), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("payload", sa.JSON, nullable=True),
        sa.Column("status", _enum("notification_status", "pending", "sent", "failed"), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dedup_key", sa.String(128), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("dedup_key", name="uq_notifications_dedup_key"),
    )
    op.create_index("ix_notifications_user_status", "notifications", ["user_id", "status"])
    op.create_index("ix_notifications_due", "notifications", ["status", "scheduled_at"])


def downgrade() -> None:
    op.drop_index("ix_notifications_due", table_name="notifications")
    op.drop_index("ix_notifications_user_status", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_tickets_status_event", table_name="tickets")
    op.drop_index("ix_tickets_order_id", table_name="tickets")
    op.drop_table("tickets")

    op.drop_table("payments")

    op.drop_index("ix_orders_buyer_created", table_name="orders")
    op.drop_index("ix_orders_status_expires_at", table_name="orders")
    op.drop_index("ix_orders_event_id", table_name="orders")
    op.drop_index("ix_orders_order_no", table_name="orders")
    op.drop_table("orders")

    op.drop_table("events")
