"""Initial schema: orders, ticket holds and payment claims.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("numbers", sa.JSON(), nullable=False),
        sa.Column("buyer_id", sa.String(128), nullable=True),
        sa.Column("buyer_name", sa.String(255), nullable=True),
        sa.Column("buyer_phone", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'reserved'")),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("intent_id", sa.String(128), nullable=True),
        sa.Column("payment_id", sa.String(64), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_reference", sa.String(128), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("release_reason", sa.String(40), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("payment_id", name="uq_orders_payment_id"),
        sa.CheckConstraint(
            "status IN ('reserved', 'pending', 'approved', 'released')",
            name="check_order_status",
        ),
    )
    op.create_index("ix_orders_buyer_id", "orders", ["buyer_id"])
    # The sweeper asks for "reserved/pending and expired" on every pass
    op.create_index("ix_orders_status_expiry", "orders", ["status", "hold_expires_at"])

    # PRIMARY KEY ON NUMBER: this is the exclusivity guarantee.
    # Two transactions inserting the same number cannot both commit,
    # so overlapping reservations resolve in the database, not in the app.
    op.create_table(
        "ticket_holds",
        sa.Column("number", sa.String(16), primary_key=True),
        sa.Column("order_id", sa.String(32), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_ticket_holds_order_id", "ticket_holds", ["order_id"])

    op.create_table(
        "payment_claims",
        sa.Column("payment_id", sa.String(64), primary_key=True),
        sa.Column("owner", sa.String(64), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("payment_claims")
    op.drop_table("ticket_holds")
    op.drop_table("orders")
