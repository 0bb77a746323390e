"""
Order model: the unit of reservation and payment.

Key design decisions:
- `numbers` is a JSON list written once at creation; membership queries go
  through the ticket_holds table instead of scanning this column
- `payment_id` is unique so one payment can never settle two orders
- Every status change is a conditional UPDATE naming the expected prior
  status; `version` counts those transitions
- Composite index on (status, hold_expires_at) serves the expiry sweeper
"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, JSON, Index, CheckConstraint

from raffle.db.base import Base, TimestampMixin


class OrderStatus(str, enum.Enum):
    RESERVED = "reserved"
    PENDING = "pending"
    APPROVED = "approved"
    RELEASED = "released"


# Statuses a hold can still expire from
ACTIVE_STATUSES = (OrderStatus.RESERVED.value, OrderStatus.PENDING.value)


class ReleaseReason(str, enum.Enum):
    HOLD_EXPIRED = "hold_expired"
    PAYMENT_REJECTED = "payment_rejected"


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id = Column(String(32), primary_key=True)
    numbers = Column(JSON, nullable=False)
    buyer_id = Column(String(128), nullable=True, index=True)
    buyer_name = Column(String(255), nullable=True)
    buyer_phone = Column(String(64), nullable=True)
    status = Column(String(20), nullable=False, default=OrderStatus.RESERVED.value)
    hold_expires_at = Column(DateTime(timezone=True), nullable=True)

    intent_id = Column(String(128), nullable=True)
    payment_id = Column(String(64), nullable=True, unique=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    provider_reference = Column(String(128), nullable=True)

    released_at = Column(DateTime(timezone=True), nullable=True)
    release_reason = Column(String(40), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            "status IN ('reserved', 'pending', 'approved', 'released')",
            name="check_order_status",
        ),
        Index("ix_orders_status_expiry", "status", "hold_expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, status={self.status}, numbers={self.numbers})>"
