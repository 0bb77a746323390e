"""
One row per ticket number owned by a reserved, pending or approved order.

The primary key on `number` is what makes reservation race-free: two
transactions inserting the same number cannot both commit. Rows are deleted
together with the release of their order and kept forever once approved.
"""

from sqlalchemy import Column, String, ForeignKey

from raffle.db.base import Base, TimestampMixin


class TicketHold(Base, TimestampMixin):
    __tablename__ = "ticket_holds"

    number = Column(String(16), primary_key=True)
    order_id = Column(String(32), ForeignKey("orders.id"), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<TicketHold(number={self.number}, order={self.order_id})>"
