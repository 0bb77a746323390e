"""
Short processing lease for an in-flight payment notification.
"""

from sqlalchemy import Column, String, DateTime

from raffle.db.base import Base


class PaymentClaim(Base):
    __tablename__ = "payment_claims"

    payment_id = Column(String(64), primary_key=True)
    owner = Column(String(64), nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<PaymentClaim(payment={self.payment_id}, owner={self.owner})>"
