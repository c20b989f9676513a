from sqlalchemy import Column, DateTime, ForeignKey, JSON, Numeric, String
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow
from .base import Base, new_id


class CheckoutStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    TERMINAL = (COMPLETED, FAILED, CANCELLED)


class Checkout(Base):
    __tablename__ = "checkout"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("order.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=CheckoutStatus.PENDING)
    payment_intent_id = Column(String(128), nullable=True)
    payment_url = Column(String(512), nullable=True)
    payment_details = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    order = relationship("Order")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "user_id": self.user_id,
            "amount": float(self.amount or 0),
            "payment_method": self.payment_method,
            "status": self.status,
            "payment_intent_id": self.payment_intent_id,
            "payment_url": self.payment_url,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
