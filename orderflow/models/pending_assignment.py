"""Queue entry for a confirmed order waiting for a shipper."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow
from .base import Base, new_id


class PendingShipperAssignment(Base):
    __tablename__ = "pending_shipper_assignment"
    __table_args__ = (
        Index("ix_pending_assignment_priority_created", "priority", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("order.id", ondelete="CASCADE"), nullable=False, unique=True)
    priority = Column(Integer, nullable=False, default=1)  # higher = more urgent
    attempt_count = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime, nullable=True)
    next_attempt_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    notes = Column(Text, nullable=True)
    is_sent_to_shipper = Column(Boolean, nullable=False, default=False)

    order = relationship("Order")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "priority": self.priority,
            "attempt_count": self.attempt_count,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "next_attempt_at": self.next_attempt_at.isoformat() if self.next_attempt_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "notes": self.notes,
            "is_sent_to_shipper": bool(self.is_sent_to_shipper),
        }
