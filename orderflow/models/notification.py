"""User-facing notification records."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text

from ..utils.clock import utcnow
from .base import Base, new_id


class Notification(Base):
    __tablename__ = "notification"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("user.id", ondelete="CASCADE"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    type = Column(String(32), nullable=False, default="order")
    order_id = Column(String(36), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "content": self.content,
            "type": self.type,
            "order_id": self.order_id,
            "is_read": bool(self.is_read),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
