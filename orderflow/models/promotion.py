from sqlalchemy import Column, DateTime, Float, Integer, Numeric, String, Text

from ..utils.clock import utcnow
from .base import Base, new_id


class PromotionType:
    FOOD_DISCOUNT = "FOOD_DISCOUNT"
    SHIPPING_DISCOUNT = "SHIPPING_DISCOUNT"

    ALL = (FOOD_DISCOUNT, SHIPPING_DISCOUNT)


class Promotion(Base):
    __tablename__ = "promotion"

    id = Column(String(36), primary_key=True, default=new_id)
    code = Column(String(64), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    type = Column(String(32), nullable=False, default=PromotionType.FOOD_DISCOUNT)
    discount_percent = Column(Float, nullable=True)
    discount_amount = Column(Numeric(12, 2), nullable=True)
    min_order_value = Column(Numeric(12, 2), nullable=True)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    number_of_used = Column(Integer, nullable=False, default=0)
    max_usage = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "type": self.type,
            "discount_percent": self.discount_percent,
            "discount_amount": float(self.discount_amount) if self.discount_amount is not None else None,
            "min_order_value": float(self.min_order_value) if self.min_order_value is not None else None,
            "max_discount_amount": float(self.max_discount_amount) if self.max_discount_amount is not None else None,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "number_of_used": self.number_of_used,
            "max_usage": self.max_usage,
        }
