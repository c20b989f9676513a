"""
Food rows carry the server-side price and discount; toppings are optional
priced add-ons that belong to exactly one food.
"""
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow
from .base import Base, new_id


class Food(Base):
    __tablename__ = "food"

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey("restaurant.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    discount_percent = Column(Float, nullable=True)  # 0-100, server-side discount
    is_available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    toppings = relationship("Topping", back_populates="food", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "name": self.name,
            "price": float(self.price or 0),
            "discount_percent": self.discount_percent,
            "is_available": bool(self.is_available),
            "toppings": [t.to_dict() for t in self.toppings],
        }


class Topping(Base):
    __tablename__ = "topping"

    id = Column(String(36), primary_key=True, default=new_id)
    food_id = Column(String(36), ForeignKey("food.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(128), nullable=False)
    price = Column(Numeric(12, 2), nullable=False, default=0)
    is_available = Column(Boolean, nullable=False, default=True)

    food = relationship("Food", back_populates="toppings")

    def to_dict(self):
        return {
            "id": self.id,
            "food_id": self.food_id,
            "name": self.name,
            "price": float(self.price or 0),
            "is_available": bool(self.is_available),
        }
