from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow
from .base import Base, new_id


class OrderStatus:
    PROCESSING_PAYMENT = "processing_payment"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DELIVERING = "delivering"
    COMPLETED = "completed"
    CANCELED = "canceled"

    ALL = (PROCESSING_PAYMENT, PENDING, CONFIRMED, DELIVERING, COMPLETED, CANCELED)
    TERMINAL = (COMPLETED, CANCELED)


PAYMENT_METHODS = ("cod", "momo", "vnpay", "zalopay", "card")
DELIVERY_TYPES = ("asap", "scheduled")


class Order(Base):
    __tablename__ = "order"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("user.id"), nullable=False)
    restaurant_id = Column(String(36), ForeignKey("restaurant.id"), nullable=False)
    address_id = Column(String(36), ForeignKey("address.id", ondelete="SET NULL"), nullable=True)
    promotion_id = Column(String(36), ForeignKey("promotion.id", ondelete="SET NULL"), nullable=True)

    status = Column(String(32), nullable=False, default=OrderStatus.PENDING, index=True)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)  # food total after per-item discounts
    shipping_fee = Column(Numeric(12, 2), nullable=False, default=0)
    promotion_discount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    shipper_earnings = Column(Numeric(12, 2), nullable=False, default=0)
    shipper_commission_rate = Column(Float, nullable=False, default=0.8)

    delivery_distance = Column(Float, nullable=True)  # km
    estimated_delivery_time = Column(Integer, nullable=True)  # minutes
    delivery_type = Column(String(16), nullable=False, default="asap")
    requested_delivery_time = Column(DateTime, nullable=True)

    payment_method = Column(String(32), nullable=False, default="cod")
    is_paid = Column(Boolean, nullable=False, default=False)
    payment_date = Column(DateTime, nullable=True)
    note = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User")
    restaurant = relationship("Restaurant")
    address = relationship("Address")
    promotion = relationship("Promotion")
    details = relationship(
        "OrderDetail", back_populates="order", cascade="all, delete-orphan", order_by="OrderDetail.position"
    )
    shipping_detail = relationship(
        "ShippingDetail", back_populates="order", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def is_cod(self) -> bool:
        return (self.payment_method or "cod") == "cod"

    def to_dict(self, with_details: bool = True):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "restaurant_id": self.restaurant_id,
            "address_id": self.address_id,
            "promotion_id": self.promotion_id,
            "status": self.status,
            "subtotal": float(self.subtotal or 0),
            "shipping_fee": float(self.shipping_fee or 0),
            "promotion_discount": float(self.promotion_discount or 0),
            "total": float(self.total or 0),
            "shipper_earnings": float(self.shipper_earnings or 0),
            "delivery_distance": self.delivery_distance,
            "estimated_delivery_time": self.estimated_delivery_time,
            "delivery_type": self.delivery_type,
            "requested_delivery_time": self.requested_delivery_time.isoformat()
            if self.requested_delivery_time
            else None,
            "payment_method": self.payment_method,
            "is_paid": bool(self.is_paid),
            "payment_date": self.payment_date.isoformat() if self.payment_date else None,
            "note": self.note,
            "shipper_id": self.shipping_detail.shipper_id if self.shipping_detail else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if with_details:
            data["details"] = [d.to_dict() for d in self.details]
        return data


class OrderDetail(Base):
    """Priced snapshot of one cart line; never updated after creation."""

    __tablename__ = "order_detail"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("order.id", ondelete="CASCADE"), nullable=False, index=True)
    food_id = Column(String(36), ForeignKey("food.id", ondelete="SET NULL"), nullable=True)
    position = Column(Integer, nullable=False, default=0)
    food_name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False)
    original_price = Column(Numeric(12, 2), nullable=False)
    discount_percent = Column(Float, nullable=False, default=0)
    price = Column(Numeric(12, 2), nullable=False)  # unit price actually charged
    selected_toppings = Column(JSON, nullable=False, default=list)  # [{id, name, price}]
    toppings_total = Column(Numeric(12, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False)
    note = Column(Text, nullable=True)

    order = relationship("Order", back_populates="details")

    def to_dict(self):
        return {
            "id": self.id,
            "food_id": self.food_id,
            "food_name": self.food_name,
            "quantity": self.quantity,
            "original_price": float(self.original_price or 0),
            "discount_percent": self.discount_percent,
            "price": float(self.price or 0),
            "selected_toppings": self.selected_toppings or [],
            "toppings_total": float(self.toppings_total or 0),
            "line_total": float(self.line_total or 0),
            "note": self.note,
        }


class ShippingDetail(Base):
    __tablename__ = "shipping_detail"

    id = Column(String(36), primary_key=True, default=new_id)
    # unique: an order can be durably assigned to one shipper only
    order_id = Column(String(36), ForeignKey("order.id", ondelete="CASCADE"), nullable=False, unique=True)
    shipper_id = Column(String(36), ForeignKey("user.id"), nullable=False)
    status = Column(String(32), nullable=False, default="assigned")
    assigned_at = Column(DateTime, nullable=False, default=utcnow)

    order = relationship("Order", back_populates="shipping_detail")

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "shipper_id": self.shipper_id,
            "status": self.status,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
        }
