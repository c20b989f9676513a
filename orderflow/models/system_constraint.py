"""System-wide delivery constraints. Each update writes a new row; the newest row wins."""
from sqlalchemy import Column, DateTime, Float, Integer, Numeric

from ..utils.clock import utcnow
from .base import Base


class SystemConstraint(Base):
    __tablename__ = "system_constraint"

    id = Column(Integer, primary_key=True, autoincrement=True)
    max_delivery_distance = Column(Float, nullable=False, default=30.0)  # km
    max_delivery_time_min = Column(Integer, nullable=False, default=45)
    max_schedule_ahead_min = Column(Integer, nullable=False, default=24 * 60)
    base_distance_km = Column(Float, nullable=False, default=2.0)
    base_shipping_fee = Column(Numeric(12, 2), nullable=False, default=15000)
    per_km_fee = Column(Numeric(12, 2), nullable=False, default=5000)
    shipper_commission_rate = Column(Float, nullable=False, default=0.8)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    EDITABLE = (
        "max_delivery_distance",
        "max_delivery_time_min",
        "max_schedule_ahead_min",
        "base_distance_km",
        "base_shipping_fee",
        "per_km_fee",
        "shipper_commission_rate",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "max_delivery_distance": self.max_delivery_distance,
            "max_delivery_time_min": self.max_delivery_time_min,
            "max_schedule_ahead_min": self.max_schedule_ahead_min,
            "base_distance_km": self.base_distance_km,
            "base_shipping_fee": float(self.base_shipping_fee or 0),
            "per_km_fee": float(self.per_km_fee or 0),
            "shipper_commission_rate": self.shipper_commission_rate,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
