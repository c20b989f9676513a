"""Collaborator rows the order core reads: users, restaurants, addresses."""
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import relationship

from ..utils.clock import utcnow
from .base import Base, new_id


class User(Base):
    __tablename__ = "user"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    role = Column(String(32), nullable=False, default="customer")  # customer / restaurant / shipper / admin
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Address(Base):
    __tablename__ = "address"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    street = Column(String(255), nullable=False, default="")
    ward = Column(String(128), nullable=False, default="")
    district = Column(String(128), nullable=False, default="")
    city = Column(String(128), nullable=False, default="")
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    is_temporary = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "street": self.street,
            "ward": self.ward,
            "district": self.district,
            "city": self.city,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "is_temporary": bool(self.is_temporary),
        }


class Restaurant(Base):
    __tablename__ = "restaurant"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    owner_id = Column(String(36), ForeignKey("user.id"), nullable=True)
    address_id = Column(String(36), ForeignKey("address.id"), nullable=True)
    is_open = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    address = relationship("Address", lazy="joined")
    owner = relationship("User")
