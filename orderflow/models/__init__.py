from .base import Base
from .checkout import Checkout, CheckoutStatus
from .food import Food, Topping
from .notification import Notification
from .order import DELIVERY_TYPES, PAYMENT_METHODS, Order, OrderDetail, OrderStatus, ShippingDetail
from .party import Address, Restaurant, User
from .pending_assignment import PendingShipperAssignment
from .promotion import Promotion, PromotionType
from .system_constraint import SystemConstraint

__all__ = [
    "Base",
    "Address",
    "Checkout",
    "CheckoutStatus",
    "DELIVERY_TYPES",
    "Food",
    "Notification",
    "Order",
    "OrderDetail",
    "OrderStatus",
    "PAYMENT_METHODS",
    "PendingShipperAssignment",
    "Promotion",
    "PromotionType",
    "Restaurant",
    "ShippingDetail",
    "SystemConstraint",
    "Topping",
    "User",
]
