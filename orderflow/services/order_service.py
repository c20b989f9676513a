from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional

from ..db.session import get_session
from ..models.checkout import Checkout
from ..models.food import Food
from ..models.notification import Notification
from ..models.order import Order, OrderDetail, OrderStatus
from ..models.party import Address, Restaurant, User
from ..models.pending_assignment import PendingShipperAssignment
from ..models.promotion import Promotion
from ..utils.clock import utcnow
from ..utils.pagination import paginate
from ..utils.validators import order_request_errors, parse_datetime
from .distance_service import DistanceProvider, valid_coordinates
from .errors import NotFoundError, ValidationError
from .fee_calculator import FeeCalculator, FeeQuote
from .logging import log_event
from .order_state import OrderStateMachine
from .promotion_service import PromotionService


TOPPING_PRICE_EPSILON = Decimal("0.01")
CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0))


@dataclass
class PricedLine:
    food: Food
    quantity: int
    discount_percent: float
    unit_price: Decimal
    toppings: List[Dict]
    toppings_total: Decimal
    line_total: Decimal
    note: Optional[str] = None


@dataclass
class Pricing:
    lines: List[PricedLine]
    food_total: Decimal
    distance_km: float
    duration_minutes: int
    distance_source: str
    fee: FeeQuote
    promotion: Optional[Promotion] = None
    promotion_discount: Decimal = Decimal("0")
    promotion_error: Optional[str] = None
    extra: Dict = field(default_factory=dict)

    @property
    def total(self) -> Decimal:
        return max(Decimal("0"), self.food_total + self.fee.shipping_fee - self.promotion_discount)

    def to_dict(self) -> Dict:
        return {
            "food_total": float(self.food_total),
            "shipping_fee": float(self.fee.shipping_fee),
            "shipper_earnings": float(self.fee.shipper_earnings),
            "distance": self.distance_km,
            "estimated_delivery_time": self.duration_minutes,
            "subtotal": float(self.food_total),
            "total_before_discount": float(self.food_total + self.fee.shipping_fee),
            "promotion_discount": float(self.promotion_discount),
            "total": float(self.total),
            "applied_promotion": {
                "id": self.promotion.id,
                "code": self.promotion.code,
                "type": self.promotion.type,
                "discount_amount": float(self.promotion_discount),
            }
            if self.promotion is not None and not self.promotion_error
            else None,
            "promotion_error": self.promotion_error,
        }


class OrderService:
    """Builds, prices and persists orders; reads orders back for users and restaurants."""

    def __init__(
        self,
        session_factory=get_session,
        *,
        distance: DistanceProvider,
        fees: FeeCalculator,
        promotions: PromotionService,
        state_machine: OrderStateMachine,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._distance = distance
        self._fees = fees
        self._promotions = promotions
        self._state = state_machine
        self._clock = clock

    # --- creation ---------------------------------------------------------
    def create_order(
        self,
        *,
        user_id: str,
        restaurant_id: str,
        address_id: str,
        items: List[Dict],
        promotion_code: Optional[str] = None,
        payment_method: Optional[str] = None,
        delivery_type: Optional[str] = None,
        requested_delivery_time=None,
        note: Optional[str] = None,
    ) -> Order:
        errors = order_request_errors(
            user_id=user_id,
            restaurant_id=restaurant_id,
            address_id=address_id,
            items=items,
            payment_method=payment_method,
            delivery_type=delivery_type,
            requested_delivery_time=requested_delivery_time,
        )
        if errors:
            raise ValidationError("; ".join(errors))
        payment_method = payment_method or "cod"
        delivery_type = delivery_type or "asap"
        requested_at = parse_datetime(requested_delivery_time) if delivery_type == "scheduled" else None

        log_event("info", "order.create_started", user_id=user_id, restaurant_id=restaurant_id, items=len(items))
        try:
            with self._session_factory() as session:
                if session.get(User, user_id) is None:
                    raise NotFoundError("User", user_id)
                restaurant, address = self._load_endpoints(session, restaurant_id, address_id)
                pricing = self._price(
                    session,
                    restaurant,
                    address,
                    items,
                    promotion_code=promotion_code,
                    delivery_type=delivery_type,
                    requested_at=requested_at,
                )
                if pricing.promotion_error:
                    raise ValidationError(pricing.promotion_error)
                if pricing.promotion is not None:
                    self._promotions.use(
                        pricing.promotion.code, pricing.food_total + pricing.fee.shipping_fee, session=session
                    )

                now = self._clock()
                order = Order(
                    user_id=user_id,
                    restaurant_id=restaurant.id,
                    address_id=address.id,
                    promotion_id=pricing.promotion.id if pricing.promotion is not None else None,
                    status=OrderStatus.PENDING if payment_method == "cod" else OrderStatus.PROCESSING_PAYMENT,
                    subtotal=pricing.food_total,
                    shipping_fee=pricing.fee.shipping_fee,
                    promotion_discount=pricing.promotion_discount,
                    total=pricing.total,
                    shipper_earnings=pricing.fee.shipper_earnings,
                    shipper_commission_rate=pricing.fee.commission_rate,
                    delivery_distance=pricing.distance_km,
                    estimated_delivery_time=pricing.duration_minutes,
                    delivery_type=delivery_type,
                    requested_delivery_time=requested_at,
                    payment_method=payment_method,
                    note=note or "",
                    created_at=now,
                    updated_at=now,
                )
                for position, line in enumerate(pricing.lines):
                    order.details.append(
                        OrderDetail(
                            food_id=line.food.id,
                            position=position,
                            food_name=line.food.name,
                            quantity=line.quantity,
                            original_price=_money(line.food.price),
                            discount_percent=line.discount_percent,
                            price=line.unit_price,
                            selected_toppings=line.toppings,
                            toppings_total=line.toppings_total,
                            line_total=line.line_total,
                            note=line.note,
                        )
                    )
                session.add(order)
                session.flush()
                order.to_dict()  # load details before the session closes
        except Exception as exc:
            log_event("error", "order.create_failed", user_id=user_id, restaurant_id=restaurant_id, error=str(exc))
            raise

        log_event(
            "info",
            "order.created",
            order_id=order.id,
            status=order.status,
            items=len(pricing.lines),
            total=float(order.total),
            distance_km=pricing.distance_km,
            distance_source=pricing.distance_source,
        )
        if order.status == OrderStatus.PENDING:
            self._state.announce_created(order)
        return order

    def calculate_order(
        self,
        *,
        restaurant_id: str,
        address_id: str,
        items: List[Dict],
        promotion_code: Optional[str] = None,
        delivery_type: Optional[str] = None,
        requested_delivery_time=None,
    ) -> Dict:
        """Price a cart without persisting anything. Promotion problems are reported, not raised."""
        errors = order_request_errors(
            user_id="quote",
            restaurant_id=restaurant_id,
            address_id=address_id,
            items=items,
            delivery_type=delivery_type,
            requested_delivery_time=requested_delivery_time,
        )
        if errors:
            raise ValidationError("; ".join(errors))
        delivery_type = delivery_type or "asap"
        requested_at = parse_datetime(requested_delivery_time) if delivery_type == "scheduled" else None
        with self._session_factory() as session:
            restaurant, address = self._load_endpoints(session, restaurant_id, address_id)
            pricing = self._price(
                session,
                restaurant,
                address,
                items,
                promotion_code=promotion_code,
                delivery_type=delivery_type,
                requested_at=requested_at,
            )
            return pricing.to_dict()

    def validate_promotion_for_order(self, promotion_code: str, **cart) -> Dict:
        quote = self.calculate_order(promotion_code=promotion_code, **cart)
        return {
            "valid": not quote["promotion_error"],
            "promotion": quote["applied_promotion"],
            "discount": quote["promotion_discount"],
            "error": quote["promotion_error"],
            "order_total": quote["total"],
        }

    # --- pricing pipeline -------------------------------------------------
    @staticmethod
    def _load_endpoints(session, restaurant_id: str, address_id: str):
        restaurant = session.get(Restaurant, restaurant_id)
        if restaurant is None:
            raise NotFoundError("Restaurant", restaurant_id)
        if restaurant.address is None:
            raise NotFoundError("Restaurant address", restaurant_id)
        address = session.get(Address, address_id)
        if address is None:
            raise NotFoundError("Address", address_id)
        if not valid_coordinates(restaurant.address.latitude, restaurant.address.longitude):
            raise ValidationError(f"Restaurant {restaurant_id} has missing or invalid coordinates")
        if not valid_coordinates(address.latitude, address.longitude):
            raise ValidationError(f"Delivery address {address_id} has missing or invalid coordinates")
        return restaurant, address

    def _price(self, session, restaurant, address, items, *, promotion_code, delivery_type, requested_at) -> Pricing:
        lines = [self._price_line(session, restaurant.id, index, item) for index, item in enumerate(items)]
        food_total = sum((line.line_total for line in lines), Decimal("0"))

        route = self._distance.route(
            float(restaurant.address.latitude),
            float(restaurant.address.longitude),
            float(address.latitude),
            float(address.longitude),
        )
        distance_km = round(route.distance_km, 2)
        constraints = self._fees.constraints
        fee = self._fees.quote(distance_km)

        if delivery_type == "scheduled":
            minutes = self._fees.scheduled_lead_minutes(requested_at, self._clock(), constraints)
        else:
            minutes = route.duration_minutes
            self._fees.check_delivery_time(minutes, constraints)

        pricing = Pricing(
            lines=lines,
            food_total=food_total,
            distance_km=distance_km,
            duration_minutes=minutes,
            distance_source=route.source,
            fee=fee,
        )
        if promotion_code:
            check = self._promotions.validate(promotion_code, food_total + fee.shipping_fee, session=session)
            if check.valid and check.promotion is not None:
                pricing.promotion = check.promotion
                pricing.promotion_discount = self._promotions.discount_for_order(
                    check.promotion, food_total, fee.shipping_fee
                )
            else:
                pricing.promotion_error = check.reason or "Invalid promotion code"
        return pricing

    @staticmethod
    def _price_line(session, restaurant_id: str, index: int, item: Dict) -> PricedLine:
        food = session.get(Food, item["food_id"])
        if food is None or food.restaurant_id != restaurant_id:
            raise NotFoundError("Food", item["food_id"])
        if not food.is_available:
            raise ValidationError(f"Food {food.name} is not available")
        quantity = int(item["quantity"])

        # the server-side discount wins; a caller override only applies to foods without one
        if food.discount_percent is not None:
            pct = float(food.discount_percent)
        else:
            pct = float(item.get("discount_percent") or 0)
        unit_price = (_money(food.price) * (Decimal("100") - Decimal(str(pct))) / Decimal("100")).quantize(
            CENT, rounding=ROUND_HALF_UP
        )

        known = {t.id: t for t in food.toppings}
        snapshot: List[Dict] = []
        toppings_total = Decimal("0")
        for selected in item.get("selected_toppings") or []:
            topping = known.get(selected["id"])
            if topping is None:
                raise ValidationError(f"Topping {selected['id']} does not belong to food {food.name}")
            if not topping.is_available:
                raise ValidationError(f"Topping {topping.name} is not available")
            stored = _money(topping.price)
            if selected.get("price") is not None:
                try:
                    claimed = _money(selected["price"])
                except ArithmeticError:
                    raise ValidationError(f"items[{index}] topping {topping.name} has an invalid price")
                if abs(claimed - stored) > TOPPING_PRICE_EPSILON:
                    raise ValidationError(
                        f"Price mismatch for topping {topping.name}: expected {stored:f}, got {claimed:f}"
                    )
            snapshot.append({"id": topping.id, "name": topping.name, "price": float(stored)})
            toppings_total += stored

        line_total = unit_price * quantity + toppings_total * quantity
        return PricedLine(
            food=food,
            quantity=quantity,
            discount_percent=pct,
            unit_price=unit_price,
            toppings=snapshot,
            toppings_total=toppings_total,
            line_total=line_total,
            note=item.get("note"),
        )

    # --- reads ------------------------------------------------------------
    def get_order(self, order_id: str) -> Order:
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            order.to_dict()  # load details and shipping detail before the session closes
            return order

    def _paginate(self, column, value, page: int, page_size: int, status: Optional[str]) -> Dict:
        with self._session_factory() as session:
            q = session.query(Order).filter(column == value)
            if status:
                q = q.filter(Order.status == status)
            return paginate(q.order_by(Order.created_at.desc()), page, page_size, lambda o: o.to_dict())

    def list_orders_by_user(self, user_id: str, page: int = 1, page_size: int = 10, status: Optional[str] = None) -> Dict:
        return self._paginate(Order.user_id, user_id, page, page_size, status)

    def list_orders_by_restaurant(
        self, restaurant_id: str, page: int = 1, page_size: int = 10, status: Optional[str] = None
    ) -> Dict:
        return self._paginate(Order.restaurant_id, restaurant_id, page, page_size, status)

    def order_history(self, user_id: str, page: int = 1, page_size: int = 10) -> Dict:
        result = self.list_orders_by_user(user_id, page, page_size)
        result["items"] = [
            {
                "order_id": o["id"],
                "restaurant_id": o["restaurant_id"],
                "total_amount": o["total"],
                "status": o["status"],
                "date": o["created_at"],
                "order_details": [
                    {
                        "food_name": d["food_name"],
                        "quantity": d["quantity"],
                        "price": d["price"],
                        "total_price": d["line_total"],
                    }
                    for d in o["details"]
                ],
            }
            for o in result["items"]
        ]
        return result

    def delete_order(self, order_id: str) -> None:
        """Admin hard delete.

        Rows keyed by the order go with it, including checkouts and notifications.
        """
        with self._session_factory() as session:
            order = session.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            for model in (PendingShipperAssignment, Checkout, Notification):
                session.query(model).filter(model.order_id == order_id).delete(synchronize_session=False)
            session.delete(order)
        log_event("info", "order.deleted", order_id=order_id)
