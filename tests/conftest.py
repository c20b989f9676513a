from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from orderflow.config import AppConfig
from orderflow.db.session import create_session_factory, init_db
from orderflow.models import Address, Food, Promotion, PromotionType, Restaurant, Topping, User
from orderflow.services.address_service import AddressService
from orderflow.services.assignment_service import PendingAssignmentService
from orderflow.services.checkout_service import CheckoutService
from orderflow.services.distance_service import RouteEstimate
from orderflow.services.event_bus import EventBus
from orderflow.services.fee_calculator import FeeCalculator, SystemConstraintsService
from orderflow.services.notification_service import NotificationService
from orderflow.services.order_service import OrderService
from orderflow.services.order_state import OrderStateMachine
from orderflow.services.payment_gateway import PaymentGatewayError, PaymentIntent
from orderflow.services.promotion_service import PromotionService
from orderflow.services.reconciliation import ReconciliationJobs


NOW = datetime(2025, 3, 1, 12, 0, 0)


class FixedClock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeDistance:
    def __init__(self, km=3.0, minutes=20):
        self.km = km
        self.minutes = minutes
        self.calls = []

    def route(self, from_lat, from_lng, to_lat, to_lng):
        self.calls.append((from_lat, from_lng, to_lat, to_lng))
        return RouteEstimate(distance_km=self.km, duration_seconds=self.minutes * 60, source="fake")


class FakeGateway:
    def __init__(self):
        self.paid = True
        self.fail_create = False
        self.intents = []

    def create_intent(self, order_id, amount):
        if self.fail_create:
            raise PaymentGatewayError("gateway unavailable")
        intent = PaymentIntent(id=f"pi_{len(self.intents) + 1}", redirect_url=f"https://pay.test/{order_id}")
        self.intents.append((order_id, amount))
        return intent

    def confirm(self, intent_id):
        return self.paid


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def session_factory():
    factory = create_session_factory("sqlite:///:memory:")
    init_db(factory.engine)
    yield factory
    factory.engine.dispose()


@pytest.fixture
def seed(session_factory):
    """Customer, restaurant owner, shipper, one restaurant with two foods and a topping."""
    with session_factory() as s:
        customer = User(name="Customer", role="customer")
        owner = User(name="Owner", role="restaurant")
        shipper = User(name="Shipper", role="shipper")
        s.add_all([customer, owner, shipper])
        s.flush()
        restaurant_address = Address(street="1 Le Loi", city="HCMC", latitude=10.7769, longitude=106.7009)
        delivery_address = Address(
            user_id=customer.id, street="9 Nguyen Hue", city="HCMC", latitude=10.7900, longitude=106.7000
        )
        s.add_all([restaurant_address, delivery_address])
        s.flush()
        restaurant = Restaurant(name="Pho House", owner_id=owner.id, address_id=restaurant_address.id)
        s.add(restaurant)
        s.flush()
        food_a = Food(restaurant_id=restaurant.id, name="Pho Bo", price=Decimal("50000"), discount_percent=10)
        food_b = Food(restaurant_id=restaurant.id, name="Tra Da", price=Decimal("30000"), discount_percent=None)
        s.add_all([food_a, food_b])
        s.flush()
        egg = Topping(food_id=food_a.id, name="Egg", price=Decimal("5000"))
        s.add(egg)
        s.flush()
        return {
            "customer_id": customer.id,
            "owner_id": owner.id,
            "shipper_id": shipper.id,
            "restaurant_id": restaurant.id,
            "restaurant_address_id": restaurant_address.id,
            "address_id": delivery_address.id,
            "food_a_id": food_a.id,
            "food_b_id": food_b.id,
            "topping_id": egg.id,
        }


def add_promotion(session_factory, **fields):
    values = {"code": "SAVE20", "type": PromotionType.FOOD_DISCOUNT, "number_of_used": 0}
    values.update(fields)
    with session_factory() as s:
        promo = Promotion(**values)
        s.add(promo)
        s.flush()
        return promo.id


def standard_items(seed):
    return [
        {
            "food_id": seed["food_a_id"],
            "quantity": 2,
            "selected_toppings": [{"id": seed["topping_id"], "price": 5000}],
        },
        {"food_id": seed["food_b_id"], "quantity": 1},
    ]


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def distance():
    return FakeDistance()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(session_factory, bus, clock, distance, gateway):
    constraints = SystemConstraintsService(session_factory, clock)
    fees = FeeCalculator(constraints)
    promotions = PromotionService(session_factory, clock)
    notifications = NotificationService(session_factory)
    assignments = PendingAssignmentService(session_factory, bus, clock)
    state = OrderStateMachine(
        session_factory, bus=bus, assignments=assignments, notifications=notifications, clock=clock
    )
    orders = OrderService(
        session_factory, distance=distance, fees=fees, promotions=promotions, state_machine=state, clock=clock
    )
    addresses = AddressService(session_factory, clock)
    checkouts = CheckoutService(session_factory, gateway=gateway, state_machine=state, clock=clock)
    jobs = ReconciliationJobs(
        session_factory, state_machine=state, assignments=assignments, addresses=addresses
    )
    return {
        "constraints": constraints,
        "fees": fees,
        "promotions": promotions,
        "notifications": notifications,
        "assignments": assignments,
        "state": state,
        "orders": orders,
        "addresses": addresses,
        "checkouts": checkouts,
        "jobs": jobs,
    }


@pytest.fixture
def app_config():
    return AppConfig(
        database_url="sqlite:///:memory:",
        secret_key="test",
        log_level="WARNING",
        currency="VND",
        mapbox_access_token="",
        mapbox_base_url="https://api.mapbox.com",
        payment_gateway_url="http://gateway.test",
        admin_token="admin-secret",
        scheduler_enabled=False,
    )
