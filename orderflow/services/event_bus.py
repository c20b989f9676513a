"""In-process publish/subscribe for order lifecycle events.

The bus is an ordinary object passed to the services that publish on it; there
is no module-level singleton. Subscribers receive events on their own bounded
queue and may supply a predicate so that, e.g., a shipper only sees orders
near its position.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Union

from .distance_service import haversine_km
from .logging import log_event


ORDER_CREATED = "orderCreated"
ORDER_STATUS_UPDATED = "orderStatusUpdated"
ORDER_CONFIRMED_FOR_SHIPPERS = "orderConfirmedForShippers"
ORDER_REMOVED_FROM_SHIPPER_POOL = "orderRemovedFromShipperPool"
ASSIGNMENT_EXPIRED = "assignmentExpired"

TOPICS = (
    ORDER_CREATED,
    ORDER_STATUS_UPDATED,
    ORDER_CONFIRMED_FOR_SHIPPERS,
    ORDER_REMOVED_FROM_SHIPPER_POOL,
    ASSIGNMENT_EXPIRED,
)


@dataclass(frozen=True)
class OrderCreated:
    order_id: str
    restaurant_id: str
    user_id: str
    status: str
    total: float
    order: Dict = field(default_factory=dict, compare=False)
    topic: str = field(default=ORDER_CREATED, init=False)


@dataclass(frozen=True)
class OrderStatusUpdated:
    order_id: str
    restaurant_id: str
    user_id: str
    previous_status: str
    status: str
    reason: Optional[str] = None
    order: Dict = field(default_factory=dict, compare=False)
    topic: str = field(default=ORDER_STATUS_UPDATED, init=False)


@dataclass(frozen=True)
class OrderConfirmedForShippers:
    order_id: str
    restaurant_id: str
    restaurant_lat: float
    restaurant_lng: float
    radius_km: float
    shipping_fee: float
    shipper_earnings: float
    delivery_distance: Optional[float]
    delivery_type: str = "asap"
    order: Dict = field(default_factory=dict, compare=False)
    topic: str = field(default=ORDER_CONFIRMED_FOR_SHIPPERS, init=False)


@dataclass(frozen=True)
class OrderRemovedFromShipperPool:
    order_id: str
    restaurant_id: str
    status: str
    topic: str = field(default=ORDER_REMOVED_FROM_SHIPPER_POOL, init=False)


@dataclass(frozen=True)
class AssignmentExpired:
    order_id: str
    assignment_id: str
    pending_minutes: int
    topic: str = field(default=ASSIGNMENT_EXPIRED, init=False)


Event = Union[OrderCreated, OrderStatusUpdated, OrderConfirmedForShippers, OrderRemovedFromShipperPool, AssignmentExpired]
Predicate = Callable[[Event], bool]


def event_to_dict(event: Event) -> Dict:
    return asdict(event)


class Subscription:
    """A filtered stream of events for one subscriber."""

    def __init__(self, bus: "EventBus", topic: str, predicate: Optional[Predicate], maxsize: int) -> None:
        self._bus = bus
        self.topic = topic
        self.predicate = predicate
        self._queue: "queue.Queue[Event]" = queue.Queue(maxsize=maxsize)
        self.closed = False
        self.dropped = 0

    def accepts(self, event: Event) -> bool:
        if self.closed or event.topic != self.topic:
            return False
        if self.predicate is None:
            return True
        return bool(self.predicate(event))

    def _offer(self, event: Event) -> bool:
        try:
            self._queue.put_nowait(event)
            return True
        except queue.Full:
            self.dropped += 1
            return False

    def get(self, timeout: Optional[float] = None) -> Optional[Event]:
        """Next event, or ``None`` when nothing arrives within ``timeout``."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[Event]:
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except queue.Empty:
                return items

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._bus.unsubscribe(self)

    def __iter__(self) -> Iterator[Event]:
        while not self.closed:
            event = self.get(timeout=1.0)
            if event is not None:
                yield event

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class EventBus:
    """Process-wide fan-out. Publishing never raises into the caller."""

    def __init__(self, queue_size: int = 256) -> None:
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()
        self._queue_size = queue_size
        self.logger = logging.getLogger(__name__)

    def subscribe(self, topic: str, predicate: Optional[Predicate] = None) -> Subscription:
        if topic not in TOPICS:
            raise ValueError(f"unknown topic: {topic}")
        sub = Subscription(self, topic, predicate, self._queue_size)
        with self._lock:
            self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            return sum(1 for s in self._subscriptions if topic is None or s.topic == topic)

    def publish(self, event: Event) -> int:
        """Deliver ``event`` to every matching subscriber; returns the delivery count."""
        with self._lock:
            targets = list(self._subscriptions)
        delivered = 0
        for sub in targets:
            try:
                if sub.accepts(event) and sub._offer(event):
                    delivered += 1
            except Exception as exc:
                # a broken subscriber filter must not affect the publisher or other subscribers
                self.logger.warning("subscriber filter failed for %s: %s", event.topic, exc)
        log_event("debug", "event.published", topic=event.topic, order_id=getattr(event, "order_id", None), delivered=delivered)
        return delivered


def for_restaurant(restaurant_id: str) -> Predicate:
    def _match(event: Event) -> bool:
        return getattr(event, "restaurant_id", None) == restaurant_id

    return _match


USER_VISIBLE_STATUSES = ("confirmed", "delivering", "completed", "canceled")


def for_user(user_id: str) -> Predicate:
    def _match(event: Event) -> bool:
        if getattr(event, "user_id", None) != user_id:
            return False
        status = getattr(event, "status", None)
        return status is None or status in USER_VISIBLE_STATUSES

    return _match


def for_shipper(lat: float, lng: float, radius_km: Optional[float] = None) -> Predicate:
    """Orders whose restaurant lies within the shipper's radius and the order's broadcast radius."""

    def _match(event: Event) -> bool:
        if not isinstance(event, OrderConfirmedForShippers):
            return True
        distance = haversine_km(lat, lng, event.restaurant_lat, event.restaurant_lng)
        limit = event.radius_km if radius_km is None else min(radius_km, event.radius_km)
        return distance <= limit

    return _match
