"""Order status transitions and the side effects attached to them.

    processing_payment -> pending -> confirmed -> delivering -> completed
    canceled is reachable from every non-terminal state.

A transition re-reads the order, validates the edge against ``TRANSITIONS`` and
writes the new status with a ``WHERE status = <observed>`` guard, so two
concurrent transitions on one order cannot both succeed. Events and
notifications are emitted only after the transaction commits.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, List, Optional

from sqlalchemy import exists

from ..db.session import get_session
from ..models.checkout import Checkout, CheckoutStatus
from ..models.order import Order, OrderStatus, ShippingDetail
from ..utils.clock import utcnow
from .assignment_service import PendingAssignmentService
from .errors import InvalidTransition, NotFoundError, ValidationError
from .event_bus import (
    Event,
    EventBus,
    OrderConfirmedForShippers,
    OrderCreated,
    OrderRemovedFromShipperPool,
    OrderStatusUpdated,
)
from .logging import log_event
from .notification_service import NotificationService


TRANSITIONS: Dict[str, tuple] = {
    OrderStatus.PROCESSING_PAYMENT: (OrderStatus.PENDING, OrderStatus.CANCELED),
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELED),
    OrderStatus.CONFIRMED: (OrderStatus.DELIVERING, OrderStatus.CANCELED),
    OrderStatus.DELIVERING: (OrderStatus.COMPLETED, OrderStatus.CANCELED),
}

# transitions only the owning restaurant may drive
RESTAURANT_DRIVEN = (OrderStatus.CONFIRMED, OrderStatus.DELIVERING, OrderStatus.COMPLETED, OrderStatus.CANCELED)


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, ())


class OrderStateMachine:
    def __init__(
        self,
        session_factory=get_session,
        bus: Optional[EventBus] = None,
        assignments: Optional[PendingAssignmentService] = None,
        notifications: Optional[NotificationService] = None,
        shipper_radius_km: float = 5.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._bus = bus or EventBus()
        self._assignments = assignments or PendingAssignmentService(session_factory, self._bus, clock)
        self._notifications = notifications or NotificationService(session_factory)
        self.shipper_radius_km = shipper_radius_km
        self._clock = clock

    @property
    def bus(self) -> EventBus:
        return self._bus

    def transition(
        self,
        order_id: str,
        target: str,
        *,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None,
        expected: Optional[str] = None,
        require_unassigned: bool = False,
    ) -> Order:
        """Move ``order_id`` to ``target``.

        ``actor_id`` is checked against the restaurant owner for restaurant-driven
        targets. ``expected`` lets background jobs require a specific current
        status; a mismatch raises :class:`InvalidTransition` without writing.
        ``require_unassigned`` makes the write fail the same way once a shipper
        holds the order.
        """
        if target not in OrderStatus.ALL:
            raise ValidationError(f"Invalid status. Valid values are: {', '.join(OrderStatus.ALL)}")

        events: List[Event] = []
        with self._session_factory() as s:
            order = s.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            current = order.status
            if expected is not None and current != expected:
                raise InvalidTransition(current, target, f"Order {order_id} is {current}, expected {expected}")
            if require_unassigned and order.shipping_detail is not None:
                raise InvalidTransition(current, target, f"Order {order_id} is already assigned to a shipper")
            if not can_transition(current, target):
                raise InvalidTransition(current, target)
            if actor_id is not None and target in RESTAURANT_DRIVEN:
                owner_id = order.restaurant.owner_id if order.restaurant else None
                if owner_id != actor_id:
                    raise PermissionError("Only the restaurant that owns this order may change its status")

            now = self._clock()
            values = {Order.status: target, Order.updated_at: now}
            if target == OrderStatus.COMPLETED:
                values[Order.is_paid] = True
                values[Order.payment_date] = now
            guarded = s.query(Order).filter(Order.id == order_id, Order.status == current)
            if require_unassigned:
                guarded = guarded.filter(~exists().where(ShippingDetail.order_id == Order.id))
            affected = guarded.update(values, synchronize_session=False)
            if not affected:
                raise InvalidTransition(current, target, f"Order {order_id} changed concurrently")
            s.refresh(order)

            has_shipper = order.shipping_detail is not None
            if target == OrderStatus.CONFIRMED and not has_shipper:
                entry = self._assignments.add_pending_assignment(order_id, 1, session=s)
                broadcast = self._confirmed_event(order)
                entry.is_sent_to_shipper = broadcast is not None
                events.append(broadcast)
            if current == OrderStatus.CONFIRMED and target != OrderStatus.CONFIRMED:
                removed = self._assignments.remove_pending_assignment(order_id, session=s)
                if removed or not has_shipper:
                    events.append(
                        OrderRemovedFromShipperPool(order_id=order_id, restaurant_id=order.restaurant_id, status=target)
                    )
            if target == OrderStatus.CANCELED:
                cancelled_checkouts = (
                    s.query(Checkout)
                    .filter(Checkout.order_id == order_id, Checkout.status.notin_(CheckoutStatus.TERMINAL))
                    .update(
                        {Checkout.status: CheckoutStatus.CANCELLED, Checkout.updated_at: now},
                        synchronize_session=False,
                    )
                )
                if cancelled_checkouts:
                    log_event("info", "checkout.cancelled", order_id=order_id, count=cancelled_checkouts)
            order.to_dict()  # load details and shipping detail before the session closes
            snapshot = order.to_dict(with_details=False)
            events.insert(
                0,
                OrderStatusUpdated(
                    order_id=order_id,
                    restaurant_id=order.restaurant_id,
                    user_id=order.user_id,
                    previous_status=current,
                    status=target,
                    reason=reason,
                    order=snapshot,
                ),
            )
            if target == OrderStatus.PENDING:
                events.append(self._created_event(order, snapshot))
            user_id = order.user_id

        log_event("info", "order.status_changed", order_id=order_id, previous=current, status=target, reason=reason)
        self._publish_all(events)
        self._notifications.order_status_changed(user_id, order_id, target, reason)
        return order

    def confirm_payment(self, order_id: str) -> Order:
        return self.transition(order_id, OrderStatus.PENDING, expected=OrderStatus.PROCESSING_PAYMENT)

    def cancel(self, order_id: str, reason: Optional[str] = None, *, actor_id: Optional[str] = None) -> Order:
        return self.transition(order_id, OrderStatus.CANCELED, actor_id=actor_id, reason=reason)

    def announce_created(self, order: Order) -> None:
        """Emit the restaurant feed event and user notification for an order that starts in ``pending``."""
        snapshot = order.to_dict(with_details=False)
        self._publish_all([self._created_event(order, snapshot)])
        self._notifications.order_status_changed(order.user_id, order.id, order.status)

    def publish(self, event: Event) -> None:
        self._publish_all([event])

    # Helpers -----------------------------------------------------------------
    @staticmethod
    def _created_event(order: Order, snapshot: Dict) -> OrderCreated:
        return OrderCreated(
            order_id=order.id,
            restaurant_id=order.restaurant_id,
            user_id=order.user_id,
            status=order.status,
            total=float(order.total or 0),
            order=snapshot,
        )

    def _confirmed_event(self, order: Order) -> Optional[OrderConfirmedForShippers]:
        address = order.restaurant.address if order.restaurant else None
        if address is None or address.latitude is None or address.longitude is None:
            log_event("warning", "order.shipper_broadcast_skipped", order_id=order.id, reason="restaurant has no coordinates")
            return None
        return OrderConfirmedForShippers(
            order_id=order.id,
            restaurant_id=order.restaurant_id,
            restaurant_lat=float(address.latitude),
            restaurant_lng=float(address.longitude),
            radius_km=self.shipper_radius_km,
            shipping_fee=float(order.shipping_fee or 0),
            shipper_earnings=float(order.shipper_earnings or 0),
            delivery_distance=order.delivery_distance,
            delivery_type=order.delivery_type or "asap",
            order=order.to_dict(with_details=False),
        )

    def _publish_all(self, events: List[Optional[Event]]) -> None:
        for event in events:
            if event is None:
                continue
            try:
                self._bus.publish(event)
            except Exception as exc:
                # the transaction is already committed; a failed publish is only logged
                log_event("error", "event.publish_failed", topic=getattr(event, "topic", None), error=str(exc))
