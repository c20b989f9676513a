import pytest

from conftest import standard_items
from orderflow.models import Notification, Order, OrderStatus, PendingShipperAssignment
from orderflow.services.errors import InvalidTransition, NotFoundError, ValidationError
from orderflow.services.event_bus import (
    ORDER_CONFIRMED_FOR_SHIPPERS,
    ORDER_CREATED,
    ORDER_REMOVED_FROM_SHIPPER_POOL,
    ORDER_STATUS_UPDATED,
)
from orderflow.services.order_state import TRANSITIONS, can_transition


def _cod_order(services, seed, **overrides):
    params = dict(
        user_id=seed["customer_id"],
        restaurant_id=seed["restaurant_id"],
        address_id=seed["address_id"],
        items=standard_items(seed),
    )
    params.update(overrides)
    return services["orders"].create_order(**params)


def _status(session_factory, order_id):
    with session_factory() as s:
        return s.get(Order, order_id).status


def _assignment_count(session_factory, order_id):
    with session_factory() as s:
        return s.query(PendingShipperAssignment).filter(PendingShipperAssignment.order_id == order_id).count()


def test_transition_table():
    assert can_transition(OrderStatus.PENDING, OrderStatus.CONFIRMED)
    assert can_transition(OrderStatus.PROCESSING_PAYMENT, OrderStatus.CANCELED)
    assert not can_transition(OrderStatus.PENDING, OrderStatus.DELIVERING)
    assert not can_transition(OrderStatus.COMPLETED, OrderStatus.CANCELED)
    assert OrderStatus.COMPLETED not in TRANSITIONS
    assert OrderStatus.CANCELED not in TRANSITIONS


def test_confirm_then_deliver_manages_shipper_pool(services, seed, bus, session_factory):
    order = _cod_order(services, seed)
    pool = bus.subscribe(ORDER_CONFIRMED_FOR_SHIPPERS)
    removed = bus.subscribe(ORDER_REMOVED_FROM_SHIPPER_POOL)

    services["state"].transition(order.id, OrderStatus.CONFIRMED, actor_id=seed["owner_id"])
    assert _assignment_count(session_factory, order.id) == 1
    (event,) = pool.drain()
    assert event.order_id == order.id
    assert event.restaurant_lat == pytest.approx(10.7769)
    assert event.radius_km == 5.0

    services["state"].transition(order.id, OrderStatus.DELIVERING, actor_id=seed["owner_id"])
    assert _assignment_count(session_factory, order.id) == 0
    assert [e.order_id for e in removed.drain()] == [order.id]


def test_every_transition_publishes_status_update(services, seed, bus):
    order = _cod_order(services, seed)
    sub = bus.subscribe(ORDER_STATUS_UPDATED)
    state = services["state"]
    for target in (OrderStatus.CONFIRMED, OrderStatus.DELIVERING, OrderStatus.COMPLETED):
        state.transition(order.id, target)
    assert [(e.previous_status, e.status) for e in sub.drain()] == [
        (OrderStatus.PENDING, OrderStatus.CONFIRMED),
        (OrderStatus.CONFIRMED, OrderStatus.DELIVERING),
        (OrderStatus.DELIVERING, OrderStatus.COMPLETED),
    ]


def test_completion_marks_order_paid(services, seed, session_factory, clock):
    order = _cod_order(services, seed)
    state = services["state"]
    state.transition(order.id, OrderStatus.CONFIRMED)
    state.transition(order.id, OrderStatus.DELIVERING)
    done = state.transition(order.id, OrderStatus.COMPLETED)
    assert done.is_paid is True
    assert done.payment_date == clock()


def test_illegal_transition_leaves_status(services, seed, session_factory):
    order = _cod_order(services, seed)
    with pytest.raises(InvalidTransition) as exc:
        services["state"].transition(order.id, OrderStatus.DELIVERING)
    assert "from pending to delivering" in str(exc.value)
    assert _status(session_factory, order.id) == OrderStatus.PENDING


def test_terminal_states_are_final(services, seed, session_factory):
    order = _cod_order(services, seed)
    services["state"].cancel(order.id, "changed my mind")
    with pytest.raises(InvalidTransition):
        services["state"].transition(order.id, OrderStatus.CONFIRMED)
    assert _status(session_factory, order.id) == OrderStatus.CANCELED


def test_unknown_status_and_order(services, seed):
    order = _cod_order(services, seed)
    with pytest.raises(ValidationError):
        services["state"].transition(order.id, "teleported")
    with pytest.raises(NotFoundError):
        services["state"].transition("missing", OrderStatus.CONFIRMED)


def test_only_owner_drives_restaurant_transitions(services, seed, session_factory):
    order = _cod_order(services, seed)
    with pytest.raises(PermissionError):
        services["state"].transition(order.id, OrderStatus.CONFIRMED, actor_id=seed["customer_id"])
    assert _status(session_factory, order.id) == OrderStatus.PENDING


def test_expected_status_guard(services, seed, session_factory):
    order = _cod_order(services, seed)
    with pytest.raises(InvalidTransition):
        services["state"].transition(order.id, OrderStatus.CANCELED, expected=OrderStatus.CONFIRMED)
    assert _status(session_factory, order.id) == OrderStatus.PENDING


def test_payment_confirmation_announces_order(services, seed, bus):
    order = _cod_order(services, seed, payment_method="vnpay")
    sub = bus.subscribe(ORDER_CREATED)
    services["state"].confirm_payment(order.id)
    assert [e.order_id for e in sub.drain()] == [order.id]
    with pytest.raises(InvalidTransition):
        services["state"].confirm_payment(order.id)


def test_cancellation_notifies_user_with_reason(services, seed, session_factory):
    order = _cod_order(services, seed)
    services["state"].cancel(order.id, "Out of stock")
    with session_factory() as s:
        contents = [n.content for n in s.query(Notification).filter(Notification.order_id == order.id)]
    assert any("Out of stock" in c for c in contents)


def test_canceling_confirmed_order_leaves_pool(services, seed, bus, session_factory):
    order = _cod_order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    removed = bus.subscribe(ORDER_REMOVED_FROM_SHIPPER_POOL)
    services["state"].cancel(order.id, actor_id=seed["owner_id"])
    assert _assignment_count(session_factory, order.id) == 0
    assert [e.status for e in removed.drain()] == [OrderStatus.CANCELED]


def test_unassigned_guard_refuses_orders_with_a_shipper(services, seed, session_factory):
    order = _cod_order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    services["assignments"].accept_order(order.id, seed["shipper_id"])
    with pytest.raises(InvalidTransition):
        services["state"].transition(
            order.id, OrderStatus.CANCELED, expected=OrderStatus.CONFIRMED, require_unassigned=True
        )
    assert _status(session_factory, order.id) == OrderStatus.CONFIRMED


def test_confirmed_broadcast_marks_assignment_sent(services, seed):
    order = _cod_order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    assert services["assignments"].get_for_order(order.id).is_sent_to_shipper is True
