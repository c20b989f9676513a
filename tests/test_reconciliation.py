from datetime import timedelta

from conftest import standard_items
from orderflow.models import Address, Checkout, CheckoutStatus, Notification, Order, OrderStatus
from orderflow.services.event_bus import ASSIGNMENT_EXPIRED
from orderflow.services.reconciliation import NO_DRIVER_REASON


def _order(services, seed, **overrides):
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


def test_stuck_payment_is_canceled_with_checkout(services, seed, session_factory, clock):
    order = _order(services, seed, payment_method="momo")
    checkout = services["checkouts"].create_checkout(order.id)
    assert checkout.status == CheckoutStatus.PENDING

    clock.advance(minutes=10)
    assert services["jobs"].sweep_stuck_payments(clock()).changed == []

    clock.advance(minutes=6)
    result = services["jobs"].sweep_stuck_payments(clock())
    assert result.changed == [order.id]
    assert _status(session_factory, order.id) == OrderStatus.CANCELED
    with session_factory() as s:
        assert s.get(Checkout, checkout.id).status == CheckoutStatus.CANCELLED


def test_stuck_payment_sweep_ignores_paid_orders(services, seed, session_factory, clock):
    order = _order(services, seed, payment_method="momo")
    checkout = services["checkouts"].create_checkout(order.id)
    services["checkouts"].confirm_checkout(checkout.id)
    clock.advance(minutes=30)
    result = services["jobs"].sweep_stuck_payments(clock())
    assert result.examined == 0
    assert _status(session_factory, order.id) == OrderStatus.PENDING


def test_unassigned_order_is_canceled(services, seed, session_factory, clock, bus):
    order = _order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    expired = bus.subscribe(ASSIGNMENT_EXPIRED)

    clock.advance(minutes=29)
    assert services["jobs"].sweep_unassigned_orders(clock()).examined == 0

    clock.advance(minutes=2)
    result = services["jobs"].sweep_unassigned_orders(clock())
    assert result.changed == [order.id]
    assert _status(session_factory, order.id) == OrderStatus.CANCELED
    assert services["assignments"].get_for_order(order.id) is None
    (event,) = expired.drain()
    assert event.pending_minutes == 31
    with session_factory() as s:
        contents = [n.content for n in s.query(Notification).filter(Notification.order_id == order.id)]
    assert any(NO_DRIVER_REASON in c for c in contents)


def test_unassigned_sweep_is_idempotent(services, seed, session_factory, clock):
    order = _order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    clock.advance(minutes=31)
    jobs = services["jobs"]
    assert jobs.sweep_unassigned_orders(clock()).changed == [order.id]
    second = jobs.sweep_unassigned_orders(clock())
    assert second.changed == [] and second.failed == []
    assert _status(session_factory, order.id) == OrderStatus.CANCELED


def test_unassigned_sweep_skips_orders_that_moved_on(services, seed, session_factory, clock):
    order = _order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    # a concurrent update left the queue entry behind
    with session_factory() as s:
        s.get(Order, order.id).status = OrderStatus.DELIVERING
    clock.advance(minutes=31)
    result = services["jobs"].sweep_unassigned_orders(clock())
    assert result.skipped == [order.id]
    assert _status(session_factory, order.id) == OrderStatus.DELIVERING
    assert services["assignments"].get_for_order(order.id) is None


def test_accepted_order_is_not_canceled(services, seed, session_factory, clock):
    order = _order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    services["assignments"].accept_order(order.id, seed["shipper_id"])
    clock.advance(minutes=45)
    assert services["jobs"].sweep_unassigned_orders(clock()).examined == 0
    assert _status(session_factory, order.id) == OrderStatus.CONFIRMED


def test_temporary_address_gc_keeps_live_references(services, seed, session_factory, clock):
    addresses = services["addresses"]
    live = addresses.create_temporary_address(seed["customer_id"], {"latitude": 10.78, "longitude": 106.70})
    stale = addresses.create_temporary_address(seed["customer_id"], {"latitude": 10.79, "longitude": 106.71})
    _order(services, seed, address_id=live.id)

    clock.advance(hours=25)
    result = services["jobs"].purge_temporary_addresses(clock())
    assert result.removed == 1
    with session_factory() as s:
        assert s.get(Address, live.id) is not None
        assert s.get(Address, stale.id) is None
        assert s.get(Address, seed["address_id"]) is not None


def test_stale_assignment_cleanup_job(services, seed, clock):
    order = _order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    clock.advance(hours=5)
    assert services["jobs"].cleanup_stale_assignments(clock()).removed == 1


def test_shipper_accepting_mid_sweep_keeps_order(services, seed, session_factory, clock, bus, monkeypatch):
    order = _order(services, seed)
    services["state"].transition(order.id, OrderStatus.CONFIRMED)
    expired = bus.subscribe(ASSIGNMENT_EXPIRED)
    jobs = services["jobs"]
    still_waiting = jobs._still_waiting

    def accept_after_check(order_id):
        waiting = still_waiting(order_id)
        services["assignments"].accept_order(order_id, seed["shipper_id"])
        return waiting

    monkeypatch.setattr(jobs, "_still_waiting", accept_after_check)
    clock.advance(minutes=31)
    result = jobs.sweep_unassigned_orders(clock())
    assert result.changed == []
    assert result.skipped == [order.id]
    assert _status(session_factory, order.id) == OrderStatus.CONFIRMED
    with session_factory() as s:
        assert s.get(Order, order.id).shipping_detail.shipper_id == seed["shipper_id"]
    assert expired.drain() == []
