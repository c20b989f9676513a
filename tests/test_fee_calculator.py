from datetime import timedelta
from decimal import Decimal

import pytest

from orderflow.services.errors import ConstraintViolation, ValidationError
from orderflow.services.fee_calculator import Constraints, FeeCalculator


@pytest.mark.parametrize(
    "distance, fee",
    [
        (0.5, 15000),
        (2.0, 15000),
        (2.01, 20000),
        (3.0, 20000),
        (3.5, 25000),
        (10.0, 55000),
    ],
)
def test_fee_tiers(distance, fee):
    assert FeeCalculator.fee_for_distance(distance, Constraints()) == Decimal(fee)


def test_quote_splits_fee_with_shipper(services):
    quote = services["fees"].quote(3.0)
    assert quote.shipping_fee == Decimal("20000")
    assert quote.shipper_earnings == Decimal("16000")
    assert quote.platform_fee == Decimal("4000")
    assert quote.commission_rate == pytest.approx(0.8)


def test_distance_equal_to_maximum_is_accepted(services):
    quote = services["fees"].quote(30.0)
    assert quote.shipping_fee == Decimal("155000")


def test_distance_above_maximum_is_rejected(services):
    with pytest.raises(ConstraintViolation) as exc:
        services["fees"].quote(30.01)
    assert "exceeds the maximum" in str(exc.value)


def test_delivery_time_limit(services):
    fees = services["fees"]
    fees.check_delivery_time(45)
    with pytest.raises(ConstraintViolation):
        fees.check_delivery_time(46)


def test_scheduled_window(services, clock):
    fees = services["fees"]
    now = clock()
    assert fees.scheduled_lead_minutes(now + timedelta(hours=2), now) == 120
    with pytest.raises(ConstraintViolation):
        fees.scheduled_lead_minutes(now - timedelta(minutes=1), now)
    with pytest.raises(ConstraintViolation):
        fees.scheduled_lead_minutes(now + timedelta(days=2), now)


def test_default_constraints_row_is_created(services):
    c = services["constraints"].get_constraints()
    assert c.max_delivery_distance == 30.0
    assert c.max_delivery_time_min == 45
    assert c.base_shipping_fee == Decimal("15000")


def test_update_constraints_takes_effect(services):
    constraints = services["constraints"]
    constraints.get_constraints()
    updated = constraints.update_constraints({"per_km_fee": 6000, "max_delivery_distance": "12.5"})
    assert updated.per_km_fee == Decimal("6000")
    assert constraints.get_constraints().max_delivery_distance == 12.5
    assert services["fees"].quote(3.0).shipping_fee == Decimal("21000")
    with pytest.raises(ConstraintViolation):
        services["fees"].quote(13.0)


@pytest.mark.parametrize(
    "updates",
    [
        {"unknown_field": 1},
        {"per_km_fee": -1},
        {"base_shipping_fee": "abc"},
        {"shipper_commission_rate": 1.5},
    ],
)
def test_update_constraints_rejects_bad_values(services, updates):
    with pytest.raises(ValidationError):
        services["constraints"].update_constraints(updates)
