from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Optional

from ..db.session import get_session
from ..models.system_constraint import SystemConstraint
from ..utils.clock import utcnow
from .errors import ConstraintViolation, ValidationError
from .logging import log_event


INTEGER_FIELDS = ("max_delivery_time_min", "max_schedule_ahead_min")
MONEY_FIELDS = ("base_shipping_fee", "per_km_fee")


def _coerce(name: str, number: Decimal):
    if name in INTEGER_FIELDS:
        return int(number)
    if name in MONEY_FIELDS:
        return number
    return float(number)


@dataclass(frozen=True)
class Constraints:
    """Detached snapshot of the newest ``system_constraint`` row."""

    max_delivery_distance: float = 30.0
    max_delivery_time_min: int = 45
    max_schedule_ahead_min: int = 24 * 60
    base_distance_km: float = 2.0
    base_shipping_fee: Decimal = Decimal("15000")
    per_km_fee: Decimal = Decimal("5000")
    shipper_commission_rate: float = 0.8

    @classmethod
    def from_row(cls, row: SystemConstraint) -> "Constraints":
        return cls(
            max_delivery_distance=float(row.max_delivery_distance),
            max_delivery_time_min=int(row.max_delivery_time_min),
            max_schedule_ahead_min=int(row.max_schedule_ahead_min),
            base_distance_km=float(row.base_distance_km),
            base_shipping_fee=Decimal(str(row.base_shipping_fee)),
            per_km_fee=Decimal(str(row.per_km_fee)),
            shipper_commission_rate=float(row.shipper_commission_rate),
        )


class SystemConstraintsService:
    """Reads constraints with a short cache; updates append a new row."""

    CACHE_SECONDS = 5 * 60

    def __init__(self, session_factory=get_session, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock
        self._cached: Optional[Constraints] = None
        self._cached_at: Optional[datetime] = None
        self._lock = threading.Lock()

    def get_constraints(self) -> Constraints:
        now = self._clock()
        with self._lock:
            if self._cached and self._cached_at and (now - self._cached_at).total_seconds() < self.CACHE_SECONDS:
                return self._cached
        with self._session_factory() as session:
            row = (
                session.query(SystemConstraint)
                .order_by(SystemConstraint.id.desc())
                .first()
            )
            if row is None:
                row = SystemConstraint(created_at=now)
                session.add(row)
                session.flush()
                log_event("info", "constraints.defaults_created")
            snapshot = Constraints.from_row(row)
        with self._lock:
            self._cached, self._cached_at = snapshot, now
        return snapshot

    def update_constraints(self, updates: Dict) -> Constraints:
        unknown = set(updates or {}) - set(SystemConstraint.EDITABLE)
        if unknown:
            raise ValidationError(f"Unknown constraint fields: {', '.join(sorted(unknown))}")
        current = self.get_constraints()
        values = {name: getattr(current, name) for name in SystemConstraint.EDITABLE}
        for key, value in (updates or {}).items():
            try:
                number = Decimal(str(value))
            except (ArithmeticError, ValueError):
                raise ValidationError(f"{key} must be a number")
            if number <= 0:
                raise ValidationError(f"{key} must be > 0")
            values[key] = _coerce(key, number)
        if not 0 < float(values["shipper_commission_rate"]) <= 1:
            raise ValidationError("shipper_commission_rate must be within (0, 1]")
        with self._session_factory() as session:
            row = SystemConstraint(created_at=self._clock(), **values)
            session.add(row)
            session.flush()
            snapshot = Constraints.from_row(row)
        self.clear_cache()
        log_event("info", "constraints.updated", **{k: str(v) for k, v in (updates or {}).items()})
        return snapshot

    def clear_cache(self) -> None:
        with self._lock:
            self._cached = None
            self._cached_at = None


@dataclass(frozen=True)
class FeeQuote:
    distance_km: float
    shipping_fee: Decimal
    shipper_earnings: Decimal
    platform_fee: Decimal
    commission_rate: float


class FeeCalculator:
    """Shipping fee from distance plus the constraint checks tied to delivery cost."""

    def __init__(self, constraints_service: SystemConstraintsService):
        self._constraints = constraints_service

    @property
    def constraints(self) -> Constraints:
        return self._constraints.get_constraints()

    @staticmethod
    def fee_for_distance(distance_km: float, c: Constraints) -> Decimal:
        distance = Decimal(str(distance_km))
        base = Decimal(str(c.base_distance_km))
        if distance <= base:
            return c.base_shipping_fee
        extra_km = (distance - base).to_integral_value(rounding=ROUND_CEILING)
        return c.base_shipping_fee + extra_km * c.per_km_fee

    def quote(self, distance_km: float) -> FeeQuote:
        c = self.constraints
        self.check_distance(distance_km, c)
        fee = self.fee_for_distance(distance_km, c)
        earnings = (fee * Decimal(str(c.shipper_commission_rate))).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return FeeQuote(
            distance_km=distance_km,
            shipping_fee=fee,
            shipper_earnings=earnings,
            platform_fee=fee - earnings,
            commission_rate=c.shipper_commission_rate,
        )

    def check_distance(self, distance_km: float, c: Optional[Constraints] = None) -> None:
        c = c or self.constraints
        if distance_km > c.max_delivery_distance:
            raise ConstraintViolation(
                f"Delivery distance {distance_km:.2f} km exceeds the maximum of {c.max_delivery_distance:g} km"
            )

    def check_delivery_time(self, minutes: int, c: Optional[Constraints] = None) -> None:
        c = c or self.constraints
        if minutes > c.max_delivery_time_min:
            raise ConstraintViolation(
                f"Estimated delivery time {minutes} min exceeds the maximum of {c.max_delivery_time_min} min"
            )

    def scheduled_lead_minutes(self, requested: datetime, now: datetime, c: Optional[Constraints] = None) -> int:
        """Minutes between ``now`` and a scheduled delivery time, validated against the schedule window."""
        c = c or self.constraints
        if requested <= now:
            raise ConstraintViolation("Requested delivery time must be in the future")
        if requested - now > timedelta(minutes=c.max_schedule_ahead_min):
            raise ConstraintViolation(
                f"Requested delivery time is more than {c.max_schedule_ahead_min} minutes ahead"
            )
        return int((requested - now).total_seconds() // 60)
