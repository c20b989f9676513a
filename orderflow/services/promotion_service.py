from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy import or_

from ..db.session import get_session, session_scope
from ..models.promotion import Promotion, PromotionType
from ..utils.clock import utcnow
from .errors import NotFoundError, ValidationError
from .logging import log_event


@dataclass
class PromotionCheck:
    valid: bool
    reason: Optional[str] = None
    promotion: Optional[Promotion] = None
    discount: Decimal = Decimal("0")

    def to_dict(self) -> Dict:
        return {
            "valid": self.valid,
            "reason": self.reason,
            "promotion": self.promotion.to_dict() if self.promotion is not None else None,
            "discount": float(self.discount),
        }


def _money(value) -> Decimal:
    return Decimal(str(value or 0))


class PromotionService:
    """Promotion code validation and usage accounting.

    Validity (window, usage cap, minimum order value) is re-read from the
    database on every call; nothing is cached.
    """

    def __init__(self, session_factory=get_session, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    # --- validation -------------------------------------------------------
    def validate(self, code: str, order_value=None, *, session=None) -> PromotionCheck:
        if not code or not str(code).strip():
            return PromotionCheck(valid=False, reason="Promotion code is required")
        with session_scope(self._session_factory, session) as s:
            promo = s.query(Promotion).filter(Promotion.code == str(code).strip()).first()
            return self._check(promo, order_value)

    def _check(self, promo: Optional[Promotion], order_value) -> PromotionCheck:
        if promo is None:
            return PromotionCheck(valid=False, reason="Promotion code not found")
        now = self._clock()
        if promo.start_date and promo.start_date > now:
            return PromotionCheck(valid=False, reason="Promotion has not started yet", promotion=promo)
        if promo.end_date and promo.end_date < now:
            return PromotionCheck(valid=False, reason="Promotion has expired", promotion=promo)
        if promo.max_usage is not None and (promo.number_of_used or 0) >= promo.max_usage:
            return PromotionCheck(valid=False, reason="Promotion usage limit reached", promotion=promo)
        if order_value is not None and promo.min_order_value is not None:
            if _money(order_value) < _money(promo.min_order_value):
                return PromotionCheck(
                    valid=False,
                    reason=f"Minimum order value of {_money(promo.min_order_value):f} required",
                    promotion=promo,
                )
        discount = self.calculate_discount(promo, order_value) if order_value is not None else Decimal("0")
        return PromotionCheck(valid=True, promotion=promo, discount=discount)

    @staticmethod
    def calculate_discount(promo: Promotion, base_value) -> Decimal:
        base = _money(base_value)
        if promo.discount_percent:
            discount = base * Decimal(str(promo.discount_percent)) / Decimal("100")
        elif promo.discount_amount:
            discount = _money(promo.discount_amount)
        else:
            discount = Decimal("0")
        if promo.max_discount_amount is not None and discount > _money(promo.max_discount_amount):
            discount = _money(promo.max_discount_amount)
        return discount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @classmethod
    def discount_for_order(cls, promo: Promotion, food_total, shipping_fee) -> Decimal:
        """Discount for an order: food-only for FOOD_DISCOUNT, shipping-only (capped at the fee) otherwise."""
        if promo.type == PromotionType.SHIPPING_DISCOUNT:
            return min(cls.calculate_discount(promo, shipping_fee), _money(shipping_fee))
        return min(cls.calculate_discount(promo, food_total), _money(food_total))

    # --- usage ------------------------------------------------------------
    def use(self, code: str, order_value=None, *, session=None) -> Promotion:
        """Re-validate and increment ``number_of_used`` with a single guarded UPDATE."""
        with session_scope(self._session_factory, session) as s:
            promo = s.query(Promotion).filter(Promotion.code == str(code or "").strip()).first()
            check = self._check(promo, order_value)
            if not check.valid:
                raise ValidationError(check.reason or "Invalid promotion")
            affected = (
                s.query(Promotion)
                .filter(
                    Promotion.id == promo.id,
                    or_(Promotion.max_usage.is_(None), Promotion.number_of_used < Promotion.max_usage),
                )
                .update({Promotion.number_of_used: Promotion.number_of_used + 1}, synchronize_session=False)
            )
            if not affected:
                # another redemption took the last slot between the read and the update
                raise ValidationError("Promotion usage limit reached")
            s.flush()
            s.refresh(promo)
            log_event("info", "promotion.used", code=promo.code, number_of_used=promo.number_of_used)
            return promo

    # --- admin ------------------------------------------------------------
    def create_promotion(self, data: Dict) -> Promotion:
        code = str(data.get("code") or "").strip()
        if not code:
            raise ValidationError("code is required")
        ptype = data.get("type") or PromotionType.FOOD_DISCOUNT
        if ptype not in PromotionType.ALL:
            raise ValidationError(f"type must be one of: {', '.join(PromotionType.ALL)}")
        percent, amount = data.get("discount_percent"), data.get("discount_amount")
        if not percent and not amount:
            raise ValidationError("Either discount_percent or discount_amount must be provided")
        if percent and amount:
            raise ValidationError("Cannot provide both discount_percent and discount_amount")
        if percent and not 0 < float(percent) <= 100:
            raise ValidationError("Discount percent must be between 0 and 100")
        start, end = data.get("start_date"), data.get("end_date")
        if start and end and start >= end:
            raise ValidationError("Start date must be before end date")
        with self._session_factory() as session:
            if session.query(Promotion).filter(Promotion.code == code).first():
                raise ValidationError(f"Promotion code {code} already exists")
            promo = Promotion(
                code=code,
                description=data.get("description"),
                type=ptype,
                discount_percent=float(percent) if percent else None,
                discount_amount=_money(amount) if amount else None,
                min_order_value=_money(data["min_order_value"]) if data.get("min_order_value") is not None else None,
                max_discount_amount=_money(data["max_discount_amount"])
                if data.get("max_discount_amount") is not None
                else None,
                start_date=start,
                end_date=end,
                max_usage=data.get("max_usage"),
                number_of_used=0,
            )
            session.add(promo)
            session.flush()
            return promo

    def get_by_code(self, code: str) -> Promotion:
        with self._session_factory() as session:
            promo = session.query(Promotion).filter(Promotion.code == code).first()
            if promo is None:
                raise NotFoundError("Promotion", code)
            return promo

    def list_active(self, promo_type: Optional[str] = None) -> List[Promotion]:
        now = self._clock()
        with self._session_factory() as session:
            q = session.query(Promotion).filter(
                or_(Promotion.start_date.is_(None), Promotion.start_date <= now),
                or_(Promotion.end_date.is_(None), Promotion.end_date >= now),
                or_(Promotion.max_usage.is_(None), Promotion.number_of_used < Promotion.max_usage),
            )
            if promo_type:
                q = q.filter(Promotion.type == promo_type)
            return q.order_by(Promotion.created_at.desc()).all()
