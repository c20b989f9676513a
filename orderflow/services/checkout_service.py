from __future__ import annotations

from datetime import datetime
from typing import Callable, List, Optional

from ..db.session import get_session, session_scope
from ..models.checkout import Checkout, CheckoutStatus
from ..models.order import Order, OrderStatus
from ..utils.clock import utcnow
from .errors import InvalidTransition, NotFoundError, ValidationError
from .logging import log_event
from .order_state import OrderStateMachine
from .payment_gateway import HttpPaymentGateway, PaymentGatewayError


class CheckoutService:
    """Payment sessions for orders that are not cash on delivery.

    A gateway failure marks the checkout FAILED and leaves the order in
    ``processing_payment``; the stuck-payment sweep cancels it later. Cancelling
    the order closes its open checkouts, and a successful payment closes the
    order's other open checkouts.
    """

    def __init__(
        self,
        session_factory=get_session,
        *,
        gateway: HttpPaymentGateway,
        state_machine: OrderStateMachine,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._gateway = gateway
        self._state = state_machine
        self._clock = clock

    def create_checkout(self, order_id: str) -> Checkout:
        with self._session_factory() as s:
            order = s.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            if order.is_cod:
                raise ValidationError("Cash on delivery orders do not need a checkout")
            if order.status != OrderStatus.PROCESSING_PAYMENT:
                raise ValidationError(f"Order {order_id} is not awaiting payment (status: {order.status})")
            checkout = Checkout(
                order_id=order.id,
                user_id=order.user_id,
                amount=order.total,
                payment_method=order.payment_method,
                status=CheckoutStatus.PENDING,
                created_at=self._clock(),
                updated_at=self._clock(),
            )
            s.add(checkout)
            s.flush()
            checkout_id, amount = checkout.id, order.total

        try:
            intent = self._gateway.create_intent(order_id, amount)
        except PaymentGatewayError as exc:
            log_event("warning", "checkout.gateway_failed", order_id=order_id, checkout_id=checkout_id, error=str(exc))
            return self._finish(checkout_id, CheckoutStatus.FAILED, details={"error": str(exc)})

        with self._session_factory() as s:
            checkout = s.get(Checkout, checkout_id)
            checkout.payment_intent_id = intent.id
            checkout.payment_url = intent.redirect_url
            checkout.updated_at = self._clock()
        log_event("info", "checkout.created", order_id=order_id, checkout_id=checkout_id, intent_id=intent.id)
        return checkout

    def confirm_checkout(self, checkout_id: str) -> Checkout:
        with self._session_factory() as s:
            checkout = s.get(Checkout, checkout_id)
            if checkout is None:
                raise NotFoundError("Checkout", checkout_id)
            if checkout.status in CheckoutStatus.TERMINAL:
                raise ValidationError(f"Checkout {checkout_id} is already {checkout.status}")
            if not checkout.payment_intent_id:
                raise ValidationError(f"Checkout {checkout_id} has no payment intent")
            order_id, intent_id = checkout.order_id, checkout.payment_intent_id

        try:
            paid = self._gateway.confirm(intent_id)
        except PaymentGatewayError as exc:
            log_event("warning", "checkout.confirm_failed", checkout_id=checkout_id, error=str(exc))
            return self._finish(checkout_id, CheckoutStatus.FAILED, details={"error": str(exc)})
        if not paid:
            return self._finish(checkout_id, CheckoutStatus.FAILED, details={"error": "payment declined"})

        try:
            self._state.confirm_payment(order_id)
        except InvalidTransition as exc:
            # paid after the order left processing_payment; the capture needs a manual refund
            log_event(
                "warning", "checkout.order_not_awaiting_payment", checkout_id=checkout_id, order_id=order_id, error=str(exc)
            )
            details = {"error": str(exc), "payment_captured": True}
            return self._finish(checkout_id, CheckoutStatus.FAILED, details=details)
        checkout = self._finish(checkout_id, CheckoutStatus.COMPLETED)
        self.cancel_open_checkouts(order_id)
        return checkout

    def cancel_open_checkouts(self, order_id: str, *, session=None) -> int:
        with session_scope(self._session_factory, session) as s:
            affected = (
                s.query(Checkout)
                .filter(Checkout.order_id == order_id, Checkout.status.notin_(CheckoutStatus.TERMINAL))
                .update(
                    {Checkout.status: CheckoutStatus.CANCELLED, Checkout.updated_at: self._clock()},
                    synchronize_session=False,
                )
            )
        if affected:
            log_event("info", "checkout.cancelled", order_id=order_id, count=affected)
        return affected

    def list_for_order(self, order_id: str) -> List[Checkout]:
        with self._session_factory() as s:
            return s.query(Checkout).filter(Checkout.order_id == order_id).order_by(Checkout.created_at.asc()).all()

    def _finish(self, checkout_id: str, status: str, details: Optional[dict] = None) -> Checkout:
        with self._session_factory() as s:
            checkout = s.get(Checkout, checkout_id)
            if checkout.status not in CheckoutStatus.TERMINAL:
                checkout.status = status
                checkout.updated_at = self._clock()
                if details:
                    checkout.payment_details = details
            s.flush()
        log_event("info", "checkout.finished", checkout_id=checkout_id, status=checkout.status)
        return checkout
