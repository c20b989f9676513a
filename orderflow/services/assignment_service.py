"""Queue of confirmed orders waiting for a shipper to accept them."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError

from ..db.session import get_session, session_scope
from ..models.order import Order, OrderStatus, ShippingDetail
from ..models.pending_assignment import PendingShipperAssignment
from ..utils.clock import utcnow
from .errors import NotFoundError, ValidationError
from .event_bus import EventBus, OrderRemovedFromShipperPool
from .logging import log_event


MAX_ATTEMPTS = 5
MAX_BACKOFF_MINUTES = 30
BACKOFF_STEP_MINUTES = 5
MAX_RETRY_AGE = timedelta(hours=2)
STALE_AFTER = timedelta(hours=4)


def _queue_order(q):
    # consumers always see the most urgent, then the oldest, entry first
    return q.order_by(PendingShipperAssignment.priority.desc(), PendingShipperAssignment.created_at.asc())


class PendingAssignmentService:
    def __init__(
        self,
        session_factory=get_session,
        bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._bus = bus
        self._clock = clock

    def add_pending_assignment(self, order_id: str, priority: int = 1, *, session=None) -> PendingShipperAssignment:
        with session_scope(self._session_factory, session) as s:
            existing = s.query(PendingShipperAssignment).filter(PendingShipperAssignment.order_id == order_id).first()
            if existing is not None:
                log_event("warning", "assignment.exists", order_id=order_id, assignment_id=existing.id)
                return existing
            order = s.get(Order, order_id)
            if order is None:
                raise NotFoundError("Order", order_id)
            if order.status != OrderStatus.CONFIRMED:
                raise ValidationError(f"Order {order_id} is not confirmed (status: {order.status})")
            if order.shipping_detail is not None:
                raise ValidationError(f"Order {order_id} is already assigned to a shipper")
            now = self._clock()
            assignment = PendingShipperAssignment(
                order_id=order_id,
                priority=int(priority),
                attempt_count=0,
                next_attempt_at=now,
                created_at=now,
            )
            s.add(assignment)
            s.flush()
            log_event("info", "assignment.added", order_id=order_id, assignment_id=assignment.id, priority=priority)
            return assignment

    def remove_pending_assignment(self, order_id: str, *, session=None) -> bool:
        """Delete the live assignment for ``order_id``; a missing one is a no-op."""
        with session_scope(self._session_factory, session) as s:
            affected = (
                s.query(PendingShipperAssignment)
                .filter(PendingShipperAssignment.order_id == order_id)
                .delete(synchronize_session=False)
            )
        if affected:
            log_event("info", "assignment.removed", order_id=order_id)
        return bool(affected)

    def remove_by_id(self, assignment_id: str, *, session=None) -> bool:
        with session_scope(self._session_factory, session) as s:
            affected = (
                s.query(PendingShipperAssignment)
                .filter(PendingShipperAssignment.id == assignment_id)
                .delete(synchronize_session=False)
            )
        return bool(affected)

    def get_for_order(self, order_id: str, *, session=None) -> Optional[PendingShipperAssignment]:
        with session_scope(self._session_factory, session) as s:
            return s.query(PendingShipperAssignment).filter(PendingShipperAssignment.order_id == order_id).first()

    def get_expired_assignments(self, cutoff: datetime, *, session=None) -> List[PendingShipperAssignment]:
        """Assignments created before ``cutoff`` (i.e. older than the timeout)."""
        with session_scope(self._session_factory, session) as s:
            q = s.query(PendingShipperAssignment).filter(PendingShipperAssignment.created_at < cutoff)
            return _queue_order(q).all()

    def get_ready_assignments(self, now: Optional[datetime] = None, limit: int = 10) -> List[PendingShipperAssignment]:
        now = now or self._clock()
        with self._session_factory() as s:
            # abandoned entries have no next attempt scheduled
            q = s.query(PendingShipperAssignment).filter(PendingShipperAssignment.next_attempt_at <= now)
            return _queue_order(q).limit(limit).all()

    def list_assignments(self) -> List[PendingShipperAssignment]:
        with self._session_factory() as s:
            return _queue_order(s.query(PendingShipperAssignment)).all()

    def record_attempt(self, assignment_id: str, success: bool = False, note: Optional[str] = None) -> Optional[PendingShipperAssignment]:
        """Book a matching attempt and schedule the next one with linear backoff."""
        now = self._clock()
        with self._session_factory() as s:
            assignment = s.get(PendingShipperAssignment, assignment_id)
            if assignment is None:
                log_event("warning", "assignment.missing", assignment_id=assignment_id)
                return None
            if success:
                s.delete(assignment)
                log_event("info", "assignment.matched", order_id=assignment.order_id)
                return None
            assignment.attempt_count = (assignment.attempt_count or 0) + 1
            assignment.last_attempt_at = now
            backoff = min(assignment.attempt_count * BACKOFF_STEP_MINUTES, MAX_BACKOFF_MINUTES)
            if note:
                assignment.notes = note
            if assignment.attempt_count >= MAX_ATTEMPTS or now - assignment.created_at > MAX_RETRY_AGE:
                assignment.next_attempt_at = None
                assignment.notes = f"Max attempts reached ({assignment.attempt_count}) or expired"
                log_event("warning", "assignment.abandoned", order_id=assignment.order_id, attempts=assignment.attempt_count)
            else:
                assignment.next_attempt_at = now + timedelta(minutes=backoff)
                log_event(
                    "info",
                    "assignment.retry_scheduled",
                    order_id=assignment.order_id,
                    attempt=assignment.attempt_count + 1,
                    backoff_minutes=backoff,
                )
            s.flush()
            return assignment

    def accept_order(self, order_id: str, shipper_id: str) -> ShippingDetail:
        """A shipper takes a confirmed order. Only the first acceptance succeeds."""
        try:
            with self._session_factory() as s:
                order = s.get(Order, order_id)
                if order is None:
                    raise NotFoundError("Order", order_id)
                if order.status != OrderStatus.CONFIRMED:
                    raise ValidationError(f"Order {order_id} is not waiting for a shipper (status: {order.status})")
                if order.shipping_detail is not None:
                    raise ValidationError(f"Order {order_id} is already assigned to a shipper")
                detail = ShippingDetail(order_id=order_id, shipper_id=shipper_id, assigned_at=self._clock())
                s.add(detail)
                s.flush()
                s.query(PendingShipperAssignment).filter(
                    PendingShipperAssignment.order_id == order_id
                ).delete(synchronize_session=False)
                restaurant_id = order.restaurant_id
        except IntegrityError:
            raise ValidationError(f"Order {order_id} is already assigned to a shipper")
        log_event("info", "assignment.accepted", order_id=order_id, shipper_id=shipper_id)
        if self._bus is not None:
            self._bus.publish(
                OrderRemovedFromShipperPool(order_id=order_id, restaurant_id=restaurant_id, status=OrderStatus.CONFIRMED)
            )
        return detail

    def cleanup_stale_assignments(self, now: Optional[datetime] = None) -> int:
        cutoff = (now or self._clock()) - STALE_AFTER
        with self._session_factory() as s:
            affected = (
                s.query(PendingShipperAssignment)
                .filter(PendingShipperAssignment.created_at < cutoff)
                .delete(synchronize_session=False)
            )
        if affected:
            log_event("info", "assignment.cleanup", removed=affected)
        return affected
