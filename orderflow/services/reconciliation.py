"""Periodic jobs that cancel orders stuck waiting on payment or a shipper.

Every job takes ``now`` explicitly, re-reads each candidate right before acting
and treats an order whose state already moved on as a no-op, so a rerun or a
race with a legitimate transition never double-cancels. A failure on one item
is logged and the sweep continues with the next.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from ..db.session import get_session
from ..models.order import Order, OrderStatus
from .address_service import AddressService
from .assignment_service import PendingAssignmentService
from .errors import InvalidTransition
from .event_bus import AssignmentExpired
from .logging import log_event
from .order_state import OrderStateMachine


PAYMENT_TIMEOUT_REASON = "Payment was not completed in time"
NO_DRIVER_REASON = "No delivery driver available in your area"


@dataclass
class SweepResult:
    job: str
    examined: int = 0
    changed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    removed: int = 0

    def to_dict(self):
        return {
            "job": self.job,
            "examined": self.examined,
            "changed": list(self.changed),
            "skipped": list(self.skipped),
            "failed": list(self.failed),
            "removed": self.removed,
        }


class ReconciliationJobs:
    def __init__(
        self,
        session_factory=get_session,
        *,
        state_machine: OrderStateMachine,
        assignments: PendingAssignmentService,
        addresses: Optional[AddressService] = None,
        payment_timeout_minutes: int = 15,
        assignment_timeout_minutes: int = 30,
        temp_address_ttl_hours: int = 24,
    ):
        self._session_factory = session_factory
        self._state = state_machine
        self._assignments = assignments
        self._addresses = addresses
        self.apply_timeouts(payment_timeout_minutes, assignment_timeout_minutes, temp_address_ttl_hours)

    def apply_timeouts(self, payment_timeout_minutes: int, assignment_timeout_minutes: int, temp_address_ttl_hours: int):
        self.payment_timeout = timedelta(minutes=payment_timeout_minutes)
        self.assignment_timeout = timedelta(minutes=assignment_timeout_minutes)
        self.temp_address_ttl_hours = temp_address_ttl_hours

    def sweep_stuck_payments(self, now: datetime) -> SweepResult:
        result = SweepResult("stuck_payments")
        cutoff = now - self.payment_timeout
        with self._session_factory() as s:
            order_ids = [
                row.id
                for row in s.query(Order.id)
                .filter(Order.status == OrderStatus.PROCESSING_PAYMENT, Order.created_at < cutoff)
                .order_by(Order.created_at.asc())
            ]
        result.examined = len(order_ids)
        for order_id in order_ids:
            try:
                self._state.transition(
                    order_id,
                    OrderStatus.CANCELED,
                    reason=PAYMENT_TIMEOUT_REASON,
                    expected=OrderStatus.PROCESSING_PAYMENT,
                )
            except InvalidTransition as exc:
                log_event("info", "sweep.skipped", job=result.job, order_id=order_id, reason=str(exc))
                result.skipped.append(order_id)
                continue
            except Exception as exc:
                log_event("error", "sweep.item_failed", job=result.job, order_id=order_id, error=str(exc))
                result.failed.append(order_id)
                continue
            result.changed.append(order_id)
        self._log(result)
        return result

    def sweep_unassigned_orders(self, now: datetime) -> SweepResult:
        result = SweepResult("unassigned_orders")
        expired = self._assignments.get_expired_assignments(now - self.assignment_timeout)
        result.examined = len(expired)
        for entry in expired:
            order_id, assignment_id = entry.order_id, entry.id
            try:
                if not self._still_waiting(order_id):
                    # order moved on without the queue being cleared
                    self._assignments.remove_by_id(assignment_id)
                    log_event("info", "sweep.skipped", job=result.job, order_id=order_id, reason="no longer waiting")
                    result.skipped.append(order_id)
                    continue
                self._state.transition(
                    order_id,
                    OrderStatus.CANCELED,
                    reason=NO_DRIVER_REASON,
                    expected=OrderStatus.CONFIRMED,
                    require_unassigned=True,
                )
            except InvalidTransition as exc:
                log_event("info", "sweep.skipped", job=result.job, order_id=order_id, reason=str(exc))
                result.skipped.append(order_id)
                continue
            except Exception as exc:
                log_event("error", "sweep.item_failed", job=result.job, order_id=order_id, error=str(exc))
                result.failed.append(order_id)
                continue
            pending_minutes = int((now - entry.created_at).total_seconds() // 60)
            self._state.publish(
                AssignmentExpired(order_id=order_id, assignment_id=assignment_id, pending_minutes=pending_minutes)
            )
            result.changed.append(order_id)
        self._log(result)
        return result

    def purge_temporary_addresses(self, now: datetime) -> SweepResult:
        result = SweepResult("temporary_addresses")
        if self._addresses is not None:
            result.removed = self._addresses.purge_temporary_addresses(now, self.temp_address_ttl_hours)
        self._log(result)
        return result

    def cleanup_stale_assignments(self, now: datetime) -> SweepResult:
        result = SweepResult("stale_assignments")
        result.removed = self._assignments.cleanup_stale_assignments(now)
        self._log(result)
        return result

    def _still_waiting(self, order_id: str) -> bool:
        with self._session_factory() as s:
            order = s.get(Order, order_id)
            return order is not None and order.status == OrderStatus.CONFIRMED and order.shipping_detail is None

    @staticmethod
    def _log(result: SweepResult) -> None:
        log_event(
            "info",
            "sweep.finished",
            job=result.job,
            examined=result.examined,
            changed=len(result.changed),
            skipped=len(result.skipped),
            failed=len(result.failed),
            removed=result.removed,
        )
