from typing import List, Optional

from ..db.session import get_session, session_scope
from ..models.notification import Notification
from .logging import log_event


STATUS_MESSAGES = {
    "pending": "Your order has been placed and is waiting for the restaurant.",
    "confirmed": "The restaurant confirmed your order. We are finding a driver.",
    "delivering": "Your order is on the way.",
    "completed": "Your order has been delivered. Enjoy your meal!",
    "canceled": "Your order has been canceled.",
}


class NotificationService:
    """Fire-and-forget notification records; failures are logged, never raised."""

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def create(
        self,
        user_id: str,
        content: str,
        type: str = "order",
        *,
        order_id: Optional[str] = None,
        session=None,
    ) -> Optional[Notification]:
        try:
            with session_scope(self._session_factory, session) as s:
                note = Notification(user_id=user_id, content=content, type=type, order_id=order_id)
                s.add(note)
                s.flush()
                return note
        except Exception as exc:
            log_event("warning", "notification.failed", user_id=user_id, order_id=order_id, error=str(exc))
            return None

    def order_status_changed(self, user_id: str, order_id: str, status: str, reason: Optional[str] = None):
        content = STATUS_MESSAGES.get(status, f"Your order status is now {status}.")
        if reason:
            content = f"{content} Reason: {reason}"
        return self.create(user_id, content, "order_status", order_id=order_id)

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        with self._session_factory() as session:
            q = session.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                q = q.filter(Notification.is_read.is_(False))
            return q.order_by(Notification.created_at.desc()).all()
