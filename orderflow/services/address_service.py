from datetime import datetime, timedelta
from typing import Callable, Dict

from sqlalchemy import select

from ..db.session import get_session
from ..models.order import Order, OrderStatus
from ..models.party import Address
from ..utils.clock import utcnow
from .distance_service import valid_coordinates
from .errors import ValidationError
from .logging import log_event


class AddressService:
    """One-off delivery addresses created from inline order input."""

    def __init__(self, session_factory=get_session, clock: Callable[[], datetime] = utcnow):
        self._session_factory = session_factory
        self._clock = clock

    def create_temporary_address(self, user_id: str, data: Dict) -> Address:
        lat, lng = data.get("latitude"), data.get("longitude")
        if not valid_coordinates(lat, lng):
            raise ValidationError("Delivery address needs valid latitude and longitude")
        with self._session_factory() as s:
            address = Address(
                user_id=user_id,
                street=str(data.get("street") or ""),
                ward=str(data.get("ward") or ""),
                district=str(data.get("district") or ""),
                city=str(data.get("city") or ""),
                latitude=float(lat),
                longitude=float(lng),
                is_temporary=True,
                created_at=self._clock(),
            )
            s.add(address)
            s.flush()
        log_event("info", "address.temporary_created", address_id=address.id, user_id=user_id)
        return address

    def delete_temporary_address(self, address_id: str) -> bool:
        with self._session_factory() as s:
            affected = (
                s.query(Address)
                .filter(Address.id == address_id, Address.is_temporary.is_(True))
                .delete(synchronize_session=False)
            )
        return bool(affected)

    def purge_temporary_addresses(self, now: datetime, ttl_hours: int = 24) -> int:
        """Delete temporary addresses older than ``ttl_hours`` that no live order still points at."""
        cutoff = now - timedelta(hours=ttl_hours)
        removed = 0
        with self._session_factory() as s:
            in_use = select(Order.address_id).where(
                Order.address_id.isnot(None), Order.status.notin_(OrderStatus.TERMINAL)
            )
            candidates = (
                s.query(Address)
                .filter(
                    Address.is_temporary.is_(True),
                    Address.created_at < cutoff,
                    Address.id.notin_(in_use),
                )
                .all()
            )
            for address in candidates:
                # orders that already finished keep their history; detach them first
                s.query(Order).filter(Order.address_id == address.id).update(
                    {Order.address_id: None}, synchronize_session=False
                )
                s.delete(address)
                removed += 1
        if removed:
            log_event("info", "address.temporary_purged", removed=removed)
        return removed
