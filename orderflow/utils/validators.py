from datetime import datetime, timezone
from typing import Any, List, Optional

from ..models.order import DELIVERY_TYPES, PAYMENT_METHODS


def parse_datetime(value: Any) -> Optional[datetime]:
    """Accept a datetime or an ISO-8601 string; timezone-aware values are converted to naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip().replace("Z", "+00:00")
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _is_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    try:
        return int(value) == float(value)
    except (TypeError, ValueError):
        return False


def item_errors(index: int, item: Any) -> List[str]:
    prefix = f"items[{index}]"
    if not isinstance(item, dict):
        return [f"{prefix} must be an object"]
    errors = []
    if not item.get("food_id"):
        errors.append(f"{prefix}.food_id is required")
    qty = item.get("quantity")
    if not _is_int(qty) or int(qty) <= 0:
        errors.append(f"{prefix}.quantity must be a positive integer")
    pct = item.get("discount_percent")
    if pct is not None:
        try:
            if not 0 <= float(pct) <= 100:
                errors.append(f"{prefix}.discount_percent must be between 0 and 100")
        except (TypeError, ValueError):
            errors.append(f"{prefix}.discount_percent must be a number")
    toppings = item.get("selected_toppings") or []
    if not isinstance(toppings, list):
        errors.append(f"{prefix}.selected_toppings must be a list")
    else:
        for t_index, topping in enumerate(toppings):
            if not isinstance(topping, dict) or not topping.get("id"):
                errors.append(f"{prefix}.selected_toppings[{t_index}].id is required")
    return errors


def order_request_errors(
    *,
    user_id: Optional[str],
    restaurant_id: Optional[str],
    address_id: Optional[str],
    items: Any,
    payment_method: Optional[str] = None,
    delivery_type: Optional[str] = None,
    requested_delivery_time: Any = None,
) -> List[str]:
    """Every problem with a create-order request; an empty list means the request is well formed."""
    errors: List[str] = []
    if not user_id:
        errors.append("user_id is required")
    if not restaurant_id:
        errors.append("restaurant_id is required")
    if not address_id:
        errors.append("address_id is required")
    if not isinstance(items, list) or not items:
        errors.append("Order must contain at least one item")
    else:
        for index, item in enumerate(items):
            errors.extend(item_errors(index, item))
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        errors.append(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    dtype = delivery_type or "asap"
    if dtype not in DELIVERY_TYPES:
        errors.append(f"delivery_type must be one of: {', '.join(DELIVERY_TYPES)}")
    elif dtype == "scheduled":
        if requested_delivery_time in (None, ""):
            errors.append("requested_delivery_time is required for scheduled delivery")
        else:
            try:
                parse_datetime(requested_delivery_time)
            except (TypeError, ValueError):
                errors.append("requested_delivery_time must be an ISO-8601 timestamp")
    return errors
