from typing import Any, Dict, Optional


def to_constraints_dto(c: Any) -> Dict:
    return {
        "max_delivery_distance": c.max_delivery_distance,
        "max_delivery_time_min": c.max_delivery_time_min,
        "max_schedule_ahead_min": c.max_schedule_ahead_min,
        "base_distance_km": c.base_distance_km,
        "base_shipping_fee": float(c.base_shipping_fee),
        "per_km_fee": float(c.per_km_fee),
        "shipper_commission_rate": c.shipper_commission_rate,
    }


def to_order_response(order: Any, checkout: Optional[Any] = None) -> Dict:
    data = order.to_dict()
    if checkout is not None:
        data["checkout"] = checkout.to_dict()
        data["payment_url"] = getattr(checkout, "payment_url", None)
    return data
