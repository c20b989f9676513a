"""Order, checkout and shipper-pool endpoints."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from orderflow.services.errors import ConstraintViolation, InvalidTransition, NotFoundError, OrderflowError
from orderflow.services.logging import log_event
from orderflow.utils.dto import to_order_response


api_bp = Blueprint("orderflow_api", __name__, url_prefix="/api")

CART_FIELDS = ("restaurant_id", "address_id", "items", "delivery_type", "requested_delivery_time")


def _components() -> Dict[str, Any]:
    return current_app.extensions["orderflow_components"]


def _payload() -> Dict:
    return request.get_json(silent=True) or {}


def _actor_id():
    return request.headers.get("X-Actor-Id") or None


def register_error_handlers(app) -> None:
    def _error(exc, status):
        return jsonify({"error": str(exc), "type": type(exc).__name__}), status

    @app.errorhandler(OrderflowError)
    def _orderflow_error(exc):
        if isinstance(exc, NotFoundError):
            return _error(exc, 404)
        if isinstance(exc, InvalidTransition):
            return _error(exc, 409)
        if isinstance(exc, ConstraintViolation):
            return _error(exc, 422)
        return _error(exc, 400)

    @app.errorhandler(PermissionError)
    def _forbidden(exc):
        return _error(exc, 403)


# --- orders ---------------------------------------------------------------

@api_bp.post("/orders")
def create_order():
    payload = _payload()
    orders = _components()["orders"]
    addresses = _components()["addresses"]

    address_id = payload.get("address_id")
    temp_address_id = None
    if not address_id and isinstance(payload.get("address"), dict):
        temp_address_id = addresses.create_temporary_address(payload.get("user_id"), payload["address"]).id
        address_id = temp_address_id

    try:
        order = orders.create_order(
            user_id=payload.get("user_id"),
            restaurant_id=payload.get("restaurant_id"),
            address_id=address_id,
            items=payload.get("items"),
            promotion_code=payload.get("promotion_code"),
            payment_method=payload.get("payment_method"),
            delivery_type=payload.get("delivery_type"),
            requested_delivery_time=payload.get("requested_delivery_time"),
            note=payload.get("note"),
        )
    except Exception:
        if temp_address_id:
            addresses.delete_temporary_address(temp_address_id)
        raise

    checkout = None
    if not order.is_cod:
        checkout = _components()["checkouts"].create_checkout(order.id)
    return jsonify(to_order_response(order, checkout)), 201


@api_bp.post("/orders/quote")
def quote_order():
    payload = _payload()
    quote = _components()["orders"].calculate_order(
        promotion_code=payload.get("promotion_code"), **{k: payload.get(k) for k in CART_FIELDS}
    )
    return jsonify(quote)


@api_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    order = _components()["orders"].get_order(order_id)
    return jsonify(order.to_dict())


@api_bp.patch("/orders/<order_id>/status")
def update_status(order_id: str):
    payload = _payload()
    status = str(payload.get("status") or "").strip()
    if not status:
        return jsonify({"error": "status is required"}), 400
    order = _components()["state_machine"].transition(
        order_id, status, actor_id=_actor_id(), reason=payload.get("reason")
    )
    return jsonify(order.to_dict())


@api_bp.post("/orders/<order_id>/accept")
def accept_order(order_id: str):
    shipper_id = _payload().get("shipper_id") or _actor_id()
    if not shipper_id:
        return jsonify({"error": "shipper_id is required"}), 400
    detail = _components()["assignments"].accept_order(order_id, shipper_id)
    return jsonify({"status": "ok", "shipping_detail": detail.to_dict()})


@api_bp.get("/users/<user_id>/orders")
def list_user_orders(user_id: str):
    result = _components()["orders"].list_orders_by_user(
        user_id,
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 10, type=int),
        status=request.args.get("status") or None,
    )
    return jsonify(result)


@api_bp.get("/users/<user_id>/order-history")
def user_order_history(user_id: str):
    result = _components()["orders"].order_history(
        user_id,
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 10, type=int),
    )
    return jsonify(result)


@api_bp.get("/users/<user_id>/notifications")
def list_user_notifications(user_id: str):
    unread_only = request.args.get("unread") in {"1", "true", "yes"}
    rows = _components()["notifications"].list_for_user(user_id, unread_only=unread_only)
    return jsonify({"notifications": [n.to_dict() for n in rows]})


@api_bp.get("/restaurants/<restaurant_id>/orders")
def list_restaurant_orders(restaurant_id: str):
    result = _components()["orders"].list_orders_by_restaurant(
        restaurant_id,
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("page_size", 10, type=int),
        status=request.args.get("status") or None,
    )
    return jsonify(result)


# --- promotions & checkout -----------------------------------------------

@api_bp.post("/promotions/validate")
def validate_promotion():
    payload = _payload()
    code = str(payload.get("code") or "").strip()
    if not code:
        return jsonify({"error": "code is required"}), 400
    if payload.get("items"):
        result = _components()["orders"].validate_promotion_for_order(
            code, **{k: payload.get(k) for k in CART_FIELDS}
        )
        return jsonify(result)
    check = _components()["promotions"].validate(code, payload.get("order_value"))
    return jsonify(check.to_dict())


@api_bp.post("/checkouts/<checkout_id>/confirm")
def confirm_checkout(checkout_id: str):
    checkout = _components()["checkouts"].confirm_checkout(checkout_id)
    log_event("info", "checkout.confirm_requested", checkout_id=checkout_id, status=checkout.status)
    return jsonify(checkout.to_dict())


# --- shipper pool -----------------------------------------------------------

@api_bp.get("/pending-assignments")
def list_pending_assignments():
    assignments = _components()["assignments"]
    if request.args.get("ready") in {"1", "true", "yes"}:
        rows = assignments.get_ready_assignments(limit=request.args.get("limit", 10, type=int))
    else:
        rows = assignments.list_assignments()
    return jsonify({"assignments": [r.to_dict() for r in rows]})
