"""Operator endpoints: system constraints, runtime settings, reconciliation jobs, promotions and hard deletes."""

from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request

from orderflow.config import ALLOWED_HOT_KEYS, refresh_non_sensitive, requires_restart
from orderflow.services.logging import log_event
from orderflow.utils.dto import to_constraints_dto
from orderflow.utils.validators import parse_datetime


admin_bp = Blueprint("orderflow_admin", __name__, url_prefix="/admin")


def _components() -> dict:
    return current_app.extensions["orderflow_components"]


def _config():
    return current_app.config["ORDERFLOW_CONFIG"]


@admin_bp.before_request
def guard_admin_token():
    expected = _config().admin_token
    if not expected:
        return jsonify({"error": "Admin API is disabled (ADMIN_TOKEN not set)"}), 403
    supplied = request.headers.get("X-Admin-Token", "")
    if not hmac.compare_digest(supplied, expected):
        return jsonify({"error": "Invalid admin token"}), 401
    return None


@admin_bp.get("/constraints")
def get_constraints():
    return jsonify(to_constraints_dto(_components()["constraints"].get_constraints()))


@admin_bp.put("/constraints")
def update_constraints():
    payload = request.get_json(silent=True) or {}
    if not payload:
        return jsonify({"error": "No constraint values provided"}), 400
    updated = _components()["constraints"].update_constraints(payload)
    return jsonify(to_constraints_dto(updated))


@admin_bp.get("/jobs")
def list_jobs():
    return jsonify({"jobs": _components()["scheduler"].job_names})


@admin_bp.post("/jobs/<name>/run")
def run_job(name: str):
    result = _components()["scheduler"].run_now(name)
    log_event("info", "admin.job_run", job=name)
    if result is None:
        return jsonify({"status": "busy", "job": name}), 409
    return jsonify({"status": "ok", "result": result.to_dict()})


@admin_bp.post("/promotions")
def create_promotion():
    payload = dict(request.get_json(silent=True) or {})
    for key in ("start_date", "end_date"):
        try:
            payload[key] = parse_datetime(payload.get(key))
        except (TypeError, ValueError):
            return jsonify({"error": f"{key} must be an ISO-8601 timestamp"}), 400
    promo = _components()["promotions"].create_promotion(payload)
    return jsonify(promo.to_dict()), 201


@admin_bp.get("/promotions")
def list_promotions():
    promos = _components()["promotions"].list_active(request.args.get("type") or None)
    return jsonify({"promotions": [p.to_dict() for p in promos]})


@admin_bp.get("/promotions/<code>")
def get_promotion(code: str):
    return jsonify(_components()["promotions"].get_by_code(code).to_dict())


@admin_bp.put("/settings")
def update_settings():
    payload = request.get_json(silent=True) or {}
    if not payload:
        return jsonify({"error": "No settings provided"}), 400
    try:
        config = refresh_non_sensitive(payload, _config())
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    current_app.config["ORDERFLOW_CONFIG"] = config
    components = _components()
    components["state_machine"].shipper_radius_km = config.shipper_radius_km
    components["jobs"].apply_timeouts(
        config.payment_timeout_minutes, config.assignment_timeout_minutes, config.temp_address_ttl_hours
    )
    log_event("info", "admin.settings_updated", keys=sorted(payload))
    return jsonify(
        {
            "status": "ok",
            "settings": {
                "CURRENCY": config.currency,
                "SHIPPER_RADIUS_KM": config.shipper_radius_km,
                "PAYMENT_TIMEOUT_MINUTES": config.payment_timeout_minutes,
                "ASSIGNMENT_TIMEOUT_MINUTES": config.assignment_timeout_minutes,
                "TEMP_ADDRESS_TTL_HOURS": config.temp_address_ttl_hours,
            },
            "ignored": sorted(k for k in payload if k not in ALLOWED_HOT_KEYS),
            "restart_required": requires_restart(list(payload)),
        }
    )


@admin_bp.delete("/orders/<order_id>")
def delete_order(order_id: str):
    _components()["orders"].delete_order(order_id)
    log_event("info", "admin.order_deleted", order_id=order_id)
    return jsonify({"status": "ok"})
