"""Order lifecycle and shipper-assignment backend (Flask application)."""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from flask import Flask

from orderflow.config import AppConfig, load_env
from orderflow.db.session import create_session_factory, init_db
from orderflow.services import logging as event_log
from orderflow.services.address_service import AddressService
from orderflow.services.assignment_service import PendingAssignmentService
from orderflow.services.checkout_service import CheckoutService
from orderflow.services.distance_service import DistanceProvider
from orderflow.services.event_bus import EventBus
from orderflow.services.fee_calculator import FeeCalculator, SystemConstraintsService
from orderflow.services.notification_service import NotificationService
from orderflow.services.order_service import OrderService
from orderflow.services.order_state import OrderStateMachine
from orderflow.services.payment_gateway import HttpPaymentGateway
from orderflow.services.promotion_service import PromotionService
from orderflow.services.reconciliation import ReconciliationJobs
from orderflow.services.scheduler import JobScheduler
from orderflow.utils.clock import utcnow
from routes import admin, api, stream


def build_components(
    config: AppConfig,
    session_factory,
    *,
    distance: Optional[DistanceProvider] = None,
    gateway: Optional[HttpPaymentGateway] = None,
    clock: Callable[[], datetime] = utcnow,
) -> dict:
    bus = EventBus()
    constraints = SystemConstraintsService(session_factory, clock)
    fees = FeeCalculator(constraints)
    promotions = PromotionService(session_factory, clock)
    notifications = NotificationService(session_factory)
    assignments = PendingAssignmentService(session_factory, bus, clock)
    state_machine = OrderStateMachine(
        session_factory,
        bus=bus,
        assignments=assignments,
        notifications=notifications,
        shipper_radius_km=config.shipper_radius_km,
        clock=clock,
    )
    distance = distance or DistanceProvider(config.mapbox_access_token, config.mapbox_base_url)
    gateway = gateway or HttpPaymentGateway(config.payment_gateway_url)
    orders = OrderService(
        session_factory,
        distance=distance,
        fees=fees,
        promotions=promotions,
        state_machine=state_machine,
        clock=clock,
    )
    addresses = AddressService(session_factory, clock)
    checkouts = CheckoutService(session_factory, gateway=gateway, state_machine=state_machine, clock=clock)
    jobs = ReconciliationJobs(
        session_factory,
        state_machine=state_machine,
        assignments=assignments,
        addresses=addresses,
        payment_timeout_minutes=config.payment_timeout_minutes,
        assignment_timeout_minutes=config.assignment_timeout_minutes,
        temp_address_ttl_hours=config.temp_address_ttl_hours,
    )
    scheduler = JobScheduler(clock)
    scheduler.add_job("stuck_payments", config.sweep_interval_seconds, jobs.sweep_stuck_payments)
    scheduler.add_job("unassigned_orders", config.sweep_interval_seconds, jobs.sweep_unassigned_orders)
    scheduler.add_job("temporary_addresses", config.gc_interval_seconds, jobs.purge_temporary_addresses)
    scheduler.add_job("stale_assignments", config.gc_interval_seconds, jobs.cleanup_stale_assignments)

    return {
        "bus": bus,
        "constraints": constraints,
        "fees": fees,
        "promotions": promotions,
        "notifications": notifications,
        "assignments": assignments,
        "state_machine": state_machine,
        "orders": orders,
        "addresses": addresses,
        "checkouts": checkouts,
        "jobs": jobs,
        "scheduler": scheduler,
    }


def create_app(
    config: Optional[AppConfig] = None,
    *,
    session_factory=None,
    distance: Optional[DistanceProvider] = None,
    gateway: Optional[HttpPaymentGateway] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Flask:
    config = config or load_env()
    event_log.configure(config.log_level)
    session_factory = session_factory or create_session_factory(config.database_url)
    init_db(session_factory.engine)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["ORDERFLOW_CONFIG"] = config

    components = build_components(config, session_factory, distance=distance, gateway=gateway, clock=clock)
    app.extensions["orderflow_components"] = components

    app.register_blueprint(api.api_bp)
    app.register_blueprint(stream.stream_bp)
    app.register_blueprint(admin.admin_bp)
    api.register_error_handlers(app)

    if config.scheduler_enabled:
        components["scheduler"].start()

    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=6055, debug=False, threaded=True)


if __name__ == "__main__":
    main()
