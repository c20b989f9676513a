"""Server-sent event feeds for restaurants, users and shippers."""

from __future__ import annotations

import json
import time
from typing import Iterable, Iterator, List, Optional

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from orderflow.services.distance_service import valid_coordinates
from orderflow.services.event_bus import (
    ASSIGNMENT_EXPIRED,
    ORDER_CONFIRMED_FOR_SHIPPERS,
    ORDER_CREATED,
    ORDER_REMOVED_FROM_SHIPPER_POOL,
    ORDER_STATUS_UPDATED,
    Subscription,
    event_to_dict,
    for_restaurant,
    for_shipper,
    for_user,
)
from orderflow.services.logging import log_event


stream_bp = Blueprint("orderflow_stream", __name__, url_prefix="/stream")

HEARTBEAT_SECONDS = 15.0
POLL_SECONDS = 0.25


def format_sse(event) -> str:
    data = json.dumps(event_to_dict(event), ensure_ascii=False, default=str)
    return f"event: {event.topic}\ndata: {data}\n\n"


def sse_stream(
    subscriptions: List[Subscription],
    max_events: Optional[int] = None,
    heartbeat: float = HEARTBEAT_SECONDS,
) -> Iterator[str]:
    """Interleave events from ``subscriptions``; the subscriptions are closed when the stream ends."""
    sent = 0
    last_beat = time.monotonic()
    try:
        yield ": connected\n\n"
        while max_events is None or sent < max_events:
            idle = True
            for sub in subscriptions:
                event = sub.get(timeout=POLL_SECONDS / max(len(subscriptions), 1))
                if event is None:
                    continue
                idle = False
                yield format_sse(event)
                sent += 1
                if max_events is not None and sent >= max_events:
                    return
            if idle and time.monotonic() - last_beat >= heartbeat:
                last_beat = time.monotonic()
                yield ": keep-alive\n\n"
    finally:
        for sub in subscriptions:
            sub.close()


def _respond(subscriptions: Iterable[Subscription]) -> Response:
    max_events = request.args.get("max_events", type=int)
    body = sse_stream(list(subscriptions), max_events=max_events)
    return Response(
        stream_with_context(body),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _bus():
    return current_app.extensions["orderflow_components"]["bus"]


@stream_bp.get("/restaurants/<restaurant_id>")
def restaurant_feed(restaurant_id: str):
    bus = _bus()
    match = for_restaurant(restaurant_id)
    return _respond([bus.subscribe(ORDER_CREATED, match), bus.subscribe(ORDER_STATUS_UPDATED, match)])


@stream_bp.get("/users/<user_id>")
def user_feed(user_id: str):
    return _respond([_bus().subscribe(ORDER_STATUS_UPDATED, for_user(user_id))])


@stream_bp.get("/shippers/<shipper_id>")
def shipper_feed(shipper_id: str):
    lat = request.args.get("lat", type=float)
    lng = request.args.get("lng", type=float)
    if not valid_coordinates(lat, lng):
        return jsonify({"error": "lat and lng query parameters are required"}), 400
    radius = request.args.get("radius", type=float)
    if radius is not None and radius <= 0:
        return jsonify({"error": "radius must be > 0"}), 400
    log_event("info", "stream.shipper_connected", shipper_id=shipper_id, lat=lat, lng=lng, radius_km=radius)
    bus = _bus()
    return _respond(
        [
            bus.subscribe(ORDER_CONFIRMED_FOR_SHIPPERS, for_shipper(lat, lng, radius)),
            bus.subscribe(ORDER_REMOVED_FROM_SHIPPER_POOL),
            bus.subscribe(ASSIGNMENT_EXPIRED),
        ]
    )
