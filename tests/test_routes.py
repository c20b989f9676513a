import pytest

from app import create_app
from conftest import standard_items
from orderflow.services.event_bus import ORDER_CREATED, EventBus, OrderCreated
from routes.stream import sse_stream

ADMIN = {"X-Admin-Token": "admin-secret"}


@pytest.fixture
def app(app_config, session_factory, clock, distance, gateway):
    return create_app(app_config, session_factory=session_factory, distance=distance, gateway=gateway, clock=clock)


@pytest.fixture
def client(app):
    return app.test_client()


def _order_payload(seed, **overrides):
    payload = {
        "user_id": seed["customer_id"],
        "restaurant_id": seed["restaurant_id"],
        "address_id": seed["address_id"],
        "items": standard_items(seed),
    }
    payload.update(overrides)
    return payload


def test_create_and_fetch_order(client, seed):
    resp = client.post("/api/orders", json=_order_payload(seed))
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["status"] == "pending"
    assert body["total"] == 150000.0
    assert len(body["details"]) == 2

    fetched = client.get(f"/api/orders/{body['id']}")
    assert fetched.status_code == 200
    assert fetched.get_json()["id"] == body["id"]


def test_online_order_returns_payment_url(client, seed):
    resp = client.post("/api/orders", json=_order_payload(seed, payment_method="momo"))
    assert resp.status_code == 201
    body = resp.get_json()
    assert body["status"] == "processing_payment"
    assert body["payment_url"].startswith("https://pay.test/")

    confirm = client.post(f"/api/checkouts/{body['checkout']['id']}/confirm")
    assert confirm.get_json()["status"] == "COMPLETED"
    assert client.get(f"/api/orders/{body['id']}").get_json()["status"] == "pending"


def test_inline_address_is_temporary(client, seed):
    payload = _order_payload(seed, address_id=None, address={"street": "Inline", "latitude": 10.78, "longitude": 106.7})
    resp = client.post("/api/orders", json=payload)
    assert resp.status_code == 201
    assert resp.get_json()["address_id"] != seed["address_id"]


@pytest.mark.parametrize(
    "overrides, status",
    [
        ({"items": []}, 400),
        ({"restaurant_id": "missing"}, 404),
        ({"promotion_code": "NOPE"}, 400),
    ],
)
def test_create_order_errors(client, seed, overrides, status):
    resp = client.post("/api/orders", json=_order_payload(seed, **overrides))
    assert resp.status_code == status
    assert resp.get_json()["error"]


def test_distance_limit_maps_to_422(client, seed, distance):
    distance.km = 31
    resp = client.post("/api/orders", json=_order_payload(seed))
    assert resp.status_code == 422
    assert resp.get_json()["type"] == "ConstraintViolation"


def test_status_updates(client, seed):
    order_id = client.post("/api/orders", json=_order_payload(seed)).get_json()["id"]
    owner = {"X-Actor-Id": seed["owner_id"]}

    bad = client.patch(f"/api/orders/{order_id}/status", json={"status": "delivering"}, headers=owner)
    assert bad.status_code == 409

    forbidden = client.patch(
        f"/api/orders/{order_id}/status", json={"status": "confirmed"}, headers={"X-Actor-Id": seed["customer_id"]}
    )
    assert forbidden.status_code == 403

    ok = client.patch(f"/api/orders/{order_id}/status", json={"status": "confirmed"}, headers=owner)
    assert ok.status_code == 200
    assert ok.get_json()["status"] == "confirmed"

    pool = client.get("/api/pending-assignments").get_json()["assignments"]
    assert [a["order_id"] for a in pool] == [order_id]

    accepted = client.post(f"/api/orders/{order_id}/accept", json={"shipper_id": seed["shipper_id"]})
    assert accepted.status_code == 200
    again = client.post(f"/api/orders/{order_id}/accept", json={"shipper_id": seed["shipper_id"]})
    assert again.status_code == 400


def test_missing_order_is_404(client, seed):
    assert client.get("/api/orders/does-not-exist").status_code == 404


def test_order_lists(client, seed):
    client.post("/api/orders", json=_order_payload(seed))
    mine = client.get(f"/api/users/{seed['customer_id']}/orders?page=1&page_size=5").get_json()
    assert mine["total_items"] == 1
    theirs = client.get(f"/api/restaurants/{seed['restaurant_id']}/orders?status=confirmed").get_json()
    assert theirs["total_items"] == 0
    history = client.get(f"/api/users/{seed['customer_id']}/order-history").get_json()
    assert history["items"][0]["total_amount"] == 150000.0


def test_quote_and_promotion_validation(client, seed):
    quote = client.post("/api/orders/quote", json=_order_payload(seed)).get_json()
    assert quote["shipping_fee"] == 20000.0
    check = client.post("/api/promotions/validate", json={"code": "NOPE", "order_value": 1000}).get_json()
    assert check["valid"] is False
    assert client.post("/api/promotions/validate", json={}).status_code == 400


def test_admin_requires_token(client):
    assert client.get("/admin/constraints").status_code == 401
    assert client.get("/admin/constraints", headers={"X-Admin-Token": "wrong"}).status_code == 401


def test_admin_constraints_and_jobs(client, seed):
    resp = client.get("/admin/constraints", headers=ADMIN)
    assert resp.get_json()["max_delivery_distance"] == 30.0
    resp = client.put("/admin/constraints", json={"max_delivery_distance": 10}, headers=ADMIN)
    assert resp.get_json()["max_delivery_distance"] == 10.0
    assert client.put("/admin/constraints", json={"bogus": 1}, headers=ADMIN).status_code == 400

    jobs = client.get("/admin/jobs", headers=ADMIN).get_json()["jobs"]
    assert "unassigned_orders" in jobs
    run = client.post("/admin/jobs/stuck_payments/run", headers=ADMIN)
    assert run.status_code == 200
    assert run.get_json()["result"]["job"] == "stuck_payments"
    assert client.post("/admin/jobs/nope/run", headers=ADMIN).status_code == 404


def test_admin_promotion_and_delete(client, seed):
    created = client.post(
        "/admin/promotions",
        json={"code": "WELCOME", "discount_percent": 10, "end_date": "2030-01-01T00:00:00Z"},
        headers=ADMIN,
    )
    assert created.status_code == 201
    order_id = client.post("/api/orders", json=_order_payload(seed, promotion_code="WELCOME")).get_json()["id"]
    assert client.delete(f"/admin/orders/{order_id}", headers=ADMIN).status_code == 200
    assert client.get(f"/api/orders/{order_id}").status_code == 404


def test_shipper_stream_requires_position(client):
    assert client.get("/stream/shippers/s1").status_code == 400


def test_stream_response_headers(client):
    resp = client.get("/stream/users/u1?max_events=0")
    assert resp.status_code == 200
    assert resp.mimetype == "text/event-stream"
    assert b": connected" in resp.data


def test_sse_stream_formats_events():
    bus = EventBus()
    sub = bus.subscribe(ORDER_CREATED)
    bus.publish(OrderCreated(order_id="o1", restaurant_id="r1", user_id="u1", status="pending", total=1.0))
    chunks = list(sse_stream([sub], max_events=1))
    assert chunks[0] == ": connected\n\n"
    assert chunks[1].startswith("event: orderCreated\ndata: ")
    assert '"order_id": "o1"' in chunks[1]
    assert sub.closed
    assert bus.subscriber_count() == 0


def test_admin_settings_reload_applies_live(client, app):
    resp = client.put(
        "/admin/settings",
        json={"SHIPPER_RADIUS_KM": "8", "ASSIGNMENT_TIMEOUT_MINUTES": "45", "ADMIN_TOKEN": "x"},
        headers=ADMIN,
    )
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["settings"]["SHIPPER_RADIUS_KM"] == 8.0
    assert body["ignored"] == ["ADMIN_TOKEN"]
    assert body["restart_required"] is True
    components = app.extensions["orderflow_components"]
    assert components["state_machine"].shipper_radius_km == 8.0
    assert components["jobs"].assignment_timeout.total_seconds() == 45 * 60
    assert app.config["ORDERFLOW_CONFIG"].admin_token == "admin-secret"

    bad = client.put("/admin/settings", json={"PAYMENT_TIMEOUT_MINUTES": "-1"}, headers=ADMIN)
    assert bad.status_code == 400


def test_admin_promotion_lookup(client, seed):
    client.post("/admin/promotions", json={"code": "LUNCH", "discount_percent": 15}, headers=ADMIN)
    listed = client.get("/admin/promotions", headers=ADMIN).get_json()["promotions"]
    assert "LUNCH" in {p["code"] for p in listed}
    assert client.get("/admin/promotions/LUNCH", headers=ADMIN).get_json()["code"] == "LUNCH"
    assert client.get("/admin/promotions/NOPE", headers=ADMIN).status_code == 404


def test_user_notifications(client, seed):
    order_id = client.post("/api/orders", json=_order_payload(seed)).get_json()["id"]
    resp = client.get(f"/api/users/{seed['customer_id']}/notifications?unread=1")
    notes = resp.get_json()["notifications"]
    assert [n["order_id"] for n in notes] == [order_id]
