import pytest
import requests

from orderflow.services.distance_service import DistanceProvider, haversine_km, valid_coordinates


class _Response:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self):
        return self._payload


def test_haversine_known_distance():
    # Ben Thanh market to Notre-Dame cathedral, Ho Chi Minh City
    assert haversine_km(10.7725, 106.6980, 10.7798, 106.6990) == pytest.approx(0.82, abs=0.02)
    assert haversine_km(10.0, 106.0, 10.0, 106.0) == 0.0


@pytest.mark.parametrize(
    "lat, lng, ok",
    [(10.7, 106.7, True), (None, 106.7, False), (91, 0, False), (0, -181, False), ("x", 1, False), (90, 180, True)],
)
def test_valid_coordinates(lat, lng, ok):
    assert valid_coordinates(lat, lng) is ok


def test_without_token_uses_fallback(monkeypatch):
    def _fail(*args, **kwargs):
        raise AssertionError("remote routing must not be called")

    monkeypatch.setattr(requests, "get", _fail)
    estimate = DistanceProvider().route(10.7725, 106.6980, 10.7798, 106.6990)
    assert estimate.source == "haversine"
    assert estimate.duration_minutes >= 1


def test_mapbox_route_is_authoritative(monkeypatch):
    captured = {}

    def _get(url, params=None, timeout=None):
        captured["url"] = url
        captured["params"] = params
        return _Response({"code": "Ok", "routes": [{"distance": 3200.0, "duration": 600.0}]})

    monkeypatch.setattr(requests, "get", _get)
    estimate = DistanceProvider("token").route(10.0, 106.0, 10.02, 106.01)
    assert estimate.source == "mapbox"
    assert estimate.distance_km == pytest.approx(3.2)
    assert estimate.duration_minutes == 10
    assert captured["url"].endswith("/directions/v5/mapbox/driving/106.0,10.0;106.01,10.02")
    assert captured["params"]["access_token"] == "token"


@pytest.mark.parametrize(
    "behaviour",
    [
        lambda *a, **k: (_ for _ in ()).throw(requests.ConnectionError("down")),
        lambda *a, **k: _Response({}, status=503),
        lambda *a, **k: _Response({"code": "NoRoute", "routes": []}),
        lambda *a, **k: _Response({"routes": [{"distance": "n/a"}]}),
    ],
)
def test_remote_failures_fall_back(monkeypatch, behaviour):
    monkeypatch.setattr(requests, "get", behaviour)
    estimate = DistanceProvider("token").route(10.0, 106.0, 10.02, 106.01)
    assert estimate.source == "haversine"
    assert estimate.distance_km == pytest.approx(haversine_km(10.0, 106.0, 10.02, 106.01))
