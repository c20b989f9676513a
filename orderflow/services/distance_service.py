"""Route distance between two coordinates.

The Mapbox Directions API is authoritative; when it is not configured or the
call fails for any reason, a great-circle estimate is returned instead so that
order creation never fails because of the routing provider.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import requests


EARTH_RADIUS_KM = 6371.0
# average urban motorbike speed used for the fallback duration estimate
FALLBACK_SPEED_KMH = 25.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def valid_coordinates(lat, lng) -> bool:
    if lat is None or lng is None:
        return False
    try:
        lat_f, lng_f = float(lat), float(lng)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat_f) or math.isnan(lng_f):
        return False
    return -90.0 <= lat_f <= 90.0 and -180.0 <= lng_f <= 180.0


@dataclass(frozen=True)
class RouteEstimate:
    distance_km: float
    duration_seconds: int
    source: str  # "mapbox" or "haversine"

    @property
    def duration_minutes(self) -> int:
        return int(math.ceil(self.duration_seconds / 60.0))


class DistanceProvider:
    """Distance + duration lookups with a great-circle fallback."""

    PROFILE = "mapbox/driving"

    def __init__(
        self,
        access_token: str = "",
        base_url: str = "https://api.mapbox.com",
        timeout: float = 5.0,
        http=None,
    ) -> None:
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http or requests
        self.logger = logging.getLogger(__name__)

    def route(self, from_lat: float, from_lng: float, to_lat: float, to_lng: float) -> RouteEstimate:
        if self.access_token:
            estimate = self._route_remote(from_lat, from_lng, to_lat, to_lng)
            if estimate is not None:
                return estimate
        return self.fallback(from_lat, from_lng, to_lat, to_lng)

    @staticmethod
    def fallback(from_lat: float, from_lng: float, to_lat: float, to_lng: float) -> RouteEstimate:
        km = haversine_km(from_lat, from_lng, to_lat, to_lng)
        seconds = int(round(km / FALLBACK_SPEED_KMH * 3600))
        return RouteEstimate(distance_km=km, duration_seconds=seconds, source="haversine")

    def _route_remote(self, from_lat, from_lng, to_lat, to_lng) -> Optional[RouteEstimate]:
        # Mapbox expects lng,lat pairs
        coords = f"{from_lng},{from_lat};{to_lng},{to_lat}"
        url = f"{self.base_url}/directions/v5/{self.PROFILE}/{coords}"
        try:
            response = self._http.get(
                url,
                params={"access_token": self.access_token, "overview": "false", "alternatives": "false"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
            routes = data.get("routes") or []
            if not routes:
                self.logger.warning("Mapbox returned no route (%s)", data.get("code"))
                return None
            best = routes[0]
            return RouteEstimate(
                distance_km=float(best["distance"]) / 1000.0,
                duration_seconds=int(round(float(best["duration"]))),
                source="mapbox",
            )
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            self.logger.warning("Mapbox directions failed, using haversine fallback: %s", exc)
            return None
