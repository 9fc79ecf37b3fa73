"""Geo math and journey progress estimation."""

from __future__ import annotations

import math
from typing import Any, Iterable, Sequence

from app.core.journey_policies import ARRIVAL_RADIUS_M, FALLBACK_PROGRESS_FAR, FALLBACK_PROGRESS_NEAR

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two lat/lng points in kilometers."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_km(lat1, lon1, lat2, lon2) * 1000.0


def bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, 0-360 degrees."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dlon = math.radians(lon2 - lon1)
    x = math.sin(dlon) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlon)
    return (math.degrees(math.atan2(x, y)) + 360.0) % 360.0


def make_point(lat: float, lng: float) -> dict[str, Any]:
    """GeoJSON point. Coordinates are [lng, lat]."""
    return {"type": "Point", "coordinates": [lng, lat]}


def point_lat_lng(point: dict[str, Any]) -> tuple[float, float]:
    lng, lat = point["coordinates"]
    return float(lat), float(lng)


def distance_between_m(a: dict[str, Any], b: dict[str, Any]) -> float:
    """Metres between two GeoJSON points."""
    lat1, lng1 = point_lat_lng(a)
    lat2, lng2 = point_lat_lng(b)
    return haversine_m(lat1, lng1, lat2, lng2)


def path_length_km(points: Iterable[dict[str, Any]]) -> float:
    """Sum of Haversine legs along a sequence of GeoJSON points."""
    total = 0.0
    prev: dict[str, Any] | None = None
    for pt in points:
        if prev is not None:
            total += distance_between_m(prev, pt) / 1000.0
        prev = pt
    return total


def nearest_waypoint_m(point: dict[str, Any], waypoints: Sequence[Sequence[float]]) -> float | None:
    """Distance in metres from point to the closest [lng, lat] waypoint, None without waypoints."""
    if not waypoints:
        return None
    lat, lng = point_lat_lng(point)
    return min(haversine_m(lat, lng, float(w[1]), float(w[0])) for w in waypoints)


def estimate_progress(
    destination: dict[str, Any],
    current: dict[str, Any],
    route_distance_m: float | None = None,
) -> float:
    """Completion fraction in [0, 1] from the remaining straight-line distance.

    With a planned route distance the result is ``1 - remaining / total``,
    clamped and rounded to 2 places, so it never decreases while the remaining
    distance shrinks. Without one it is a coarse two-step guess: near the
    destination (within ARRIVAL_RADIUS_M) or not.
    """
    remaining_m = distance_between_m(current, destination)
    if route_distance_m and route_distance_m > 0:
        fraction = 1.0 - remaining_m / route_distance_m
        return round(min(1.0, max(0.0, fraction)), 2)
    if remaining_m < ARRIVAL_RADIUS_M:
        return FALLBACK_PROGRESS_NEAR
    return FALLBACK_PROGRESS_FAR


def journey_progress(journey: Any, current: dict[str, Any]) -> float:
    """Progress of a Journey row toward its destination."""
    route = journey.planned_route or {}
    return estimate_progress(journey.destination, current, route.get("distance"))
