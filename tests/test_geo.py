"""Geo math and progress estimation tests."""

import pytest

from app.services.geo_service import (
    bearing_deg,
    distance_between_m,
    estimate_progress,
    haversine_km,
    make_point,
    nearest_waypoint_m,
    path_length_km,
)

DESTINATION = make_point(40.7306, -73.9352)


def test_haversine_known_distance():
    """New York to London is about 5570 km."""
    assert haversine_km(40.7128, -74.0060, 51.5074, -0.1278) == pytest.approx(5570, rel=0.01)
    assert haversine_km(10.0, 20.0, 10.0, 20.0) == 0.0


def test_bearing_due_east_and_north():
    assert bearing_deg(0.0, 0.0, 0.0, 1.0) == pytest.approx(90.0)
    assert bearing_deg(0.0, 0.0, 1.0, 0.0) == pytest.approx(0.0)


def test_make_point_is_lng_lat():
    assert make_point(1.5, 2.5) == {"type": "Point", "coordinates": [2.5, 1.5]}


def test_progress_non_decreasing_as_user_approaches():
    start = make_point(40.7128, -74.0060)
    total = distance_between_m(start, DESTINATION)
    values = []
    for i in range(11):
        f = i / 10
        lat = 40.7128 + (40.7306 - 40.7128) * f
        lng = -74.0060 + (-73.9352 - -74.0060) * f
        values.append(estimate_progress(DESTINATION, make_point(lat, lng), total))
    assert values == sorted(values)
    assert values[0] == 0.0
    assert values[-1] == 1.0


def test_progress_clamped_to_unit_interval():
    far_away = make_point(-33.8688, 151.2093)
    assert estimate_progress(DESTINATION, far_away, 1000.0) == 0.0
    assert estimate_progress(DESTINATION, DESTINATION, 1000.0) == 1.0


def test_progress_fallback_without_route_distance():
    near = make_point(40.7307, -73.9352)
    far = make_point(40.7128, -74.0060)
    assert estimate_progress(DESTINATION, near) == 0.95
    assert estimate_progress(DESTINATION, far) == 0.1
    assert estimate_progress(DESTINATION, far, 0) == 0.1


def test_path_length_and_nearest_waypoint():
    a, b, c = make_point(0.0, 0.0), make_point(0.0, 0.01), make_point(0.0, 0.02)
    assert path_length_km([a, b, c]) == pytest.approx(haversine_km(0.0, 0.0, 0.0, 0.02), rel=1e-6)
    assert path_length_km([a]) == 0.0
    assert nearest_waypoint_m(b, [[0.0, 0.0], [0.01, 0.0]]) == pytest.approx(0.0, abs=1e-6)
    assert nearest_waypoint_m(b, []) is None
