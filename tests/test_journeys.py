"""Journey lifecycle API tests."""

import asyncio
from datetime import datetime

import pytest

from app.core.errors import ConflictError
from app.models.journey import JourneyStatus
from app.services import journey_service
from app.services.journey_service import can_transition, transition
from tests.conftest import DESTINATION, create_journey, link, register, start_journey


def _dt(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def test_create_then_read_back_round_trip(client):
    _, headers = register(client)
    journey = create_journey(client, headers)

    r = client.get(f"/journeys/{journey['id']}", headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "planned"
    assert _dt(body["scheduled_time"]) == _dt("2026-11-01T08:30:00Z")
    assert body["destination"] == {"type": "Point", "coordinates": [DESTINATION["lng"], DESTINATION["lat"]]}
    assert body["destination_address"] == "Home"


def test_create_requires_locations_and_schedule(client):
    _, headers = register(client)
    r = client.post("/journeys", headers=headers, json={"startLocation": {"lat": 1, "lng": 2}, "scheduledTime": "2026-11-01T08:30:00Z"})
    assert r.status_code == 400
    r = client.post("/journeys", headers=headers, json={"startLocation": {"lat": 1, "lng": 2}, "destination": {"lat": 1, "lng": 3}})
    assert r.status_code == 400


def test_share_list_must_be_linked_parents(client):
    _, user_headers = register(client)
    stranger_id, _ = register(client, role="parent")
    r = client.post(
        "/journeys",
        headers=user_headers,
        json={
            "startLocation": {"lat": 1, "lng": 2},
            "destination": {"lat": 1, "lng": 3},
            "scheduledTime": "2026-11-01T08:30:00Z",
            "sharedWithParents": [stranger_id],
        },
    )
    assert r.status_code == 400


def test_start_locks_start_point_and_records_sample(client):
    _, headers = register(client)
    journey = create_journey(client, headers)
    r = client.post(
        f"/journeys/{journey['id']}/start",
        headers=headers,
        json={"currentLocation": {"latitude": 40.72, "longitude": -74.0}},
    )
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "active"
    assert body["start_location"]["coordinates"] == [-74.0, 40.72]
    assert body["start_time"] is not None

    samples = client.get(f"/journeys/{journey['id']}/locations", headers=headers).json()
    assert len(samples) == 1
    assert samples[0]["is_moving"] is False


def test_duplicate_activation_is_rejected(client):
    _, headers = register(client)
    first = start_journey(client, headers)
    assert first["status"] == "active"

    second = create_journey(client, headers)
    r = client.post(f"/journeys/{second['id']}/start", headers=headers, json={})
    assert r.status_code == 400
    assert "active journey" in r.json()["detail"]

    # Re-activating the running journey is rejected too
    r = client.post(f"/journeys/{first['id']}/start", headers=headers, json={})
    assert r.status_code == 400


def test_start_errors(client):
    _, owner = register(client)
    _, other = register(client)
    journey = create_journey(client, owner)

    assert client.post(f"/journeys/{journey['id']}/start", headers=other, json={}).status_code == 403
    assert client.post("/journeys/999999/start", headers=owner, json={}).status_code == 404


def test_location_updates_progress(client):
    _, headers = register(client)
    journey = start_journey(client, headers, plannedRoute={"distance": 6500})

    r = client.post(
        f"/journeys/{journey['id']}/location",
        headers=headers,
        json={"lat": 40.7300, "lng": -73.9400, "speed": 5, "batteryLevel": 90},
    )
    assert r.status_code == 200
    body = r.json()
    assert 0.0 <= body["progress"] <= 1.0
    assert body["progress"] > 0.5
    assert body["journey_status"] == "active"
    assert body["alerts"] == []


def test_location_requires_active_journey(client):
    _, headers = register(client)
    journey = create_journey(client, headers)
    r = client.post(f"/journeys/{journey['id']}/location", headers=headers, json={"lat": 1, "lng": 2})
    assert r.status_code == 400


def test_complete_computes_duration_and_metrics(client):
    _, headers = register(client)
    journey = start_journey(client, headers)
    jid = journey["id"]
    client.post(f"/journeys/{jid}/location", headers=headers, json={"lat": 40.7150, "lng": -73.9900, "speed": 10})
    client.post(f"/journeys/{jid}/location", headers=headers, json={"lat": 40.7200, "lng": -73.9700, "speed": 20})

    r = client.post(f"/journeys/{jid}/complete", headers=headers, json={"status": "completed"})
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "completed"
    assert body["progress"] == 1.0
    start, end = _dt(body["start_time"]), _dt(body["end_time"])
    assert end >= start
    assert body["actual_duration"] == int((end - start).total_seconds())
    metrics = body["metrics"]
    assert metrics["avgSpeed"] == 15.0
    assert metrics["maxSpeed"] == 20.0
    assert metrics["alertCount"] == 0
    assert metrics["safetyScore"] == 100
    assert metrics["distanceTravelled"] > 0

    # Terminal: cannot complete twice
    assert client.post(f"/journeys/{jid}/complete", headers=headers, json={}).status_code == 400


def test_safe_arrival_goes_to_every_shared_parent(client, channel):
    _, user_headers = register(client)
    p1, p1_headers = register(client, role="parent")
    p2, p2_headers = register(client, role="parent")
    p3, p3_headers = register(client, role="parent")
    for ph in (p1_headers, p2_headers, p3_headers):
        link(client, user_headers, ph)

    journey = start_journey(client, user_headers, sharedWithParents=[p1, p2])
    assert journey["shared_with_parents"] == sorted([p1, p2])

    r = client.post(f"/journeys/{journey['id']}/complete", headers=user_headers, json={})
    assert r.status_code == 200

    alerts = client.get(f"/journeys/{journey['id']}/alerts", headers=user_headers).json()
    arrivals = [a for a in alerts if a["alert_type"] == "safe_arrival"]
    assert len(arrivals) == 1
    assert arrivals[0]["severity"] == "low"
    assert sorted(n["parent_id"] for n in arrivals[0]["notifications"]) == sorted([p1, p2])
    assert all(n["delivered"] for n in arrivals[0]["notifications"])

    assert "safe_arrival" in channel.types_for(p1)
    assert "safe_arrival" in channel.types_for(p2)
    assert channel.types_for(p3) == []


def test_cancelled_completion_has_no_safe_arrival(client):
    _, headers = register(client)
    journey = start_journey(client, headers)
    r = client.post(f"/journeys/{journey['id']}/complete", headers=headers, json={"status": "cancelled"})
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    alerts = client.get(f"/journeys/{journey['id']}/alerts", headers=headers).json()
    assert [a for a in alerts if a["alert_type"] == "safe_arrival"] == []


def test_cancel_only_before_start(client):
    _, headers = register(client)
    planned = create_journey(client, headers)
    r = client.post(f"/journeys/{planned['id']}/cancel", headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"

    active = start_journey(client, headers)
    assert client.post(f"/journeys/{active['id']}/cancel", headers=headers).status_code == 400


def test_checkpoints_escalate_and_recover(client):
    _, headers = register(client)
    journey = start_journey(client, headers)
    jid = journey["id"]

    r = client.post(f"/journeys/{jid}/checkpoints", headers=headers, json={"status": "unsafe", "location": {"lat": 1, "lng": 2}})
    assert r.status_code == 200
    assert r.json()["status"] == "emergency"
    assert r.json()["checkpoints"][-1]["status"] == "unsafe"

    alerts = client.get(f"/journeys/{jid}/alerts", headers=headers).json()
    assert [(a["alert_type"], a["severity"]) for a in alerts] == [("emergency", "high")]

    r = client.post(f"/journeys/{jid}/checkpoints", headers=headers, json={"status": "safe", "location": {"lat": 1, "lng": 2}})
    assert r.json()["status"] == "active"


def test_parent_active_and_history(client):
    user_id, user_headers = register(client)
    _, parent_headers = register(client, role="parent")
    _, other_parent = register(client, role="parent")
    link(client, user_headers, parent_headers)

    journey = start_journey(client, user_headers)
    client.post(f"/journeys/{journey['id']}/location", headers=user_headers, json={"lat": 40.72, "lng": -73.97, "speed": 3})

    active = client.get("/journeys/active", headers=parent_headers).json()
    assert [a["journey"]["id"] for a in active] == [journey["id"]]
    assert active[0]["latest_location"]["location"]["coordinates"] == [-73.97, 40.72]
    assert 0.0 <= active[0]["progress"] <= 1.0
    assert client.get("/journeys/active", headers=other_parent).json() == []

    history = client.get(f"/journeys/history?childId={user_id}&limit=5", headers=parent_headers).json()
    assert history["total"] == 1
    assert history["items"][0]["id"] == journey["id"]
    assert client.get(f"/journeys/history?childId={user_id}", headers=other_parent).status_code == 403
    assert client.get("/journeys/history", headers=user_headers).json()["total"] == 1

    assert client.get(f"/journeys/{journey['id']}", headers=parent_headers).status_code == 200
    assert client.get(f"/journeys/{journey['id']}", headers=other_parent).status_code == 403


def test_transition_table():
    assert can_transition(JourneyStatus.planned, JourneyStatus.active)
    assert can_transition("active", "emergency")
    assert can_transition("emergency", "active")
    assert not can_transition("planned", "completed")
    assert not can_transition("completed", "active")
    assert not can_transition("cancelled", "cancelled")

    class Row:
        status = "completed"

    with pytest.raises(ConflictError):
        transition(Row(), JourneyStatus.active)


def test_journey_ended_as_emergency_frees_the_user(client):
    _, headers = register(client)
    first = start_journey(client, headers)
    jid = first["id"]

    r = client.post(f"/journeys/{jid}/complete", headers=headers, json={"status": "emergency"})
    assert r.status_code == 200
    assert r.json()["status"] == "emergency"
    assert r.json()["end_time"] is not None

    # Ended: no second completion, no more tracking, no new SOS against it
    assert client.post(f"/journeys/{jid}/complete", headers=headers, json={}).status_code == 400
    assert client.post(f"/journeys/{jid}/location", headers=headers, json={"lat": 1, "lng": 2}).status_code == 400
    sos = client.post(
        "/journeys/emergency",
        headers=headers,
        json={"journeyId": jid, "action": "sos_call", "location": {"lat": 1, "lng": 2}},
    )
    assert sos.status_code == 400

    second = start_journey(client, headers)
    assert second["status"] == "active"
    assert client.get(f"/journeys/{jid}", headers=headers).json()["end_time"] == r.json()["end_time"]


def test_journey_database_work_stays_off_the_event_loop(client, monkeypatch):
    _, headers = register(client)
    journey = create_journey(client, headers)
    jid = journey["id"]

    calls = []
    lookup = journey_service.get_journey

    def recording_lookup(db, journey_id):
        try:
            asyncio.get_running_loop()
            calls.append("event loop")
        except RuntimeError:
            calls.append("worker")
        return lookup(db, journey_id)

    monkeypatch.setattr(journey_service, "get_journey", recording_lookup)
    client.post(f"/journeys/{jid}/start", headers=headers, json={})
    client.post(f"/journeys/{jid}/location", headers=headers, json={"lat": 40.72, "lng": -73.97})
    client.post(f"/journeys/{jid}/checkpoints", headers=headers, json={"status": "safe", "location": {"lat": 1, "lng": 2}})
    client.post(f"/journeys/{jid}/complete", headers=headers, json={})

    assert calls == ["worker"] * 4
