"""Emergency and SOS tests."""

from tests.conftest import link, register, start_journey

LOCATION = {"lat": 40.72, "lng": -73.97}


def _emergency(client, headers, journey_id, action="sos_call", **extra):
    return client.post(
        "/journeys/emergency",
        headers=headers,
        json={"journeyId": journey_id, "action": action, "location": LOCATION, **extra},
    )


def test_sos_call_is_never_deduplicated(client, channel):
    user_id, user_headers = register(client)
    parent_id, parent_headers = register(client, role="parent")
    link(client, user_headers, parent_headers)
    jid = start_journey(client, user_headers)["id"]

    first = _emergency(client, user_headers, jid, userId=user_id, audioUrl="https://files.example/a.m4a")
    assert first.status_code == 200
    body = first.json()
    assert body["journey_status"] == "emergency"
    assert body["emergency"]["action"] == "sos_call"
    assert body["emergency"]["audio_url"] == "https://files.example/a.m4a"
    assert [n["parentId"] for n in body["emergency"]["notified_parents"]] == [parent_id]
    assert body["emergency"]["notified_parents"][0]["delivered"] is True

    alerts = client.get(f"/journeys/{jid}/alerts", headers=user_headers).json()
    assert [(a["alert_type"], a["severity"], a["resolved"]) for a in alerts] == [("emergency", "critical", False)]

    second = _emergency(client, user_headers, jid)
    assert second.status_code == 200
    assert second.json()["journey_status"] == "emergency"
    assert second.json()["emergency"]["id"] != body["emergency"]["id"]

    history = client.get("/sos/history", headers=user_headers).json()
    assert len([h for h in history if h["journey_id"] == jid]) == 2
    # Both triggers were delivered, and a call was requested for each
    sos_sends = [p for rid, p in channel.sent if rid == parent_id and p.data.get("type") == "sos_call"]
    assert len(sos_sends) == 2
    assert all(p.call for p in sos_sends)


def test_tracking_continues_during_emergency(client):
    _, headers = register(client)
    jid = start_journey(client, headers)["id"]
    _emergency(client, headers, jid)

    r = client.post(f"/journeys/{jid}/location", headers=headers, json={"lat": 40.721, "lng": -73.971, "speed": 4})
    assert r.status_code == 200
    assert r.json()["journey_status"] == "emergency"
    r = client.post(f"/journeys/{jid}/complete", headers=headers, json={})
    assert r.json()["status"] == "completed"


def test_invalid_action_is_400(client):
    _, headers = register(client)
    jid = start_journey(client, headers)["id"]
    r = _emergency(client, headers, jid, action="panic")
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid action value"


def test_missing_journey_is_404(client):
    _, headers = register(client)
    assert _emergency(client, headers, 999999).status_code == 404


def test_sos_call_needs_owner_and_active_journey(client):
    _, owner = register(client)
    _, other = register(client)
    jid = start_journey(client, owner)["id"]
    assert _emergency(client, other, jid).status_code == 403

    client.post(f"/journeys/{jid}/complete", headers=owner, json={})
    assert _emergency(client, owner, jid).status_code == 400


def test_user_id_must_match_journey(client):
    _, headers = register(client)
    jid = start_journey(client, headers)["id"]
    assert _emergency(client, headers, jid, userId=123456789).status_code == 400


def test_parent_can_flag_no_response(client):
    _, user_headers = register(client)
    _, parent_headers = register(client, role="parent")
    link(client, user_headers, parent_headers)
    jid = start_journey(client, user_headers)["id"]

    r = _emergency(client, parent_headers, jid, action="no_response")
    assert r.status_code == 200
    assert r.json()["journey_status"] == "emergency"


def test_standalone_sos(client, channel):
    user_id, user_headers = register(client)
    parent_id, parent_headers = register(client, role="parent")
    link(client, user_headers, parent_headers)

    r = client.post("/sos", headers=user_headers, json={"location": LOCATION, "message": "Help"})
    assert r.status_code == 200
    emergency = r.json()["emergency"]
    assert emergency["journey_id"] is None
    assert emergency["message"] == "Help"
    assert emergency["notified_parents"][0]["parentId"] == parent_id

    history = client.get(f"/sos/history?userId={user_id}", headers=parent_headers).json()
    assert [h["id"] for h in history] == [emergency["id"]]
    _, stranger = register(client, role="parent")
    assert client.get(f"/sos/history?userId={user_id}", headers=stranger).status_code == 403

    # Parents do not send SOS themselves
    assert client.post("/sos", headers=parent_headers, json={"location": LOCATION}).status_code == 403
