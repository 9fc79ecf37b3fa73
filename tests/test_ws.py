"""WebSocket live channel tests."""

import pytest
from starlette.websockets import WebSocketDisconnect

from tests.conftest import link, register, start_journey


def _token(headers):
    return headers["Authorization"].split(" ", 1)[1]


def test_ws_rejects_missing_or_bad_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws") as ws:
            ws.receive_text()
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/ws?token=invalid") as ws:
            ws.receive_text()


def test_ws_ping_and_unknown_event(client):
    _, headers = register(client)
    with client.websocket_connect(f"/ws?token={_token(headers)}") as ws:
        ws.send_text("ping")
        assert ws.receive_json() == {"event": "pong", "data": {}}
        ws.send_json({"event": "register_socket", "data": {}})
        assert ws.receive_json()["event"] == "registered"
        ws.send_json({"event": "dance", "data": {}})
        assert ws.receive_json()["event"] == "error"


def test_parent_watch_requires_link(client):
    user_id, _ = register(client)
    _, parent_headers = register(client, role="parent")
    with client.websocket_connect(f"/ws?token={_token(parent_headers)}") as ws:
        ws.send_json({"event": "parent:watch", "data": {"childId": user_id}})
        frame = ws.receive_json()
        assert frame["event"] == "error"
        assert frame["data"]["message"] == "Not linked to this user"


def test_watching_parent_receives_location_and_alerts(client):
    user_id, user_headers = register(client)
    _, parent_headers = register(client, role="parent")
    link(client, user_headers, parent_headers)
    jid = start_journey(client, user_headers)["id"]

    with client.websocket_connect(f"/ws?token={_token(parent_headers)}") as parent_ws:
        parent_ws.send_json({"event": "parent:watch", "data": {"childId": user_id}})
        assert parent_ws.receive_json()["event"] == "parent:watching"

        r = client.post(
            f"/journeys/{jid}/location",
            headers=user_headers,
            json={"lat": 40.72, "lng": -73.97, "speed": 5, "batteryLevel": 15},
        )
        assert r.status_code == 200

        location = parent_ws.receive_json()
        assert location["event"] == "location:update"
        assert location["data"]["journeyId"] == jid
        assert location["data"]["batteryLevel"] == 15
        alert = parent_ws.receive_json()
        assert alert["event"] == "safety:alert"
        assert alert["data"]["type"] == "low_battery"
        assert alert["data"]["alert"]["severity"] == "medium"


def test_location_over_ws_feeds_active_journey(client):
    user_id, user_headers = register(client)
    _, parent_headers = register(client, role="parent")
    link(client, user_headers, parent_headers)
    jid = start_journey(client, user_headers)["id"]

    with client.websocket_connect(f"/ws?token={_token(parent_headers)}") as parent_ws:
        parent_ws.send_json({"event": "journey:join", "data": {"journeyId": jid}})
        assert parent_ws.receive_json()["data"] == {"journeyId": jid, "status": "active"}

        with client.websocket_connect(f"/ws?token={_token(user_headers)}") as user_ws:
            user_ws.send_json({"event": "location:update", "data": {"userId": user_id, "latitude": 40.73, "longitude": -73.94}})
            ack = user_ws.receive_json()
            assert ack["event"] == "location:ack"
            assert ack["data"]["journeyId"] == jid
            assert 0.0 <= ack["data"]["progress"] <= 1.0

        frame = parent_ws.receive_json()
        assert frame["event"] == "location:update"
        assert frame["data"]["userId"] == user_id

    samples = client.get(f"/journeys/{jid}/locations", headers=user_headers).json()
    assert len(samples) == 1


def test_sos_over_ws_reaches_watching_parent(client):
    user_id, user_headers = register(client)
    _, parent_headers = register(client, role="parent")
    link(client, user_headers, parent_headers)

    with client.websocket_connect(f"/ws?token={_token(parent_headers)}") as parent_ws:
        parent_ws.send_json({"event": "parent:watch", "data": {"childId": user_id}})
        parent_ws.receive_json()
        with client.websocket_connect(f"/ws?token={_token(user_headers)}") as user_ws:
            user_ws.send_json({"event": "sos:send", "data": {"userId": user_id, "lat": 40.7, "lng": -74.0}})
            sent = user_ws.receive_json()
            assert sent["event"] == "sos:sent"
            assert sent["data"]["journeyId"] is None

        frame = parent_ws.receive_json()
        assert frame["event"] == "sos:alert"
        assert frame["data"]["type"] == "sos_call"
        assert frame["data"]["userId"] == user_id
