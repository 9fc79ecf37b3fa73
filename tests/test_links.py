"""Account, linking, device token and last-location tests."""

from datetime import datetime, timedelta, timezone

from app.models.user import User
from tests.conftest import TestingSessionLocal, link, register, start_journey


def test_register_login_me(client):
    user_id, headers = register(client, name="Sam")
    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json()["id"] == user_id
    assert me.json()["role"] == "user"
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_duplicate_email_and_bad_login(client):
    body = {"email": "dup-link@test.com", "password": "pass1234", "full_name": "D"}
    assert client.post("/auth/register", json=body).status_code == 201
    assert client.post("/auth/register", json=body).status_code == 400
    r = client.post("/auth/login", json={"email": "dup-link@test.com", "password": "wrong"})
    assert r.status_code == 401


def test_linking_code_creates_mirrored_relation(client):
    user_id, user_headers = register(client)
    parent_id, parent_headers = register(client, role="parent")

    code = client.post("/links/code", headers=user_headers).json()
    assert len(code["code"]) == 6 and code["code"].isdigit()

    r = client.post("/links/redeem", headers=parent_headers, json={"code": code["code"]})
    assert r.status_code == 200
    assert r.json()["id"] == user_id

    assert [u["id"] for u in client.get("/links", headers=user_headers).json()] == [parent_id]
    assert [u["id"] for u in client.get("/links", headers=parent_headers).json()] == [user_id]

    # Single use
    assert client.post("/links/redeem", headers=parent_headers, json={"code": code["code"]}).status_code == 404


def test_only_parents_redeem_and_only_users_issue(client):
    _, user_headers = register(client)
    _, other_user = register(client)
    _, parent_headers = register(client, role="parent")
    code = client.post("/links/code", headers=user_headers).json()["code"]
    assert client.post("/links/redeem", headers=other_user, json={"code": code}).status_code == 403
    assert client.post("/links/code", headers=parent_headers).status_code == 403


def test_expired_code_is_rejected(client):
    user_id, user_headers = register(client)
    _, parent_headers = register(client, role="parent")
    code = client.post("/links/code", headers=user_headers).json()["code"]

    db = TestingSessionLocal()
    try:
        user = db.get(User, user_id)
        user.linking_code_expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.commit()
    finally:
        db.close()

    assert client.post("/links/redeem", headers=parent_headers, json={"code": code}).status_code == 400


def test_unlink_removes_both_sides(client):
    _, user_headers = register(client)
    parent_id, parent_headers = register(client, role="parent")
    code = client.post("/links/code", headers=user_headers).json()["code"]
    client.post("/links/redeem", headers=parent_headers, json={"code": code})

    assert client.delete(f"/links/{parent_id}", headers=user_headers).status_code == 204
    assert client.get("/links", headers=user_headers).json() == []
    assert client.get("/links", headers=parent_headers).json() == []
    assert client.delete(f"/links/{parent_id}", headers=user_headers).status_code == 404


def test_device_tokens(client):
    _, headers = register(client, role="parent")
    r = client.post("/users/me/device-tokens", headers=headers, json={"token": "fcm-abc"})
    assert r.json()["device_tokens"] == ["fcm-abc"]
    r = client.post("/users/me/device-tokens", headers=headers, json={"token": "fcm-abc"})
    assert r.json()["device_tokens"] == ["fcm-abc"]
    r = client.delete("/users/me/device-tokens/fcm-abc", headers=headers)
    assert r.json()["device_tokens"] == []


def test_last_location_visible_to_linked_parent(client):
    user_id, user_headers = register(client)
    _, parent_headers = register(client, role="parent")
    _, stranger = register(client, role="parent")
    code = client.post("/links/code", headers=user_headers).json()["code"]
    client.post("/links/redeem", headers=parent_headers, json={"code": code})

    r = client.post("/location", headers=user_headers, json={"lat": 51.5, "lng": -0.12, "speed": 2})
    assert r.status_code == 200
    assert r.json()["location"] == {"type": "Point", "coordinates": [-0.12, 51.5]}

    r = client.get(f"/users/{user_id}/location", headers=parent_headers)
    assert r.status_code == 200
    assert r.json()["location"]["coordinates"] == [-0.12, 51.5]
    assert client.get(f"/users/{user_id}/location", headers=stranger).status_code == 403
    assert client.get("/users/999999/location", headers=parent_headers).status_code == 404


def test_unlinked_parent_loses_delivery_and_access(client, channel):
    user_id, user_headers = register(client)
    parent_id, parent_headers = register(client, role="parent")
    link(client, user_headers, parent_headers)
    jid = start_journey(client, user_headers, sharedWithParents=[parent_id])["id"]
    assert "journey_started" in channel.types_for(parent_id)

    token = parent_headers["Authorization"].split(" ", 1)[1]
    with client.websocket_connect(f"/ws?token={token}") as parent_ws:
        parent_ws.send_json({"event": "parent:watch", "data": {"childId": user_id}})
        assert parent_ws.receive_json()["event"] == "parent:watching"
        parent_ws.send_json({"event": "journey:join", "data": {"journeyId": jid}})
        assert parent_ws.receive_json()["event"] == "journey:joined"

        assert client.delete(f"/links/{parent_id}", headers=user_headers).status_code == 204
        r = client.post(f"/journeys/{jid}/location", headers=user_headers, json={"lat": 40.72, "lng": -73.97, "batteryLevel": 15})
        assert [a["alert_type"] for a in r.json()["alerts"]] == ["low_battery"]

        # Nothing was queued on the revoked subscriptions ahead of the pong
        parent_ws.send_json({"event": "ping", "data": {}})
        assert parent_ws.receive_json()["event"] == "pong"

    assert "low_battery" not in channel.types_for(parent_id)
    assert client.get(f"/journeys/{jid}", headers=parent_headers).status_code == 403
    assert client.get(f"/journeys/{jid}", headers=user_headers).json()["shared_with_parents"] == []
