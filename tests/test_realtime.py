from datetime import timedelta

import pytest
from fastapi import WebSocketDisconnect
from sqlalchemy import select

from conftest import owner_headers
from models import Ban, Room
from room_access import purge_expired_rooms
from room_utils import now_utc


def ws_url(room, **params):
    query = "&".join(f"{k}={v}" for k, v in params.items())
    return f"/rooms/{room['code']}/ws" + (f"?{query}" if query else "")


def test_connect_sends_welcome(client, room):
    with client.websocket_connect(ws_url(room, display_name="ghost")) as ws:
        welcome = ws.receive_json()

    assert welcome["type"] == "system"
    assert welcome["message"] == "Connected to room"
    assert welcome["code"] == room["code"]
    assert welcome["room_id"] == room["room_id"]
    assert welcome["display_name"] == "ghost"


def test_ping_gets_pong(client, room):
    with client.websocket_connect(ws_url(room)) as ws:
        ws.receive_json()
        ws.send_text("ping")
        assert ws.receive_json()["type"] == "pong"
        ws.send_json({"type": "ping"})
        assert ws.receive_json()["type"] == "pong"


def test_new_post_is_pushed(client, room):
    with client.websocket_connect(ws_url(room, display_name="ghost")) as ws:
        ws.receive_json()
        post = client.post(f"/rooms/{room['code']}/posts/", json={"author_display": "ghost", "content": "hi"}).json()
        event = ws.receive_json()

    assert event["type"] == "change"
    assert event["table"] == "posts"
    assert event["event"] == "INSERT"
    assert event["room_id"] == room["room_id"]
    assert event["record"]["id"] == post["id"]


def test_events_stay_in_their_room(client, make_room):
    room = make_room()
    other = make_room(title="Other")

    with client.websocket_connect(ws_url(room)) as ws:
        ws.receive_json()
        client.post(f"/rooms/{other['code']}/posts/", json={"author_display": "ghost", "content": "elsewhere"})
        mine = client.post(f"/rooms/{room['code']}/posts/", json={"author_display": "ghost", "content": "here"}).json()
        event = ws.receive_json()

    assert event["record"]["id"] == mine["id"]


def test_closing_room_disconnects_clients(client, room):
    with client.websocket_connect(ws_url(room)) as ws:
        ws.receive_json()
        client.delete(f"/rooms/{room['code']}", headers=owner_headers(room))

        closed = ws.receive_json()
        assert closed["type"] == "system"
        assert closed["event"] == "room_closed"
        with pytest.raises(WebSocketDisconnect):
            ws.receive_json()


def test_unknown_room_is_rejected(client):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/rooms/ZZZZ-9999/ws"):
            pass
    assert exc.value.code == 1008


def test_password_room_requires_password(client, make_room):
    room = make_room(password="pw")

    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(ws_url(room)):
            pass

    with client.websocket_connect(ws_url(room, password="pw")) as ws:
        assert ws.receive_json()["type"] == "system"


def test_banned_name_is_rejected(client, db, room):
    room_id = db.scalars(select(Room.id).where(Room.code == room["code"])).one()
    db.add(Ban(room_id=room_id, display_name="troll"))
    db.commit()

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(ws_url(room, display_name="Troll")):
            pass
    assert exc.value.code == 1008


def test_purge_expired_rooms(client, db, make_room):
    stale = make_room(is_ephemeral=True, expiry="1h")
    kept = make_room(is_ephemeral=False, expiry="1h")
    fresh = make_room(is_ephemeral=True, expiry="24h")
    for code in (stale["code"], kept["code"]):
        db.scalars(select(Room).where(Room.code == code)).one().expiry_at = now_utc() - timedelta(minutes=1)
    db.commit()

    assert purge_expired_rooms(db) == 1

    remaining = set(db.scalars(select(Room.code)).all())
    assert remaining == {kept["code"], fresh["code"]}
