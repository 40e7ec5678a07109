import uuid
from datetime import timedelta

from conftest import owner_headers
from models import Ban
from room_utils import now_utc


def bans_url(room, suffix=""):
    return f"/rooms/{room['code']}/bans{suffix}"


def make_post(client, room, content="spam spam spam"):
    response = client.post(f"/rooms/{room['code']}/posts/", json={"author_display": "troll", "content": content})
    assert response.status_code == 201
    return response.json()


def test_ban_display_name(client, room, fake_redis):
    response = client.post(bans_url(room), json={"display_name": "  Troll  "}, headers=owner_headers(room))

    assert response.status_code == 201
    ban = response.json()
    assert ban["display_name"] == "Troll"
    assert ban["expires_at"] is None
    assert fake_redis.events("bans")[-1]["event"] == "INSERT"

    join = client.post(f"/rooms/{room['code']}/join", json={"display_name": "troll"})
    assert join.status_code == 403


def test_temporary_ban(client, room):
    response = client.post(bans_url(room), json={"display_name": "troll", "duration": "1h"}, headers=owner_headers(room))
    assert response.json()["expires_at"] is not None


def test_ban_rejects_unknown_duration(client, room):
    response = client.post(bans_url(room), json={"display_name": "troll", "duration": "3w"}, headers=owner_headers(room))
    assert response.status_code == 400


def test_ban_requires_owner(client, room):
    assert client.post(bans_url(room), json={"display_name": "troll"}).status_code == 401
    assert client.get(bans_url(room)).status_code == 401


def test_list_bans_hides_expired(client, db, room):
    headers = owner_headers(room)
    active = client.post(bans_url(room), json={"display_name": "troll"}, headers=headers).json()
    lapsed = client.post(bans_url(room), json={"display_name": "old"}, headers=headers).json()
    db.get(Ban, uuid.UUID(lapsed["id"])).expires_at = now_utc() - timedelta(minutes=1)
    db.commit()

    listed = client.get(bans_url(room), headers=headers).json()
    assert [b["id"] for b in listed] == [active["id"]]

    everything = client.get(bans_url(room), params={"include_expired": True}, headers=headers).json()
    assert {b["id"] for b in everything} == {active["id"], lapsed["id"]}


def test_lift_ban(client, room, fake_redis):
    headers = owner_headers(room)
    ban = client.post(bans_url(room), json={"display_name": "troll"}, headers=headers).json()

    response = client.delete(bans_url(room, f"/{ban['id']}"), headers=headers)

    assert response.status_code == 200
    assert fake_redis.events("bans")[-1]["event"] == "DELETE"
    join = client.post(f"/rooms/{room['code']}/join", json={"display_name": "troll"})
    assert join.status_code == 200
    assert client.delete(bans_url(room, f"/{ban['id']}"), headers=headers).status_code == 404


def test_cannot_lift_ban_of_other_room(client, make_room):
    room = make_room()
    other = make_room(title="Other")
    ban = client.post(bans_url(other), json={"display_name": "troll"}, headers=owner_headers(other)).json()

    response = client.delete(bans_url(room, f"/{ban['id']}"), headers=owner_headers(room))
    assert response.status_code == 404


def test_report_post(client, room):
    post = make_post(client, room)

    response = client.post(
        "/reports",
        json={"content_type": "post", "content_id": post["id"]},
        headers={"User-Agent": "pytest"},
    )

    assert response.status_code == 201
    report = response.json()
    assert report["status"] == "pending"
    assert report["reason"] == "User reported content"
    assert report["content_id"] == post["id"]


def test_report_comment(client, room):
    post = make_post(client, room)
    comment = client.post(
        f"/rooms/{room['code']}/posts/{post['id']}/comments",
        json={"author_display": "troll", "content": "rude"},
    ).json()

    response = client.post("/reports", json={"content_type": "comment", "content_id": comment["id"], "reason": "rude"})

    assert response.status_code == 201
    assert response.json()["reason"] == "rude"


def test_report_unknown_content(client):
    response = client.post("/reports", json={"content_type": "post", "content_id": str(uuid.uuid4())})
    assert response.status_code == 404


def test_report_invalid_content_type(client, room):
    post = make_post(client, room)
    response = client.post("/reports", json={"content_type": "room", "content_id": post["id"]})
    assert response.status_code == 422


def test_owner_lists_and_resolves_reports(client, make_room):
    room = make_room()
    other = make_room(title="Other")
    post = make_post(client, room)
    comment = client.post(
        f"/rooms/{room['code']}/posts/{post['id']}/comments",
        json={"author_display": "troll", "content": "rude"},
    ).json()
    elsewhere = make_post(client, other)

    post_report = client.post("/reports", json={"content_type": "post", "content_id": post["id"]}).json()
    comment_report = client.post("/reports", json={"content_type": "comment", "content_id": comment["id"]}).json()
    other_report = client.post("/reports", json={"content_type": "post", "content_id": elsewhere["id"]}).json()

    headers = owner_headers(room)
    assert client.get(f"/rooms/{room['code']}/reports").status_code == 401
    listed = client.get(f"/rooms/{room['code']}/reports", headers=headers).json()
    assert {r["id"] for r in listed} == {post_report["id"], comment_report["id"]}

    resolved = client.patch(
        f"/rooms/{room['code']}/reports/{post_report['id']}",
        json={"status": "resolved"},
        headers=headers,
    )
    assert resolved.status_code == 200
    assert resolved.json()["status"] == "resolved"

    pending = client.get(f"/rooms/{room['code']}/reports", params={"status": "pending"}, headers=headers).json()
    assert [r["id"] for r in pending] == [comment_report["id"]]

    foreign = client.patch(
        f"/rooms/{room['code']}/reports/{other_report['id']}",
        json={"status": "dismissed"},
        headers=headers,
    )
    assert foreign.status_code == 404


def test_report_status_is_validated(client, room):
    post = make_post(client, room)
    report = client.post("/reports", json={"content_type": "post", "content_id": post["id"]}).json()

    response = client.patch(
        f"/rooms/{room['code']}/reports/{report['id']}",
        json={"status": "deleted"},
        headers=owner_headers(room),
    )
    assert response.status_code == 422
