import os

import pytest
from fastapi import HTTPException
from sqlalchemy import select
from starlette.datastructures import UploadFile

import routers.uploads as uploads_module
import storage
from models import Upload
from storage import MediaRejected, media_storage, validate_media

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def upload(client, room, filename="cat.png", data=PNG_BYTES, mime="image/png", uploader="ghost", **params):
    return client.post(
        f"/rooms/{room['code']}/uploads/",
        files={"file": (filename, data, mime)},
        data={"uploader_display": uploader},
        params=params,
    )


def test_upload_image(client, db, room):
    response = upload(client, room)

    assert response.status_code == 201, response.text
    body = response.json()
    assert body["type"] == "image"
    assert body["mime"] == "image/png"
    assert body["size"] == len(PNG_BYTES)
    assert body["url"].startswith(f"http://testserver/media/{room['room_id']}/")
    assert body["url"].endswith(".png")

    served = client.get(body["url"].replace("http://testserver", ""))
    assert served.status_code == 200
    assert served.content == PNG_BYTES

    recorded = db.scalars(select(Upload)).one()
    assert recorded.uploader_display == "ghost"
    assert recorded.url == body["url"]
    assert recorded.scanned_status == "pending"


def test_uploaded_media_can_be_posted(client, room):
    item = upload(client, room).json()

    post = client.post(
        f"/rooms/{room['code']}/posts/",
        json={"author_display": "ghost", "media": [{"url": item["url"], "type": item["type"], "size": item["size"]}]},
    )
    assert post.status_code == 201
    assert post.json()["media"][0]["url"] == item["url"]


def test_upload_video(client, room):
    response = upload(client, room, filename="clip.webm", data=b"\x1aE\xdf\xa3" * 8, mime="video/webm")
    assert response.status_code == 201
    assert response.json()["type"] == "video"


@pytest.mark.parametrize("filename,mime,detail", [
    ("anim.gif", "image/gif", "Unsupported image type: image/gif"),
    ("clip.mov", "video/quicktime", "Unsupported video type: video/quicktime"),
    ("notes.pdf", "application/pdf", "Unsupported file: notes.pdf"),
])
def test_upload_rejects_type(client, room, filename, mime, detail):
    response = upload(client, room, filename=filename, mime=mime)
    assert response.status_code == 400
    assert response.json()["detail"] == detail


def test_upload_rejects_large_image(client, room, monkeypatch):
    monkeypatch.setattr(storage, "MAX_IMAGE_BYTES", 10)
    response = upload(client, room)
    assert response.status_code == 400
    assert response.json()["detail"] == "Image too large: cat.png > 8MB"


def test_upload_password_room(client, make_room):
    room = make_room(password="pw")
    assert upload(client, room).status_code == 401
    assert upload(client, room, password="pw").status_code == 201


def test_validate_media():
    assert validate_media("a.jpg", "image/jpeg", 1) == "image"
    assert validate_media("a.mp4", "video/mp4", 1) == "video"
    with pytest.raises(MediaRejected):
        validate_media("a.jpg", "image/jpeg", 0)
    with pytest.raises(MediaRejected):
        validate_media("a.mp4", "video/mp4", 50 * 1024 * 1024 + 1)


def test_delete_room_removes_media(client, room):
    item = upload(client, room).json()
    path = item["url"].replace("http://testserver", "")

    client.delete(f"/rooms/{room['code']}", headers={"X-Owner-Token": room["owner_token"]})

    assert client.get(path).status_code == 404


def test_stored_name_follows_mime_type(client, room):
    response = upload(client, room, filename="pic.html", data=b"<script>alert(1)</script>", mime="image/png")

    assert response.status_code == 201
    url = response.json()["url"]
    assert url.endswith(".png")

    served = client.get(url.replace("http://testserver", ""))
    assert served.headers["content-type"].startswith("image/png")


def test_object_path_ignores_client_filename():
    path = media_storage.object_path("room", "video/webm")
    assert path.startswith("room/")
    assert path.endswith(".webm")
    with pytest.raises(MediaRejected):
        media_storage.object_path("room", "text/html")


def room_files(room):
    room_dir = os.path.join(media_storage.bucket_path, room["room_id"])
    return os.listdir(room_dir) if os.path.isdir(room_dir) else []


def test_failed_record_removes_stored_file(client, room, monkeypatch):
    upload(client, room)
    assert len(room_files(room)) == 1

    def broken_commit(db, action):
        db.rollback()
        raise HTTPException(status_code=500, detail=f"Failed to {action}")

    monkeypatch.setattr(uploads_module, "commit_or_500", broken_commit)
    response = upload(client, room)

    assert response.status_code == 500
    assert len(room_files(room)) == 1


def test_upload_reads_at_most_the_cap(client, room, monkeypatch):
    reads = []
    original_read = UploadFile.read

    async def recording_read(self, size=-1):
        reads.append(size)
        return await original_read(self, size)

    monkeypatch.setattr(UploadFile, "read", recording_read)

    assert upload(client, room).status_code == 201
    assert reads == [storage.MAX_IMAGE_BYTES + 1]

    reads.clear()
    monkeypatch.setattr(storage, "MAX_IMAGE_BYTES", 10)
    assert upload(client, room).status_code == 400
    assert reads == []


def test_validate_media_type_only():
    assert validate_media("a.png", "image/png", None) == "image"
    with pytest.raises(MediaRejected):
        validate_media("a.gif", "image/gif", None)
