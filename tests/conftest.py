import json
import os
import queue
import tempfile

# Must be set before the application modules read their configuration
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("MEDIA_ROOT", tempfile.mkdtemp(prefix="blacksite-media-"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

import app as app_module
from backend import redis_backend
from database import Base, SessionLocal, engine
import models  # noqa: F401


class FakePubSub:
    def __init__(self, server):
        self.server = server
        self.channels = set()
        self.messages = queue.Queue()
        self.closed = False

    def subscribe(self, channel):
        self.channels.add(channel)

    def get_message(self, timeout=0.0, ignore_subscribe_messages=False):
        try:
            return self.messages.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self):
        self.closed = True
        self.server.subscribers.discard(self)


class FakeRedis:
    """Just enough of redis.Redis for the change feed."""

    def __init__(self):
        self.published = []
        self.subscribers = set()

    def ping(self):
        return True

    def publish(self, channel, data):
        self.published.append((channel, json.loads(data)))
        receivers = [s for s in list(self.subscribers) if channel in s.channels]
        for sub in receivers:
            sub.messages.put({"type": "message", "channel": channel, "data": data})
        return len(receivers)

    def pubsub(self):
        sub = FakePubSub(self)
        self.subscribers.add(sub)
        return sub

    def events(self, table=None):
        """Published messages, optionally only change events for one table."""
        messages = [m for _, m in self.published]
        if table is None:
            return messages
        return [m for m in messages if m.get("type") == "change" and m.get("table") == table]


@pytest.fixture(autouse=True)
def database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(redis_backend, "redis_client", fake)
    monkeypatch.setattr(redis_backend, "pubsub_client", fake)
    return fake


@pytest.fixture
def db():
    with SessionLocal() as session:
        yield session


@pytest.fixture
def client():
    with TestClient(app_module.app) as test_client:
        yield test_client


@pytest.fixture
def make_room(client):
    def _make_room(**overrides):
        payload = {"title": "Team Feedback Session", "description": "Say it straight"}
        payload.update(overrides)
        response = client.post("/rooms/", json=payload)
        assert response.status_code == 201, response.text
        return response.json()

    return _make_room


@pytest.fixture
def room(make_room):
    return make_room()


def owner_headers(room):
    return {"X-Owner-Token": room["owner_token"]}
