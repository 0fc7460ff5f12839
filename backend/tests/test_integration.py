import json
import time

import pytest
import redis.asyncio as aioredis
from fastapi.testclient import TestClient
from jose import jwt

from app.core.config import settings
from app.core.db import init_db
from app.main import app
from app.services import ffmpeg, log_publisher, storage
from app.services.job_tracker import create_job_record, start_job
from app.worker import media_queue


def _token(claims=None, secret="test-secret"):
    return jwt.encode(claims if claims is not None else {"userId": "user-1"}, secret, algorithm="HS256")


AUTH = {"Authorization": f"Bearer {_token()}"}


@pytest.fixture(name="client")
def client_fixture(tmp_settings):
    # the context manager keeps one event loop alive so queued jobs keep running
    with TestClient(app) as client:
        yield client


@pytest.fixture
def fake_media(monkeypatch):
    def fake_extract_frame(source, timestamp, output_path, size=ffmpeg.THUMBNAIL_SIZE):
        with open(output_path, "wb") as f:
            f.write(b"jpeg")
        return output_path

    monkeypatch.setattr(ffmpeg, "extract_frame", fake_extract_frame)
    monkeypatch.setattr(storage, "upload", lambda data, key, content_type: f"https://cdn.test/{key}")


def _wait_for_terminal(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/jobs/{job_id}", headers=AUTH).json()
        if body["status"] in ("succeeded", "failed"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


def _wait_for_listing(client, job_id, status, timeout=5.0):
    """database writes trail the in-memory status slightly"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        listing = client.get("/api/jobs/", params={"status": status}, headers=AUTH).json()
        if job_id in [j["id"] for j in listing[status]]:
            return listing
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} never reached {status} in the database")


def test_health_check(client):
    """test basic health endpoint"""
    response = client.get("/health/")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_readiness_check(client):
    """test readiness endpoint"""
    response = client.get("/health/ready")
    assert response.status_code == 200
    checks = response.json()["checks"]
    assert checks["database"]["status"] == "healthy"
    assert checks["storage"]["status"] == "healthy"
    assert checks["redis"]["status"] == "warning"


def test_jobs_require_a_token(client):
    assert client.get("/api/jobs/").status_code == 401
    bad = {"Authorization": f"Bearer {_token(secret='wrong-secret')}"}
    assert client.get("/api/jobs/", headers=bad).status_code == 401
    no_user = {"Authorization": f"Bearer {_token({'sub': 'someone'})}"}
    assert client.get("/api/jobs/", headers=no_user).status_code == 401


def test_enqueue_unknown_type(client):
    response = client.post("/api/jobs/", json={"job_type": "bogus-type", "payload": {}}, headers=AUTH)
    assert response.status_code == 400
    assert "bogus-type" in response.json()["detail"]


def test_enqueue_invalid_payload(client):
    response = client.post(
        "/api/jobs/",
        json={"job_type": "optimize-image", "payload": {"imageUrl": "/in.png", "sizes": []}},
        headers=AUTH,
    )
    assert response.status_code == 422


def test_enqueue_and_poll_thumbnail_job(client, fake_media):
    response = client.post(
        "/api/jobs/",
        json={"jobType": "generate-thumbnail", "payload": {"videoUrl": "/videos/in.mp4", "timestamps": [1, 3]}},
        headers=AUTH,
    )
    assert response.status_code == 202
    job_id = response.json()["job_id"]

    final = _wait_for_terminal(client, job_id)
    assert final["progress"] == 100
    assert [t["timestamp"] for t in final["result"]["thumbnails"]] == [1, 3]
    assert "error" not in final

    # mirrored into the database
    listing = _wait_for_listing(client, job_id, "succeeded")
    assert job_id in [j["id"] for j in listing["succeeded"]]
    assert listing["summary"]["succeeded_count"] >= 1


def test_failed_job_reports_error(client, monkeypatch):
    monkeypatch.setattr(storage, "upload", lambda data, key, content_type: f"https://cdn.test/{key}")
    response = client.post(
        "/api/jobs/",
        json={"job_type": "optimize-image", "payload": {"imageUrl": "/nowhere.png", "sizes": [{"width": 1, "height": 1}]}},
        headers=AUTH,
    )

    final = _wait_for_terminal(client, response.json()["job_id"])
    assert final["status"] == "failed"
    assert final["error"]["type"] == "CodecError"
    assert "result" not in final


def test_status_falls_back_to_database_after_eviction(client, fake_media, monkeypatch):
    monkeypatch.setattr(media_queue, "retention", 0)
    response = client.post(
        "/api/jobs/",
        json={"job_type": "generate-thumbnail", "payload": {"videoUrl": "/videos/in.mp4", "timestamps": [2]}},
        headers=AUTH,
    )

    final = _wait_for_terminal(client, response.json()["job_id"])
    assert final["status"] == "succeeded"
    assert final["result"]["thumbnails"][0]["url"].startswith("https://cdn.test/thumbnails/2_")


def test_unknown_job_id(client):
    assert client.get("/api/jobs/does-not-exist", headers=AUTH).status_code == 404


def test_queue_status(client):
    response = client.get("/api/jobs/queue", headers=AUTH)
    assert response.status_code == 200
    queue = response.json()["queue"]
    assert {name: q["concurrency"] for name, q in queue.items()} == {
        "optimize-image": 5,
        "transcode-video": 2,
        "generate-thumbnail": 10,
    }


def test_metrics(client):
    response = client.get("/health/metrics")
    assert response.status_code == 200
    data = response.json()
    assert "by_status" in data["jobs"]
    assert "transcode-video" in data["queue"]


def test_jobs_left_by_a_previous_process_fail_on_startup(tmp_settings):
    init_db()
    create_job_record("leftover-queued", "transcode-video", {"video_url": "/videos/in.mp4"})
    create_job_record("leftover-running", "generate-thumbnail", {"video_url": "/videos/in.mp4"})
    start_job("leftover-running")

    with TestClient(app) as client:
        for job_id in ("leftover-queued", "leftover-running"):
            body = client.get(f"/api/jobs/{job_id}", headers=AUTH).json()
            assert body["status"] == "failed"
            assert body["error"]["type"] == "JobInterruptedError"


class FakePubSub:
    def __init__(self, events):
        self.events = events
        self.channels = []
        self.closed = False

    async def subscribe(self, channel):
        self.channels.append(channel)

    async def unsubscribe(self, channel):
        self.channels.remove(channel)

    async def listen(self):
        yield {"type": "subscribe", "data": 1}
        yield {"type": "message", "data": b"not json"}
        for event in self.events:
            yield {"type": "message", "data": json.dumps(event).encode()}

    async def aclose(self):
        self.closed = True


class FakeRedis:
    def __init__(self, pubsub):
        self._pubsub = pubsub

    def pubsub(self):
        return self._pubsub

    async def aclose(self):
        pass


@pytest.fixture
def job_events(monkeypatch):
    pubsub = FakePubSub([
        {"type": "job_progress", "id": "job-a", "status": "running", "progress": 0},
        {"type": "job_progress", "id": "job-b", "status": "running", "progress": 33},
        {"type": "job_progress", "id": "job-a", "status": "succeeded", "progress": 100},
        {"type": "job_progress", "id": "job-b", "status": "running", "progress": 67},
    ])
    monkeypatch.setattr(settings, "REDIS_URL", "redis://redis.test:6379/0")
    monkeypatch.setattr(log_publisher, "_redis_client", None)
    monkeypatch.setattr(aioredis, "from_url", lambda url: FakeRedis(pubsub))
    return pubsub


def test_ws_jobs_forwards_only_the_requested_job(job_events):
    with TestClient(app).websocket_connect("/ws/jobs?job_id=job-b") as websocket:
        connected = websocket.receive_json()
        assert connected["type"] == "connected"
        assert connected["channel"] == "job_events"
        assert connected["job_id"] == "job-b"

        assert [websocket.receive_json()["progress"] for _ in range(2)] == [33, 67]

    assert job_events.closed
    assert job_events.channels == []


def test_ws_jobs_without_filter_forwards_every_job(job_events):
    with TestClient(app).websocket_connect("/ws/jobs") as websocket:
        assert websocket.receive_json()["job_id"] is None
        events = [websocket.receive_json() for _ in range(4)]

    assert [(e["id"], e["progress"]) for e in events] == [("job-a", 0), ("job-b", 33), ("job-a", 100), ("job-b", 67)]


def test_ws_without_redis_reports_an_error():
    with TestClient(app).websocket_connect("/ws/logs") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "error"
