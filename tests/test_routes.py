import numpy as np
import pytest
from fastapi.testclient import TestClient

import api.routes as routes
from api.main import app
from facetrack.errors import CaptureUnsupported, DeviceUnavailable
from facetrack.models import Artifact, RecordingStatus, SessionStatus


class DummySession:
    """Stands in for FaceTrackSession; no camera, no event-loop tasks."""
    fail_setup = None
    fail_record = None

    def __init__(self, settings):
        self.s = settings
        self.running = False
        self.artifact = None
        self.pixels = None
        self.countdown = type("C", (), {"value": 3})()
        self.recorder = type("R", (), {"elapsed_display": "03s"})()
        self.recording = False

    async def setup(self):
        if DummySession.fail_setup:
            raise DummySession.fail_setup
        self.running = True
        self.pixels = np.zeros((24, 32, 3), dtype=np.uint8)

    async def teardown(self):
        self.running = False

    def status(self):
        return SessionStatus(running=self.running)

    def recording_status(self):
        return RecordingStatus()

    def start_recording(self):
        if DummySession.fail_record:
            raise DummySession.fail_record
        return True

    def stop_recording(self):
        self.artifact = Artifact(data=b"WEBM", filename="recording.webm")
        return True

    def delete_artifact(self):
        self.artifact = None

    def preview(self):
        return self.pixels


@pytest.fixture
def client(monkeypatch):
    DummySession.fail_setup = None
    DummySession.fail_record = None
    monkeypatch.setattr(routes, "session_factory", DummySession)
    monkeypatch.setattr(routes, "_session", None)
    with TestClient(app) as c:
        yield c


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_session_start_and_status(client):
    r = client.post("/session/start")
    assert r.status_code == 200
    assert r.json()["status"] == "started"
    assert client.post("/session/start").json()["status"] == "already_running"
    body = client.get("/session/status").json()
    assert body["running"] is True
    assert body["recording"]["state"] == "idle"
    assert client.post("/session/stop").json()["status"] == "stopped"


def test_fatal_setup_error_is_503(client):
    DummySession.fail_setup = DeviceUnavailable("Could not open camera index 0")
    r = client.post("/session/start")
    assert r.status_code == 503
    assert "camera" in r.json()["detail"]


def test_recording_flow_and_artifact_export(client):
    client.post("/session/start")
    r = client.post("/recording/start")
    assert r.status_code == 202
    assert r.json() == {"status": "counting_down", "countdown": 3}

    assert client.get("/recording/artifact").status_code == 404
    r = client.post("/recording/stop")
    assert r.json() == {"status": "finalizing", "elapsed": "03s"}

    inline = client.get("/recording/artifact")
    assert inline.status_code == 200
    assert inline.content == b"WEBM"
    assert inline.headers["content-type"].startswith("video/webm")
    assert inline.headers["content-disposition"].startswith("inline")

    dl = client.get("/recording/artifact", params={"download": True})
    assert dl.headers["content-disposition"] == 'attachment; filename="recording.webm"'

    assert client.delete("/recording").json() == {"status": "deleted"}
    assert client.get("/recording/artifact").status_code == 404


def test_recording_unsupported_is_409(client):
    client.post("/session/start")
    DummySession.fail_record = CaptureUnsupported("Recording is not supported")
    r = client.post("/recording/start")
    assert r.status_code == 409


def test_preview_jpeg(client):
    assert client.get("/preview.jpg").status_code == 404
    client.post("/session/start")
    r = client.get("/preview.jpg")
    assert r.status_code == 200
    assert r.headers["content-type"] == "image/jpeg"
    assert r.content[:2] == b"\xff\xd8"
