import asyncio, sys, types
import numpy as np
import pytest

import facetrack.detection as detection
from facetrack.config import Settings
from facetrack.errors import InferenceFailure, ModelLoadError


class DummyDeepFace:
    built = []
    seen_shapes = []

    @staticmethod
    def build_model(model_name, task=None):
        DummyDeepFace.built.append((model_name, task))
        return object()

    @staticmethod
    def analyze(img, actions, enforce_detection, detector_backend, **kwargs):
        DummyDeepFace.seen_shapes.append(img.shape)
        return [
            {
                "region": {"x": 10, "y": 12, "w": 40, "h": 44, "left_eye": (20, 25), "right_eye": (40, 25)},
                "face_confidence": 0.93,
                "emotion": {"happy": 90.0, "neutral": 8.0, "sad": 2.0},
                "dominant_emotion": "happy",
            },
            {
                "region": {"x": 100, "y": 20, "w": 30, "h": 30, "left_eye": None, "right_eye": None},
                "face_confidence": 0.2,
                "emotion": {"angry": 60.0},
            },
        ]


@pytest.fixture(autouse=True)
def _fake_deepface(monkeypatch):
    DummyDeepFace.built.clear()
    DummyDeepFace.seen_shapes.clear()
    # ✅ Inject a fake 'deepface' module so `from deepface import DeepFace` works
    monkeypatch.setitem(sys.modules, "deepface", types.SimpleNamespace(DeepFace=DummyDeepFace))


def test_load_builds_emotion_model(monkeypatch):
    monkeypatch.setenv("DEEPFACE_HOME", "/tmp/deepface-default")
    eng = detection.DeepFaceEngine(Settings())
    asyncio.run(eng.load("/srv/models"))
    assert eng.loaded
    assert DummyDeepFace.built == [("Emotion", "facial_attribute")]
    import os
    assert os.environ["DEEPFACE_HOME"] == "/srv/models"


def test_load_failure_is_model_load_error(monkeypatch):
    class Broken(DummyDeepFace):
        @staticmethod
        def build_model(model_name, task=None):
            raise IOError("weights missing")
    monkeypatch.setitem(sys.modules, "deepface", types.SimpleNamespace(DeepFace=Broken))
    eng = detection.DeepFaceEngine(Settings())
    with pytest.raises(ModelLoadError):
        asyncio.run(eng.load())
    assert not eng.loaded


def test_detect_before_load():
    eng = detection.DeepFaceEngine(Settings())
    with pytest.raises(ModelLoadError):
        asyncio.run(eng.detect(np.zeros((10, 10, 3), dtype=np.uint8)))


def test_detect_works_at_model_resolution():
    eng = detection.DeepFaceEngine(Settings(DETECT_WIDTH=320))

    async def go():
        await eng.load()
        return await eng.detect(np.zeros((480, 640, 3), dtype=np.uint8))

    res = asyncio.run(go())
    assert DummyDeepFace.seen_shapes == [(240, 320, 3)]
    assert (res.width, res.height) == (320, 240)
    # the low-confidence face is dropped
    assert len(res.faces) == 1
    face = res.faces[0]
    assert (face.box.x, face.box.y, face.box.w, face.box.h) == (10, 12, 40, 44)
    assert len(face.landmarks) == 2
    assert face.expressions["happy"] == pytest.approx(0.9)
    assert all(0.0 <= v <= 1.0 for v in face.expressions.values())


def test_detect_failure_is_inference_failure(monkeypatch):
    class Flaky(DummyDeepFace):
        @staticmethod
        def analyze(*a, **k):
            raise ValueError("tensor shape")
    monkeypatch.setitem(sys.modules, "deepface", types.SimpleNamespace(DeepFace=Flaky))
    eng = detection.DeepFaceEngine(Settings())

    async def go():
        await eng.load()
        await eng.detect(np.zeros((100, 100, 3), dtype=np.uint8))

    with pytest.raises(InferenceFailure):
        asyncio.run(go())


def test_parse_analysis_drops_whole_frame_region():
    raw = {"region": {"x": 0, "y": 0, "w": 64, "h": 48}, "face_confidence": 0, "emotion": {"neutral": 99.0}}
    res = detection.parse_analysis(raw, 64, 48)
    assert res.empty


def test_resize_for_detect_keeps_small_frames():
    img = np.zeros((100, 200, 3), dtype=np.uint8)
    out, scale = detection.resize_for_detect(img, 416)
    assert out is img and scale == 1.0
