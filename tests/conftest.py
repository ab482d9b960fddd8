import asyncio
import pytest
import numpy as np

from facetrack.config import Settings
from facetrack.errors import NotReady
from facetrack.models import Box, DetectionResult, FaceRecord, Frame, Point


def make_face(x, y, w, h, expressions=None):
    return FaceRecord(
        box=Box(x=x, y=y, w=w, h=h),
        landmarks=(Point(x=x + w * 0.3, y=y + h * 0.4), Point(x=x + w * 0.7, y=y + h * 0.4)),
        expressions=expressions if expressions is not None else {"happy": 0.9, "neutral": 0.1},
    )


class StubSource:
    """FrameSource stand-in with a fixed frame."""
    def __init__(self, frame=None):
        self.frame = frame
        self.play_calls = 0
        self.released = False

    async def attach(self):
        if self.frame is None:
            self.frame = Frame(pixels=np.full((120, 160, 3), 50, dtype=np.uint8))
        return self

    def play(self):
        self.play_calls += 1
        return True

    def current_frame(self):
        if self.frame is None:
            raise NotReady("no frame")
        return self.frame

    async def release(self):
        self.released = True


class StubEngine:
    """DetectionEngine with fixed faces in a model-space resolution and optional delay."""
    def __init__(self, faces=(), width=80, height=60, delay=0.0, fail=False):
        self.faces = tuple(faces)
        self.width = width
        self.height = height
        self.delay = delay
        self.fail = fail
        self.loaded_from = None
        self.calls = 0
        self.active = 0
        self.max_active = 0

    async def load(self, model_base=None):
        self.loaded_from = model_base

    async def detect(self, pixels):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.fail:
                raise RuntimeError("boom")
            return DetectionResult(faces=self.faces, width=self.width, height=self.height)
        finally:
            self.active -= 1


class FakeEncoder:
    """Encoder stand-in: chunks are pushed by the test through emit()."""
    instances = []

    def __init__(self, stream, settings):
        self.stream = stream
        self.on_data = None
        self.on_stop = None
        self.on_error = None
        self.started = False
        self.stopped = False
        FakeEncoder.instances.append(self)

    async def start(self):
        self.started = True

    def emit(self, chunk):
        self.on_data(chunk)

    def exit(self, error=None):
        """Encoder ends by itself: cleanly, or with a failure."""
        if error is None:
            self.on_stop()
        else:
            self.on_error(error)

    async def stop(self):
        self.stopped = True
        self.stream.close()
        await asyncio.sleep(0)
        self.on_stop()


@pytest.fixture
def settings():
    return Settings(
        DETECT_INTERVAL=0.01,
        FRAME_INTERVAL=0.0,
        COUNTDOWN_INTERVAL=0.01,
        RECORD_TICK_INTERVAL=0.01,
    )


@pytest.fixture
def frame():
    return Frame(pixels=np.full((120, 160, 3), 50, dtype=np.uint8))


@pytest.fixture(autouse=True)
def _reset_fake_encoder():
    FakeEncoder.instances.clear()
    yield
