"""
One operator session: camera -> detection -> overlay -> composite -> (optional) recording.

FaceTrackSession wires the components together, owns every periodic task
handle through them, and provides the single teardown routine.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import numpy as np

from facetrack.compositor import CompositeSink
from facetrack.config import Settings
from facetrack.countdown import CountdownTimer
from facetrack.detection import DeepFaceEngine, DetectionEngine
from facetrack.encoder import FfmpegEncoder
from facetrack.errors import CaptureUnsupported, EncoderUnavailable, FaceTrackError, NotReady
from facetrack.frame_source import FrameSource
from facetrack.models import (
    Artifact, DetectionResult, Frame, RecordingState, RecordingStatus, SessionStatus, format_elapsed,
)
from facetrack.overlay import OverlayRenderer
from facetrack.recorder import RecordingController
from facetrack.scheduler import DetectionScheduler

logger = logging.getLogger(__name__)


class FaceTrackSession:
    def __init__(self, settings: Settings,
                 engine: Optional[DetectionEngine] = None,
                 source: Optional[FrameSource] = None,
                 sink: Optional[CompositeSink] = None,
                 encoder_factory: Callable = FfmpegEncoder):
        self.s = settings
        self.engine = engine if engine is not None else DeepFaceEngine(settings)
        self.source = source if source is not None else FrameSource(settings)
        self.renderer = OverlayRenderer(min_expression_score=settings.MIN_EXPRESSION_SCORE)
        self.sink = sink if sink is not None else CompositeSink(stream_buffer=settings.STREAM_BUFFER)
        self.scheduler = DetectionScheduler(self.source, self.engine, settings,
                                            on_result=self._on_result, on_frame=self._on_frame)
        self.recorder = RecordingController(
            self.sink, settings,
            encoder_factory=encoder_factory,
            resume_playback=getattr(self.source, "play", None),
            on_error=self._recording_failed,
        )
        self.countdown = CountdownTimer(
            self._countdown_done,
            start_from=settings.COUNTDOWN_FROM,
            interval=settings.COUNTDOWN_INTERVAL,
        )
        self.started_at: Optional[float] = None
        self.recording_available = True
        self.recording_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self.started_at is not None

    # ---- lifecycle ----
    async def setup(self) -> None:
        """Load the model, attach the camera, start the detection loop. Fatal errors propagate."""
        if self.running:
            return
        try:
            await self.engine.load(self.s.MODEL_BASE or None)
            await self.source.attach()
        except FaceTrackError:
            logger.exception("[session] setup failed")
            await self.teardown()
            raise
        self.started_at = time.time()
        self.scheduler.start()
        if not self.recorder.can_capture():
            self._disable_recording("Recording is not supported: the composite surface cannot be captured")
        logger.debug("[session] live annotation running")

    async def teardown(self) -> None:
        """Cancel every timer, finalize an open recording, release the camera."""
        await self.scheduler.stop()
        self.countdown.cancel()
        await self.recorder.close()
        await self.source.release()
        self.started_at = None
        logger.debug("[session] torn down")

    # ---- pipeline ----
    def _on_result(self, frame: Frame, result: DetectionResult) -> None:
        surface = self.renderer.render(result)
        self.sink.compose(frame, surface)

    def _on_frame(self, frame: Frame) -> None:
        # no fresh result: keep the last annotation over the live frame
        surface = self.renderer.surface
        self.sink.compose(frame, surface if surface.size == frame.size else None)

    def preview(self) -> Optional[np.ndarray]:
        return self.sink.pixels

    # ---- recording ----
    def start_recording(self) -> bool:
        """Start the pre-recording countdown. False when one is running or recording is open."""
        if not self.running:
            raise NotReady("session is not running")
        if not self.recording_available or not self.recorder.can_capture():
            raise CaptureUnsupported(self.recording_error or "Recording is not supported on this platform")
        if self.recorder.state in (RecordingState.RECORDING, RecordingState.FINALIZING):
            return False
        self.recording_error = None
        return self.countdown.start()

    async def _countdown_done(self) -> None:
        try:
            await self.recorder.start()
        except (CaptureUnsupported, EncoderUnavailable) as e:
            logger.error(f"[session] recording unavailable: {e}")
            self._disable_recording(str(e))
        except FaceTrackError as e:
            logger.warning(f"[session] recording did not start: {e}")
            self.recording_error = str(e)

    def _recording_failed(self, error: Exception) -> None:
        # the feed keeps running; the operator may try again
        self.recording_error = str(error)

    def _disable_recording(self, reason: str) -> None:
        self.recording_available = False
        self.recording_error = reason

    def stop_recording(self) -> bool:
        return self.recorder.stop()

    def delete_artifact(self) -> None:
        self.recorder.delete_artifact()

    @property
    def artifact(self) -> Optional[Artifact]:
        return self.recorder.artifact

    async def wait_artifact(self, timeout: Optional[float] = None) -> Optional[Artifact]:
        return await self.recorder.wait_artifact(timeout)

    # ---- status ----
    def recording_status(self) -> RecordingStatus:
        state = self.recorder.state
        if self.countdown.active and state not in (RecordingState.RECORDING, RecordingState.FINALIZING):
            state = RecordingState.COUNTING_DOWN
        elapsed = self.recorder.elapsed_seconds
        return RecordingStatus(
            state=state,
            elapsed_seconds=elapsed,
            elapsed_display=format_elapsed(elapsed),
            countdown=self.countdown.value,
            artifact_size=self.artifact.size if self.artifact is not None else None,
            recording_available=self.recording_available,
            recording_error=self.recording_error,
        )

    def status(self) -> SessionStatus:
        latest = self.scheduler.latest
        return SessionStatus(
            running=self.running,
            started_at=self.started_at,
            frame_width=latest.width if latest is not None else None,
            frame_height=latest.height if latest is not None else None,
            faces=len(latest.faces) if latest is not None else 0,
            skipped_ticks=self.scheduler.skipped,
            error=str(self.scheduler.error) if self.scheduler.error is not None else None,
            recording=self.recording_status(),
        )
