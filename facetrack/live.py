# facetrack/live.py
"""
Live operator window.

Shows the composite (camera + annotations) in an OpenCV window and maps keys
to the recording controls:

- r: start the 3-2-1 countdown, or stop an open recording
- d: delete the finished clip
- s: save the finished clip to ARTIFACT_FILENAME
- p: play the finished clip inline in a second window (stepped by the
  display loop, so detection and the camera keep running)
- q: quit (tears the session down and releases the camera)

Countdown and REC status are drawn on the displayed copy only, never on the
recorded composite.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from typing import Optional

import cv2
import numpy as np

from facetrack.config import Settings
from facetrack.errors import FaceTrackError
from facetrack.models import Artifact, RecordingState
from facetrack.session import FaceTrackSession

logger = logging.getLogger(__name__)

WINDOW = "FaceTrack Live (q to quit)"
PLAYBACK_WINDOW = "FaceTrack Recording"


def draw_status(img: np.ndarray, session: FaceTrackSession) -> np.ndarray:
    out = img.copy()
    rs = session.recording_status()
    if rs.state == RecordingState.COUNTING_DOWN and rs.countdown is not None:
        h, w = out.shape[:2]
        cv2.putText(out, str(rs.countdown), (w // 2 - 20, h // 2 + 20),
                    cv2.FONT_HERSHEY_SIMPLEX, 2.0, (0, 215, 255), 4, cv2.LINE_AA)
    elif rs.state == RecordingState.RECORDING:
        cv2.circle(out, (18, 24), 7, (0, 0, 255), -1, cv2.LINE_AA)
        cv2.putText(out, f"REC {rs.elapsed_display}", (32, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 0, 255), 2, cv2.LINE_AA)
    elif rs.state == RecordingState.FINALIZING:
        cv2.putText(out, "saving...", (10, 30), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 215, 255), 2, cv2.LINE_AA)
    elif rs.state == RecordingState.READY:
        cv2.putText(out, f"clip ready ({rs.artifact_size} bytes)  p:play s:save d:delete", (10, 30),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 255, 0), 1, cv2.LINE_AA)
    if not rs.recording_available:
        cv2.putText(out, "recording unavailable", (10, out.shape[0] - 12),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 0, 255), 1, cv2.LINE_AA)
    return out


class ClipPlayer:
    """Inline playback stepped from the display loop, one frame per due slot."""

    def __init__(self):
        self._cap = None
        self._tmp: Optional[tempfile.TemporaryDirectory] = None
        self._delay = 0.1
        self._next_t = 0.0
        self._shown = False

    @property
    def active(self) -> bool:
        return self._cap is not None

    def open(self, artifact: Artifact, fps: int = 10) -> bool:
        self.close()
        suffix = os.path.splitext(artifact.filename)[1] or ".webm"
        self._tmp = tempfile.TemporaryDirectory()
        path = os.path.join(self._tmp.name, "playback" + suffix)
        with open(path, "wb") as f:
            f.write(artifact.data)
        cap = cv2.VideoCapture(path)
        if not cap.isOpened():
            logger.warning("[live] could not open recorded clip for playback")
            cap.release()
            self.close()
            return False
        self._cap = cap
        self._delay = 1.0 / max(1, fps)
        self._next_t = time.monotonic()
        return True

    def step(self, now: Optional[float] = None) -> bool:
        """Show the next frame when it is due; False once playback has ended."""
        if self._cap is None:
            return False
        now = time.monotonic() if now is None else now
        if now < self._next_t:
            return True
        ok, frame = self._cap.read()
        if not ok:
            self.close()
            return False
        cv2.imshow(PLAYBACK_WINDOW, frame)
        self._shown = True
        self._next_t = now + self._delay
        return True

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        if self._shown:
            cv2.destroyWindow(PLAYBACK_WINDOW)
            self._shown = False
        if self._tmp is not None:
            self._tmp.cleanup()
            self._tmp = None


def handle_key(key: int, session: FaceTrackSession, out_dir: str = ".",
               player: Optional[ClipPlayer] = None) -> bool:
    """Apply one key press; returns False when the window should close."""
    if key == ord("q"):
        return False
    try:
        if key == ord("r"):
            if session.recorder.state == RecordingState.RECORDING:
                session.stop_recording()
            else:
                session.start_recording()
        elif key == ord("d"):
            session.delete_artifact()
        elif key == ord("s") and session.artifact is not None:
            path = session.artifact.save(out_dir)
            logger.info(f"[live] clip saved to {path}")
        elif key == ord("p") and session.artifact is not None and player is not None:
            player.open(session.artifact, session.s.record_fps)
    except FaceTrackError as e:
        # recording problems never stop the live feed
        logger.warning(f"[live] {e}")
    return True


async def _run(session: FaceTrackSession, out_dir: str) -> None:
    player = ClipPlayer()
    await session.setup()
    try:
        while True:
            img = session.preview()
            if img is not None:
                cv2.imshow(WINDOW, draw_status(img, session))
            player.step()
            key = cv2.waitKey(1) & 0xFF
            if not handle_key(key, session, out_dir, player):
                break
            await asyncio.sleep(session.s.DETECT_INTERVAL / 2)
    finally:
        player.close()
        await session.teardown()
        cv2.destroyAllWindows()


def run_live_overlay(settings: Settings, camera_index: Optional[int] = None,
                     session: Optional[FaceTrackSession] = None, out_dir: str = ".") -> None:
    """
    Open the camera, run detection + overlay + compositing, and show the result.

    Fatal errors (no camera, model load failure) are raised to the caller.
    """
    if session is None:
        if camera_index is not None:
            settings = settings.model_copy(update={"CAMERA_INDEX": camera_index})
        session = FaceTrackSession(settings)
    asyncio.run(_run(session, out_dir))
