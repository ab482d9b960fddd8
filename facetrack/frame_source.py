"""
Live camera stream: owns the exclusive OpenCV capture handle and keeps the latest frame.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import cv2

from facetrack.config import Settings
from facetrack.errors import DeviceUnavailable, NotReady
from facetrack.models import Frame

logger = logging.getLogger(__name__)


class FrameSource:
    """Attach once per session, read ``current_frame()`` every tick, ``release()`` on teardown."""

    def __init__(self, settings: Settings, camera_index: Optional[int] = None):
        self.s = settings
        self.camera_index = settings.CAMERA_INDEX if camera_index is None else camera_index
        self._cap = None
        self._latest: Optional[Frame] = None
        self._pump: Optional[asyncio.Task] = None
        self._error: Optional[DeviceUnavailable] = None

    @property
    def attached(self) -> bool:
        return self._cap is not None

    @property
    def playing(self) -> bool:
        return self._pump is not None and not self._pump.done()

    async def attach(self):
        """Open the camera and start playback. No retries: failures surface immediately."""
        if self._cap is not None:
            return self._cap

        logger.debug(f"[camera] opening camera index {self.camera_index}")
        cap = await asyncio.to_thread(cv2.VideoCapture, self.camera_index)
        if not cap.isOpened():
            cap.release()
            raise DeviceUnavailable(f"Could not open camera index {self.camera_index}")

        # first read confirms we actually got frames (permission / busy device)
        ok, pixels = await asyncio.to_thread(cap.read)
        if not ok or pixels is None:
            cap.release()
            raise DeviceUnavailable(f"Camera index {self.camera_index} opened but delivered no frames")

        self._cap = cap
        self._error = None
        self._latest = Frame(pixels=pixels, ts=time.time())
        logger.debug(f"[camera] attached {self._latest.width}x{self._latest.height}")
        self.play()
        return cap

    def play(self) -> bool:
        """(Re)start the playback pump; returns True when it was not running."""
        if self._cap is None:
            raise NotReady("camera stream is not attached")
        if self.playing:
            return False
        self._pump = asyncio.create_task(self._pump_frames())
        return True

    def current_frame(self) -> Frame:
        if self._error is not None:
            raise self._error
        if self._cap is None or self._latest is None:
            raise NotReady("camera stream is not playing yet")
        return self._latest

    async def _pump_frames(self) -> None:
        cap = self._cap
        while cap is not None and cap is self._cap:
            ok, pixels = await asyncio.to_thread(cap.read)
            if not ok or pixels is None:
                logger.error(f"[camera] read failed on camera index {self.camera_index}; stream lost")
                self._error = DeviceUnavailable(f"Camera index {self.camera_index} stopped delivering frames")
                return
            self._latest = Frame(pixels=pixels, ts=time.time())
            await asyncio.sleep(self.s.FRAME_INTERVAL)

    async def release(self) -> None:
        pump, self._pump = self._pump, None
        if pump is not None and not pump.done():
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
        cap, self._cap = self._cap, None
        if cap is not None:
            cap.release()
            logger.debug(f"[camera] released camera index {self.camera_index}")
        self._latest = None
