"""
Fixed-cadence detection loop with a single in-flight slot.

Every DETECT_INTERVAL a tick fires against the latest camera frame. If the
previous tick's inference has not resolved yet the new tick is dropped
(no queueing), so slow inference never builds a backlog. Dropped and failed
ticks still hand the current frame to on_frame so the composite keeps moving.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from facetrack.config import Settings
from facetrack.detection import DetectionEngine
from facetrack.errors import DeviceUnavailable, NotReady
from facetrack.models import DetectionResult, Frame

logger = logging.getLogger(__name__)

ResultHandler = Callable[[Frame, DetectionResult], None]
FrameHandler = Callable[[Frame], None]


class DetectionScheduler:
    def __init__(self, source, engine: DetectionEngine, settings: Settings,
                 on_result: Optional[ResultHandler] = None,
                 on_frame: Optional[FrameHandler] = None):
        self.source = source
        self.engine = engine
        self.s = settings
        self.on_result = on_result
        # ticks that have a frame but no fresh result (busy or failed) still reach on_frame
        self.on_frame = on_frame
        self.latest: Optional[DetectionResult] = None
        self.error: Optional[Exception] = None
        self.ticks = 0
        self.skipped = 0
        self._in_flight: Optional[asyncio.Task] = None
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def busy(self) -> bool:
        return self._in_flight is not None and not self._in_flight.done()

    # ---- lifecycle ----
    def start(self) -> None:
        if self.running:
            return
        self.error = None
        self._loop_task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        for task in (self._loop_task, self._in_flight):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._in_flight = None

    # ---- ticks ----
    def fire(self) -> bool:
        """Launch one tick unless the previous one is still in flight."""
        if self.busy:
            self.skipped += 1
            logger.debug(f"[scheduler] tick skipped; inference still in flight (skipped={self.skipped})")
            self._publish_frame()
            return False
        self.ticks += 1
        self._in_flight = asyncio.ensure_future(self._tick())
        return True

    async def tick(self) -> Optional[DetectionResult]:
        if not self.fire():
            return None
        return await self._in_flight

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_t = loop.time()
        while self.error is None:
            self.fire()
            next_t += self.s.DETECT_INTERVAL
            await asyncio.sleep(max(0.0, next_t - loop.time()))

    async def _tick(self) -> Optional[DetectionResult]:
        try:
            frame = self.source.current_frame()
        except NotReady:
            logger.debug("[scheduler] no frame yet; tick skipped")
            return None
        except DeviceUnavailable as e:
            logger.error(f"[scheduler] camera lost, stopping detection: {e}")
            self.error = e
            return None

        try:
            raw = await self.engine.detect(frame.pixels)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # transient: drop this tick, the next one starts fresh
            logger.warning(f"[scheduler] inference failed; tick discarded: {e}")
            self._publish_frame()
            return None

        result = raw.rescaled(frame.width, frame.height)
        self.latest = result
        if self.on_result is not None:
            try:
                self.on_result(frame, result)
            except Exception:
                logger.exception("[scheduler] render/composite failed for this tick")
        return result

    def _publish_frame(self) -> None:
        if self.on_frame is None:
            return
        try:
            frame = self.source.current_frame()
        except (NotReady, DeviceUnavailable):
            return
        try:
            self.on_frame(frame)
        except Exception:
            logger.exception("[scheduler] composite failed for this tick")
