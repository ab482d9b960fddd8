"""
Composite surface: raw frame first, annotation layer on top.

The composite is the only surface ever recorded. It exposes the
capturable-stream contract: each compose pushes a copy of the result
into every open CompositeStream.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, List, Optional, Tuple

import numpy as np

from facetrack.errors import NotReady
from facetrack.models import Frame
from facetrack.overlay import AnnotationSurface

logger = logging.getLogger(__name__)


class CompositeStream:
    """Bounded queue of composite frames between the sink and one consumer.

    Each frame carries the monotonic time it was composed so the consumer can
    place it on a wall-clock timeline.
    """

    def __init__(self, width: int, height: int, fps: int, maxsize: int = 30):
        self.width = width
        self.height = height
        self.fps = fps
        self.closed = False
        self.closed_at: Optional[float] = None
        self.dropped = 0
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, maxsize) + 1)
        self._maxsize = max(1, maxsize)

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def push(self, pixels: np.ndarray, ts: Optional[float] = None) -> bool:
        if self.closed:
            return False
        # the extra slot is reserved for the end-of-stream marker
        if self._queue.qsize() >= self._maxsize:
            self.dropped += 1
            return False
        self._queue.put_nowait((time.monotonic() if ts is None else ts, pixels.copy()))
        return True

    def close(self, ts: Optional[float] = None) -> None:
        if self.closed:
            return
        self.closed = True
        self.closed_at = time.monotonic() if ts is None else ts
        self._queue.put_nowait(None)

    async def timed_frames(self) -> AsyncIterator[Tuple[float, np.ndarray]]:
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item

    async def frames(self) -> AsyncIterator[np.ndarray]:
        async for _, pixels in self.timed_frames():
            yield pixels


class CompositeSink:
    def __init__(self, stream_buffer: int = 30):
        self.pixels: Optional[np.ndarray] = None
        self.stream_buffer = stream_buffer
        self._streams: List[CompositeStream] = []

    @property
    def size(self) -> tuple[int, int]:
        if self.pixels is None:
            return 0, 0
        return int(self.pixels.shape[1]), int(self.pixels.shape[0])

    def compose(self, frame: Frame, annotation: Optional[AnnotationSurface]) -> np.ndarray:
        w, h = frame.size
        if self.size != (w, h):
            logger.debug(f"[composite] resize {self.size[0]}x{self.size[1]} -> {w}x{h}")
            self.pixels = np.zeros((h, w, 3), dtype=np.uint8)

        # frame first, annotation on top
        np.copyto(self.pixels, frame.pixels[..., :3])
        if annotation is not None:
            if annotation.size != (w, h):
                logger.warning(
                    f"[composite] annotation {annotation.width}x{annotation.height} does not match "
                    f"frame {w}x{h}; overlay skipped for this tick"
                )
            else:
                self._blend(annotation.pixels)

        for stream in list(self._streams):
            stream.push(self.pixels)
        return self.pixels

    def _blend(self, overlay: np.ndarray) -> None:
        alpha = overlay[..., 3]
        mask = alpha > 0
        if not mask.any():
            return
        a = (alpha[mask].astype(np.float32) / 255.0)[:, None]
        base = self.pixels[mask].astype(np.float32)
        top = overlay[..., :3][mask].astype(np.float32)
        self.pixels[mask] = (top * a + base * (1.0 - a)).round().astype(np.uint8)

    # ---- capturable-stream contract ----
    def capture_stream(self, fps: int) -> CompositeStream:
        if self.pixels is None:
            raise NotReady("composite surface has no frame yet")
        w, h = self.size
        stream = CompositeStream(w, h, fps, maxsize=self.stream_buffer)
        self._streams.append(stream)
        logger.debug(f"[composite] capture stream opened {w}x{h}@{fps}")
        return stream

    def release_stream(self, stream: CompositeStream) -> None:
        stream.close()
        if stream in self._streams:
            self._streams.remove(stream)
