"""
Clip encoder: composite frames -> ffmpeg (rawvideo on stdin) -> webm chunks on stdout.

Chunks are handed to ``on_data`` in the order ffmpeg emits them; ``on_stop``
fires once after ffmpeg exits cleanly and every chunk has been delivered. A
non-zero exit reports ``on_error`` instead.

ffmpeg reads constant-rate rawvideo, so the feeder maps composite timestamps
onto that timeline: gaps repeat the previous frame, bursts drop frames.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import subprocess
from typing import Callable, FrozenSet, Optional

import cv2

from facetrack.compositor import CompositeStream
from facetrack.config import Settings
from facetrack.errors import EncoderUnavailable

logger = logging.getLogger(__name__)


@functools.lru_cache(maxsize=8)
def probe_encoders(ffmpeg_bin: str = "ffmpeg") -> FrozenSet[str]:
    """Names of the video encoders the local ffmpeg build offers."""
    cmd = [ffmpeg_bin, "-hide_banner", "-encoders"]
    logger.debug(f"[encoder] probe cmd={' '.join(cmd)}")
    try:
        proc = subprocess.run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=15)
    except (OSError, subprocess.SubprocessError) as e:
        raise EncoderUnavailable(f"ffmpeg not available ({ffmpeg_bin}): {e}") from e
    if proc.returncode != 0:
        err = proc.stderr.decode("utf-8", errors="ignore")
        raise EncoderUnavailable(f"ffmpeg encoder probe failed: {err[:400]}")
    return parse_encoders(proc.stdout.decode("utf-8", errors="ignore"))


def parse_encoders(text: str) -> FrozenSet[str]:
    names = set()
    for line in text.splitlines():
        parts = line.split()
        # " V....D libvpx   libvpx VP8 (codec vp8)"
        if len(parts) >= 2 and len(parts[0]) == 6 and parts[0][0] == "V" and parts[1] != "=":
            names.add(parts[1])
    return frozenset(names)


def resolve_codec(settings: Settings, available: FrozenSet[str]) -> Optional[str]:
    """Preferred codec if offered; otherwise the container default (None) or EncoderUnavailable."""
    codec = settings.RECORD_CODEC
    if not codec or codec in available:
        return codec or None
    if settings.RECORD_CODEC_FALLBACK:
        logger.warning(f"[encoder] codec {codec} rejected by ffmpeg; using {settings.RECORD_FORMAT} default")
        return None
    raise EncoderUnavailable(f"ffmpeg has no {codec} encoder and fallback is disabled")


def build_ffmpeg_cmd(settings: Settings, width: int, height: int, fps: int,
                     codec: Optional[str]) -> list[str]:
    cmd = [
        settings.FFMPEG_BIN,
        "-hide_banner",
        "-loglevel", "warning",
        "-f", "rawvideo",
        "-pixel_format", "bgr24",
        "-s", f"{width}x{height}",
        "-r", str(fps),
        "-i", "pipe:0",
        "-an",
    ]
    if codec:
        cmd += ["-c:v", codec]
    cmd += ["-pix_fmt", "yuv420p", "-f", settings.RECORD_FORMAT, "pipe:1"]
    return cmd


class FramePacer:
    """Wall-clock arrivals -> how many copies of each frame a fixed-fps clip needs."""

    def __init__(self, fps: int):
        self.fps = max(1, int(fps))
        self.start: Optional[float] = None
        self.emitted = 0

    def take(self, ts: float) -> int:
        """Frames due up to and including ts that have not been written yet."""
        if self.start is None:
            self.start = ts
        due = int((ts - self.start) * self.fps) + 1
        n = max(0, due - self.emitted)
        self.emitted += n
        return n

    def pad(self, end: float) -> int:
        """Copies of the last frame needed to fill the clip up to end."""
        if self.start is None:
            return 0
        n = max(0, int((end - self.start) * self.fps) - self.emitted)
        self.emitted += n
        return n


class FfmpegEncoder:
    """One encoder session bound to one composite stream."""

    def __init__(self, stream: CompositeStream, settings: Settings,
                 on_data: Optional[Callable[[bytes], None]] = None,
                 on_stop: Optional[Callable[[], None]] = None,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.stream = stream
        self.s = settings
        self.on_data = on_data
        self.on_stop = on_stop
        self.on_error = on_error
        self.pacer = FramePacer(stream.fps)
        self.codec: Optional[str] = None
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._feeder: Optional[asyncio.Task] = None
        self._reader: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        available = await asyncio.to_thread(probe_encoders, self.s.FFMPEG_BIN)
        self.codec = resolve_codec(self.s, available)
        w, h = self.stream.size
        cmd = build_ffmpeg_cmd(self.s, w, h, self.stream.fps, self.codec)
        logger.debug(f"[encoder] start cmd={' '.join(cmd)}")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncoderUnavailable(f"could not start ffmpeg: {e}") from e
        self._reader = asyncio.create_task(self._read_loop())
        self._feeder = asyncio.create_task(self._feed_loop())

    async def _feed_loop(self) -> None:
        proc = self._proc
        size = self.stream.size
        last: Optional[bytes] = None
        try:
            async for ts, pixels in self.stream.timed_frames():
                if (pixels.shape[1], pixels.shape[0]) != size:
                    pixels = cv2.resize(pixels, size, interpolation=cv2.INTER_AREA)
                n = self.pacer.take(ts)
                if n == 0:
                    last = pixels.tobytes()
                    continue
                # slots between the previous frame and this one hold the previous frame
                for _ in range(n - 1):
                    proc.stdin.write(last)
                last = pixels.tobytes()
                proc.stdin.write(last)
                await proc.stdin.drain()
            if last is not None and self.stream.closed_at is not None:
                for _ in range(self.pacer.pad(self.stream.closed_at)):
                    proc.stdin.write(last)
                await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"[encoder] ffmpeg closed its input early: {e}")
        finally:
            if not proc.stdin.is_closing():
                proc.stdin.close()

    async def _read_loop(self) -> None:
        proc = self._proc
        while True:
            chunk = await proc.stdout.read(self.s.ENCODER_CHUNK_SIZE)
            if not chunk:
                break
            if self.on_data is not None:
                self.on_data(chunk)
        code = await proc.wait()
        if code != 0:
            err = (await proc.stderr.read()).decode("utf-8", errors="ignore")
            logger.error(f"[encoder] ffmpeg failed code={code} err={err[-400:]}")
            if self.on_error is not None:
                self.on_error(EncoderUnavailable(f"ffmpeg exited with code {code}"))
            return
        if self.on_stop is not None:
            self.on_stop()

    async def stop(self) -> None:
        """Finalize: end the input stream, wait for every chunk and the stop callback."""
        self.stream.close()
        for task in (self._feeder, self._reader):
            if task is not None:
                await task
