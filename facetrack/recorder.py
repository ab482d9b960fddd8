"""
Recording state machine over the composite stream.

idle -> recording -> finalizing -> ready (idle with artifact)

The encoder pushes chunks through callbacks registered at start; they are
appended to the session's ordered chunk list and concatenated into the
Artifact only when the encoder reports it has stopped. An encoder that fails
(non-zero exit) discards the session instead; nothing partial is published.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from facetrack.config import Settings
from facetrack.encoder import FfmpegEncoder
from facetrack.errors import CaptureUnsupported, EncoderUnavailable
from facetrack.models import Artifact, RecordingState, format_elapsed

logger = logging.getLogger(__name__)


@dataclass
class RecordingSession:
    started_at: float = field(default_factory=time.time)
    elapsed_seconds: int = 0
    chunks: List[bytes] = field(default_factory=list)

    def append(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    @property
    def size(self) -> int:
        return sum(len(c) for c in self.chunks)

    def assemble(self, mime_type: str, filename: str) -> Artifact:
        return Artifact(data=b"".join(self.chunks), mime_type=mime_type, filename=filename)


class RecordingController:
    """Owns the encoder session; at most one RecordingSession is open at a time."""

    def __init__(self, sink, settings: Settings,
                 encoder_factory: Callable = FfmpegEncoder,
                 resume_playback: Optional[Callable] = None,
                 on_error: Optional[Callable[[Exception], None]] = None):
        self.sink = sink
        self.s = settings
        self.encoder_factory = encoder_factory
        self.resume_playback = resume_playback
        self.on_error = on_error
        self.state = RecordingState.IDLE
        self.session: Optional[RecordingSession] = None
        self.artifact: Optional[Artifact] = None
        self._encoder = None
        self._stream = None
        self._starting = False
        self._ticker: Optional[asyncio.Task] = None
        self._finalizer: Optional[asyncio.Task] = None
        self._done: Optional[asyncio.Future] = None

    # ---- queries ----
    @property
    def recording(self) -> bool:
        return self.state == RecordingState.RECORDING

    @property
    def elapsed_seconds(self) -> int:
        return self.session.elapsed_seconds if self.session is not None else 0

    @property
    def elapsed_display(self) -> str:
        return format_elapsed(self.elapsed_seconds)

    def can_capture(self) -> bool:
        return callable(getattr(self.sink, "capture_stream", None))

    # ---- transitions ----
    async def start(self) -> bool:
        if self._starting or self.state in (RecordingState.RECORDING, RecordingState.FINALIZING):
            logger.info(f"[recorder] start ignored; state={self.state.value}")
            return False
        if not self.can_capture():
            raise CaptureUnsupported("Recording is not supported: the composite surface cannot be captured")

        self._starting = True
        try:
            await self._resume()
            stream = self.sink.capture_stream(self.s.record_fps)
            session = RecordingSession()
            try:
                encoder = self.encoder_factory(stream, self.s)
                encoder.on_data = lambda chunk: self._on_data(session, chunk)
                encoder.on_stop = lambda: self._on_stop(session)
                encoder.on_error = lambda err: self._on_error(session, err)
                await encoder.start()
            except Exception as e:
                self._release_stream(stream)
                if isinstance(e, EncoderUnavailable):
                    raise
                raise EncoderUnavailable(f"could not start encoder: {e}") from e
        finally:
            self._starting = False

        # a new session replaces the previous artifact and its chunks
        self.artifact = None
        self.session = session
        self._stream = stream
        self._encoder = encoder
        self._done = asyncio.get_running_loop().create_future()
        self.state = RecordingState.RECORDING
        self._ticker = asyncio.create_task(self._tick_elapsed(session))
        logger.debug(f"[recorder] recording started {stream.width}x{stream.height}@{stream.fps}")
        return True

    def stop(self) -> bool:
        """Signal the encoder to finalize. The artifact arrives later (see wait_artifact)."""
        if self.state != RecordingState.RECORDING:
            logger.debug(f"[recorder] stop ignored; state={self.state.value}")
            return False
        self._cancel_ticker()
        self.state = RecordingState.FINALIZING
        self._finalizer = asyncio.create_task(self._finalize(self._encoder, self._stream))
        logger.debug(f"[recorder] stopping at {self.elapsed_display}")
        return True

    async def wait_artifact(self, timeout: Optional[float] = None) -> Optional[Artifact]:
        if self.state == RecordingState.READY:
            return self.artifact
        if self._done is None:
            return None
        return await asyncio.wait_for(asyncio.shield(self._done), timeout)

    def delete_artifact(self) -> None:
        if self.state in (RecordingState.RECORDING, RecordingState.FINALIZING):
            logger.debug("[recorder] delete ignored while a recording is open")
            return
        self.artifact = None
        self.session = None
        self.state = RecordingState.IDLE

    async def close(self) -> None:
        """Teardown: cancel the tick and finalize an open encoder."""
        self._cancel_ticker()
        if self.state == RecordingState.RECORDING:
            self.stop()
        if self._finalizer is not None:
            await self._finalizer

    # ---- callbacks ----
    def _on_data(self, session: RecordingSession, chunk: bytes) -> None:
        if chunk:
            session.append(chunk)

    def _on_stop(self, session: RecordingSession) -> None:
        if session is not self.session:
            logger.warning("[recorder] stop callback from a stale session ignored")
            return
        if self.state == RecordingState.RECORDING:
            # encoder ended on its own; nothing will call stop()
            logger.warning(f"[recorder] encoder stopped unprompted at {self.elapsed_display}")
            self._close_encoder()
        self.artifact = session.assemble(self.s.RECORD_MIME, self.s.ARTIFACT_FILENAME)
        self.state = RecordingState.READY
        logger.debug(f"[recorder] artifact ready size={self.artifact.size} chunks={len(session.chunks)}")
        if self._done is not None and not self._done.done():
            self._done.set_result(self.artifact)

    def _on_error(self, session: RecordingSession, error: Exception) -> None:
        if session is not self.session:
            logger.warning("[recorder] error callback from a stale session ignored")
            return
        logger.error(f"[recorder] encoder failed; recording discarded: {error}")
        if self.state == RecordingState.RECORDING:
            self._close_encoder()
        if not isinstance(error, EncoderUnavailable):
            error = EncoderUnavailable(str(error))
        self._fail(error)

    # ---- internals ----
    async def _resume(self) -> None:
        # some capture stacks pause playback once the stream is reused
        if self.resume_playback is None:
            return
        try:
            res = self.resume_playback()
            if inspect.isawaitable(res):
                await res
        except Exception as e:
            logger.warning(f"[recorder] playback resume failed (continuing): {e}")

    async def _tick_elapsed(self, session: RecordingSession) -> None:
        while True:
            await asyncio.sleep(self.s.RECORD_TICK_INTERVAL)
            session.elapsed_seconds += 1

    def _cancel_ticker(self) -> None:
        if self._ticker is not None and not self._ticker.done():
            self._ticker.cancel()
        self._ticker = None

    def _close_encoder(self) -> None:
        self._cancel_ticker()
        if self._stream is not None:
            self._release_stream(self._stream)
        self._encoder = None
        self._stream = None

    def _release_stream(self, stream) -> None:
        release = getattr(self.sink, "release_stream", None)
        if callable(release):
            release(stream)
        else:
            stream.close()

    async def _finalize(self, encoder, stream) -> None:
        try:
            await encoder.stop()
        except Exception as e:
            logger.exception("[recorder] encoder finalize failed; recording discarded")
            self._fail(EncoderUnavailable(f"encoder finalize failed: {e}"))
        finally:
            self._release_stream(stream)
            self._encoder = None
            self._stream = None
        if self.state == RecordingState.FINALIZING:
            # encoder exited without reporting a stop
            logger.error("[recorder] encoder stopped without producing an artifact")
            self._fail(EncoderUnavailable("encoder produced no artifact"))

    def _fail(self, error: EncoderUnavailable) -> None:
        # the partial output is never published as an artifact
        self.artifact = None
        self.session = None
        self.state = RecordingState.IDLE
        if self._done is not None and not self._done.done():
            self._done.set_exception(error)
            # reported through on_error as well; not an unretrieved failure
            self._done.exception()
        if self.on_error is not None:
            self.on_error(error)
