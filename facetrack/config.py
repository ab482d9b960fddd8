"""
Configuration for the live annotation pipeline.
"""
from pydantic import BaseModel
import os


def _env_flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    FRAME_INTERVAL: float = float(os.getenv("FRAME_INTERVAL", "0.01"))

    DETECT_INTERVAL: float = float(os.getenv("DETECT_INTERVAL", "0.1"))
    DETECT_WIDTH: int = int(os.getenv("DETECT_WIDTH", "416"))
    DETECTOR_BACKEND: str = (os.getenv("DETECTOR_BACKEND", "opencv") or "opencv")
    MODEL_BASE: str = os.getenv("MODEL_BASE", "")
    MIN_FACE_CONFIDENCE: float = float(os.getenv("MIN_FACE_CONFIDENCE", "0.5"))
    MIN_EXPRESSION_SCORE: float = float(os.getenv("MIN_EXPRESSION_SCORE", "0.1"))

    COUNTDOWN_FROM: int = int(os.getenv("COUNTDOWN_FROM", "3"))
    COUNTDOWN_INTERVAL: float = float(os.getenv("COUNTDOWN_INTERVAL", "1.0"))
    RECORD_TICK_INTERVAL: float = float(os.getenv("RECORD_TICK_INTERVAL", "1.0"))

    RECORD_FORMAT: str = os.getenv("RECORD_FORMAT", "webm")
    RECORD_CODEC: str = os.getenv("RECORD_CODEC", "libvpx")
    RECORD_CODEC_FALLBACK: bool = _env_flag("RECORD_CODEC_FALLBACK", "true")
    RECORD_MIME: str = os.getenv("RECORD_MIME", "video/webm")
    ARTIFACT_FILENAME: str = os.getenv("ARTIFACT_FILENAME", "recording.webm")
    FFMPEG_BIN: str = os.getenv("FFMPEG_BIN", "ffmpeg")
    ENCODER_CHUNK_SIZE: int = int(os.getenv("ENCODER_CHUNK_SIZE", "4096"))
    STREAM_BUFFER: int = int(os.getenv("STREAM_BUFFER", "30"))

    def __init__(self, **data):
        super().__init__(**data)
        # Normalize backend name: strip comments/extra words, lower-case
        backend = (self.DETECTOR_BACKEND or "opencv").strip().split()[0].lower()
        object.__setattr__(self, "DETECTOR_BACKEND", backend)
        object.__setattr__(self, "DETECT_WIDTH", max(32, int(self.DETECT_WIDTH)))

    @property
    def record_fps(self) -> int:
        """Frame rate of the capturable composite stream (follows the detection tick)."""
        return max(1, int(round(1.0 / max(self.DETECT_INTERVAL, 1e-3))))
