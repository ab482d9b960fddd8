"""
Data models for the live pipeline: detections, frames, artifacts and status snapshots.
"""
from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Point(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float


class Box(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float
    y: float
    w: float
    h: float


class FaceRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    box: Box
    landmarks: Tuple[Point, ...] = ()
    expressions: Dict[str, float] = Field(default_factory=dict)

    @field_validator("expressions")
    @classmethod
    def _scores_in_unit_range(cls, v: Dict[str, float]) -> Dict[str, float]:
        for label, score in v.items():
            if not 0.0 <= float(score) <= 1.0:
                raise ValueError(f"expression score for {label!r} outside [0, 1]: {score}")
        return v

    def top_expression(self) -> tuple[Optional[str], float]:
        if not self.expressions:
            return None, 0.0
        k = max(self.expressions, key=self.expressions.get)
        return k, float(self.expressions[k])


class DetectionResult(BaseModel):
    """Faces found in one inference call, in a ``width`` x ``height`` pixel space."""
    model_config = ConfigDict(frozen=True)

    faces: Tuple[FaceRecord, ...] = ()
    width: int
    height: int
    ts: float = Field(default_factory=time.time)

    @property
    def empty(self) -> bool:
        return len(self.faces) == 0

    def rescaled(self, width: int, height: int) -> "DetectionResult":
        """Map every box and landmark into a ``width`` x ``height`` pixel space.

        Pure linear transform: (x, y) -> (x * width / self.width, y * height / self.height).
        """
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"cannot rescale from empty source size {self.width}x{self.height}")
        if (width, height) == (self.width, self.height):
            return self
        sx = width / float(self.width)
        sy = height / float(self.height)
        faces = tuple(
            FaceRecord(
                box=Box(x=f.box.x * sx, y=f.box.y * sy, w=f.box.w * sx, h=f.box.h * sy),
                landmarks=tuple(Point(x=p.x * sx, y=p.y * sy) for p in f.landmarks),
                expressions=dict(f.expressions),
            )
            for f in self.faces
        )
        return DetectionResult(faces=faces, width=width, height=height, ts=self.ts)


@dataclass(frozen=True)
class Frame:
    """One BGR camera frame; referenced transiently, never owned by a consumer."""
    pixels: np.ndarray
    ts: float = field(default_factory=time.time)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height


@dataclass(frozen=True)
class Artifact:
    """Finalized clip assembled from a recording session's chunks."""
    data: bytes
    mime_type: str = "video/webm"
    filename: str = "recording.webm"
    created_at: float = field(default_factory=time.time)

    @property
    def size(self) -> int:
        return len(self.data)

    def save(self, directory: str = ".") -> str:
        os.makedirs(directory, exist_ok=True)
        path = os.path.join(directory, self.filename)
        with open(path, "wb") as f:
            f.write(self.data)
        return path


class RecordingState(str, Enum):
    IDLE = "idle"
    COUNTING_DOWN = "counting_down"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    READY = "ready"


def format_elapsed(seconds: int) -> str:
    return f"{int(seconds):02d}s"


# status snapshots


class RecordingStatus(BaseModel):
    state: RecordingState = RecordingState.IDLE
    elapsed_seconds: int = 0
    elapsed_display: str = "00s"
    countdown: Optional[int] = None
    artifact_size: Optional[int] = None
    recording_available: bool = True
    recording_error: Optional[str] = None


class SessionStatus(BaseModel):
    running: bool
    started_at: float | None = None
    frame_width: int | None = None
    frame_height: int | None = None
    faces: int = 0
    skipped_ticks: int = 0
    error: Optional[str] = None
    recording: RecordingStatus = Field(default_factory=RecordingStatus)
