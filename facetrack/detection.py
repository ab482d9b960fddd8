"""
Face detection engine backed by DeepFace.

The engine works at its own resolution (frames are downscaled to DETECT_WIDTH)
and returns results in that pixel space; the scheduler maps them back to frame
coordinates. DeepFace is imported lazily so tests can inject a fake module.
"""
from __future__ import annotations

import asyncio
import logging
import os
from typing import Dict, List, Optional, Protocol

import cv2
import numpy as np

from facetrack.config import Settings
from facetrack.errors import InferenceFailure, ModelLoadError
from facetrack.models import Box, DetectionResult, FaceRecord, Point

logger = logging.getLogger(__name__)

# Points DeepFace may attach to a region, depending on the detector backend
LANDMARK_KEYS = ("left_eye", "right_eye", "nose", "mouth_left", "mouth_right")


class DetectionEngine(Protocol):
    async def load(self, model_base: Optional[str] = None) -> None: ...

    async def detect(self, pixels: np.ndarray) -> DetectionResult: ...


def resize_for_detect(img: np.ndarray, target_w: int) -> tuple[np.ndarray, float]:
    H, W = img.shape[:2]
    if W <= target_w:
        return img, 1.0
    scale = target_w / float(W)
    small = cv2.resize(img, (target_w, max(1, int(round(H * scale)))), interpolation=cv2.INTER_AREA)
    return small, scale


def _landmarks(region: Dict) -> tuple[Point, ...]:
    pts: List[Point] = []
    for key in LANDMARK_KEYS:
        p = region.get(key)
        if isinstance(p, (list, tuple)) and len(p) >= 2 and p[0] is not None and p[1] is not None:
            pts.append(Point(x=float(p[0]), y=float(p[1])))
    return tuple(pts)


def _expressions(blob: Dict) -> Dict[str, float]:
    # DeepFace reports emotion probabilities as percentages
    em = blob.get("emotion")
    if not isinstance(em, dict):
        return {}
    out: Dict[str, float] = {}
    for label, v in em.items():
        try:
            score = float(v) / 100.0
        except (TypeError, ValueError):
            continue
        out[str(label)] = min(1.0, max(0.0, score))
    return out


def parse_analysis(raw, width: int, height: int, min_confidence: float = 0.5) -> DetectionResult:
    """Turn a ``DeepFace.analyze`` payload into a DetectionResult in ``width`` x ``height`` space."""
    items = raw if isinstance(raw, list) else ([raw] if isinstance(raw, dict) else [])
    faces: List[FaceRecord] = []
    for r in items:
        reg = (r or {}).get("region") or {}
        x, y = float(reg.get("x", 0)), float(reg.get("y", 0))
        w, h = float(reg.get("w", 0)), float(reg.get("h", 0))
        if w <= 0 or h <= 0:
            continue
        # enforce_detection=False yields the whole image when nothing was found
        if x <= 0 and y <= 0 and w >= width and h >= height:
            continue
        conf = r.get("face_confidence")
        try:
            conf = 1.0 if conf is None else float(conf)
        except (TypeError, ValueError):
            conf = 1.0
        if conf < min_confidence:
            continue
        faces.append(FaceRecord(
            box=Box(x=x, y=y, w=w, h=h),
            landmarks=_landmarks(reg),
            expressions=_expressions(r),
        ))
    return DetectionResult(faces=tuple(faces), width=width, height=height)


class DeepFaceEngine:
    """DetectionEngine over ``DeepFace.analyze(actions=["emotion"])``."""

    def __init__(self, settings: Settings):
        self.s = settings
        self._df = None

    @property
    def loaded(self) -> bool:
        return self._df is not None

    async def load(self, model_base: Optional[str] = None) -> None:
        if self._df is not None:
            return
        if model_base:
            os.environ["DEEPFACE_HOME"] = model_base
        try:
            from deepface import DeepFace
        except Exception as e:
            raise ModelLoadError("DeepFace import failed. Install/align deepface/tensorflow.") from e

        logger.debug(f"[detect] building emotion model (backend={self.s.DETECTOR_BACKEND}, home={model_base or 'default'})")
        try:
            await asyncio.to_thread(DeepFace.build_model, model_name="Emotion", task="facial_attribute")
        except Exception as e:
            raise ModelLoadError(f"Could not load emotion model: {e}") from e
        self._df = DeepFace

    async def detect(self, pixels: np.ndarray) -> DetectionResult:
        if self._df is None:
            raise ModelLoadError("detection engine used before load()")
        small, _scale = resize_for_detect(pixels, self.s.DETECT_WIDTH)
        h, w = small.shape[:2]
        try:
            raw = await asyncio.to_thread(
                self._df.analyze,
                small,
                actions=["emotion"],
                enforce_detection=False,
                detector_backend=self.s.DETECTOR_BACKEND,
                silent=True,
            )
        except Exception as e:
            raise InferenceFailure(f"DeepFace.analyze failed: {e}") from e
        return parse_analysis(raw, w, h, min_confidence=self.s.MIN_FACE_CONFIDENCE)
