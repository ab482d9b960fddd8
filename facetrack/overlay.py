"""Annotation layer drawing.

- AnnotationSurface: transparent BGRA surface sized to the current frame
- OverlayRenderer.render: clear, then draw box + landmarks + expression label per face
"""
from __future__ import annotations
import cv2
import numpy as np
from typing import Optional, Tuple

from facetrack.models import DetectionResult, FaceRecord

BOX_COLOR: Tuple[int, int, int, int] = (255, 144, 30, 255)      # BGRA
LANDMARK_COLOR: Tuple[int, int, int, int] = (0, 255, 0, 255)
LABEL_COLOR: Tuple[int, int, int, int] = (255, 255, 255, 255)


class AnnotationSurface:
    """BGRA pixel surface; alpha 0 everywhere when cleared."""

    def __init__(self, width: int = 0, height: int = 0):
        self.pixels = np.zeros((height, width, 4), dtype=np.uint8)

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return self.width, self.height

    def resize(self, width: int, height: int) -> bool:
        """Reallocate (cleared) when dimensions change. Never stretches old content."""
        if (width, height) == self.size:
            return False
        self.pixels = np.zeros((height, width, 4), dtype=np.uint8)
        return True

    def clear(self) -> None:
        self.pixels[...] = 0

    def is_blank(self) -> bool:
        return not self.pixels.any()


def _clamp_box(face: FaceRecord, w: int, h: int) -> tuple[int, int, int, int]:
    x, y = int(round(face.box.x)), int(round(face.box.y))
    fw, fh = int(round(face.box.w)), int(round(face.box.h))
    x = max(0, min(x, w - 1)); y = max(0, min(y, h - 1))
    fw = max(0, min(fw, w - x)); fh = max(0, min(fh, h - y))
    return x, y, fw, fh


def draw_box(img: np.ndarray, face: FaceRecord) -> None:
    h, w = img.shape[:2]
    x, y, fw, fh = _clamp_box(face, w, h)
    cv2.rectangle(img, (x, y), (x + fw, y + fh), BOX_COLOR, 2)


def draw_landmarks(img: np.ndarray, face: FaceRecord) -> None:
    h, w = img.shape[:2]
    for p in face.landmarks:
        px = max(0, min(int(round(p.x)), w - 1))
        py = max(0, min(int(round(p.y)), h - 1))
        cv2.circle(img, (px, py), 2, LANDMARK_COLOR, -1, cv2.LINE_AA)


def draw_expressions(img: np.ndarray, face: FaceRecord, min_score: float = 0.1) -> None:
    """One label block per face: expressions above ``min_score``, strongest first."""
    h, w = img.shape[:2]
    x, y, _fw, fh = _clamp_box(face, w, h)
    ranked = sorted(face.expressions.items(), key=lambda kv: kv[1], reverse=True)
    lines = [f"{label} ({score:.2f})" for label, score in ranked if score >= min_score]
    # text goes below the box, or inside it when there is no room
    ty = y + fh + 16 if y + fh + 16 < h else max(14, y + 14)
    for line in lines:
        cv2.putText(img, line, (x, ty), cv2.FONT_HERSHEY_SIMPLEX, 0.45, LABEL_COLOR, 1, cv2.LINE_AA)
        ty += 16


class OverlayRenderer:
    """Stateless apart from the surface it draws on."""

    def __init__(self, surface: Optional[AnnotationSurface] = None, min_expression_score: float = 0.1):
        self.surface = surface if surface is not None else AnnotationSurface()
        self.min_expression_score = float(min_expression_score)

    def render(self, result: DetectionResult, surface: Optional[AnnotationSurface] = None) -> AnnotationSurface:
        surface = surface if surface is not None else self.surface
        surface.resize(result.width, result.height)
        surface.clear()
        for face in result.faces:
            draw_box(surface.pixels, face)
            draw_landmarks(surface.pixels, face)
            draw_expressions(surface.pixels, face, self.min_expression_score)
        return surface
