import numpy as np

import facetrack.overlay as overlay
from conftest import make_face
from facetrack.models import DetectionResult
from facetrack.overlay import AnnotationSurface, OverlayRenderer


def test_draws_one_box_landmark_set_and_label_per_face(monkeypatch):
    calls = {"box": 0, "landmarks": 0, "labels": 0}
    monkeypatch.setattr(overlay, "draw_box", lambda img, f: calls.__setitem__("box", calls["box"] + 1))
    monkeypatch.setattr(overlay, "draw_landmarks", lambda img, f: calls.__setitem__("landmarks", calls["landmarks"] + 1))
    monkeypatch.setattr(overlay, "draw_expressions", lambda img, f, m: calls.__setitem__("labels", calls["labels"] + 1))

    faces = [make_face(5, 5, 20, 20), make_face(60, 10, 20, 20), make_face(30, 50, 15, 15)]
    OverlayRenderer().render(DetectionResult(faces=tuple(faces), width=120, height=90))
    assert calls == {"box": 3, "landmarks": 3, "labels": 3}


def test_surface_cleared_before_each_draw():
    r = OverlayRenderer()
    s = r.render(DetectionResult(faces=(make_face(5, 5, 20, 20),), width=100, height=80))
    assert not s.is_blank()
    before = s.pixels[5:26, 5:26].copy()

    s = r.render(DetectionResult(faces=(make_face(60, 40, 20, 20),), width=100, height=80))
    # nothing left from the previous box
    assert not s.pixels[5:26, 5:26].any()
    assert before.any()
    assert s.pixels[40:61, 60:81].any()


def test_empty_result_leaves_blank_surface():
    r = OverlayRenderer()
    r.render(DetectionResult(faces=(make_face(5, 5, 20, 20),), width=64, height=48))
    s = r.render(DetectionResult(width=64, height=48))
    assert s.size == (64, 48)
    assert s.is_blank()


def test_surface_follows_result_dimensions():
    surface = AnnotationSurface(32, 32)
    OverlayRenderer().render(DetectionResult(width=80, height=40), surface)
    assert surface.size == (80, 40)
    assert surface.pixels.shape == (40, 80, 4)
    assert surface.resize(80, 40) is False


def test_boxes_are_clamped_to_surface():
    img = np.zeros((40, 40, 4), dtype=np.uint8)
    overlay.draw_box(img, make_face(30, 30, 100, 100))
    overlay.draw_landmarks(img, make_face(-10, -10, 5, 5))
    overlay.draw_expressions(img, make_face(35, 35, 10, 10))
    assert img.shape == (40, 40, 4)
    assert img[..., 3].any()


def test_low_score_expressions_not_drawn(monkeypatch):
    texts = []
    monkeypatch.setattr(overlay.cv2, "putText", lambda img, text, *a, **k: texts.append(text))
    face = make_face(10, 10, 20, 20, expressions={"happy": 0.93, "sad": 0.05, "neutral": 0.2})
    overlay.draw_expressions(np.zeros((100, 100, 4), dtype=np.uint8), face, min_score=0.1)
    assert texts == ["happy (0.93)", "neutral (0.20)"]
