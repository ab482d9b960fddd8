"""Run the live annotated camera window.

Usage:
    uvicorn api.main:app --reload  # (separate, for the local control API)
    python scripts/live_overlay.py  # (to see the camera overlay window)

Keys: r record/stop, d delete, s save, p play, q quit.
"""
import logging
import sys

from facetrack.config import Settings
from facetrack.errors import FaceTrackError
from facetrack.live import run_live_overlay

if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    s = Settings()
    try:
        run_live_overlay(s)
    except FaceTrackError as e:
        print(f"FaceTrack could not start: {e}", file=sys.stderr)
        sys.exit(1)
