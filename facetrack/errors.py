"""
Error taxonomy for the annotation and capture pipeline.

Fatal errors abort session setup; recording errors only disable the
recording affordance; transient errors are logged and dropped per tick.
"""
from __future__ import annotations


class FaceTrackError(RuntimeError):
    """Base class. ``fatal`` errors end the session."""
    fatal = False


class DeviceUnavailable(FaceTrackError):
    """No camera, permission denied, or the stream died."""
    fatal = True


class NotReady(FaceTrackError):
    """A frame or surface was requested before anything was produced."""


class ModelLoadError(FaceTrackError):
    """Detection model could not be imported or built."""
    fatal = True


class CaptureUnsupported(FaceTrackError):
    """The composite surface cannot produce a capturable stream."""


class EncoderUnavailable(FaceTrackError):
    """The encoder could not be constructed for the requested format."""


class InferenceFailure(FaceTrackError):
    """One detection call failed; the tick is discarded."""
