"""
Local operator endpoints for one live session: start/stop the annotated feed,
drive the recording controls, and export the finished clip.
"""
import logging
from typing import Callable, Optional

import cv2
from fastapi import APIRouter, HTTPException, Response
from fastapi.responses import JSONResponse

from facetrack.config import Settings
from facetrack.errors import FaceTrackError
from facetrack.session import FaceTrackSession


router = APIRouter()
settings = Settings()
logger = logging.getLogger(__name__)

# one camera, one session per process
session_factory: Callable[[Settings], FaceTrackSession] = FaceTrackSession
_session: Optional[FaceTrackSession] = None


def get_session() -> FaceTrackSession:
    global _session
    if _session is None:
        _session = session_factory(settings)
    return _session


async def shutdown_session() -> None:
    global _session
    if _session is not None and _session.running:
        await _session.teardown()
    _session = None


def _error(e: FaceTrackError) -> HTTPException:
    # fatal errors end the session; recording errors leave the feed running
    status = 503 if e.fatal else 409
    return HTTPException(status_code=status, detail=str(e))


@router.post("/session/start")
async def session_start():
    """
    Load the detection model, attach the camera and start the annotated feed.

    Returns:
        JSONResponse: {"status": "started" | "already_running"}
    """
    s = get_session()
    if s.running:
        return {"status": "already_running"}
    try:
        await s.setup()
    except FaceTrackError as e:
        logger.exception("[api] session setup failed")
        raise _error(e)
    return {"status": "started"}


@router.post("/session/stop")
async def session_stop():
    s = get_session()
    if not s.running:
        return {"status": "not_running"}
    await s.teardown()
    return {"status": "stopped"}


@router.get("/session/status")
async def session_status():
    return JSONResponse(get_session().status().model_dump(mode="json"))


@router.post("/recording/start", status_code=202)
async def recording_start():
    """
    Begin the pre-recording countdown; recording starts when it reaches zero.
    """
    s = get_session()
    try:
        started = s.start_recording()
    except FaceTrackError as e:
        logger.warning(f"[api] recording start rejected: {e}")
        raise _error(e)
    if not started:
        return {"status": "already_active", "recording": s.recording_status().model_dump(mode="json")}
    return {"status": "counting_down", "countdown": s.countdown.value}


@router.post("/recording/stop")
async def recording_stop():
    s = get_session()
    if not s.stop_recording():
        return {"status": "not_recording"}
    # the clip is assembled asynchronously; poll /session/status for "ready"
    return {"status": "finalizing", "elapsed": s.recorder.elapsed_display}


@router.delete("/recording")
async def recording_delete():
    get_session().delete_artifact()
    return {"status": "deleted"}


@router.get("/recording/artifact")
async def recording_artifact(download: bool = False):
    """
    Finished clip, either for inline playback or as a download with the fixed filename.
    """
    artifact = get_session().artifact
    if artifact is None:
        raise HTTPException(status_code=404, detail="No recording available")
    disposition = "attachment" if download else "inline"
    return Response(
        content=artifact.data,
        media_type=artifact.mime_type,
        headers={"Content-Disposition": f'{disposition}; filename="{artifact.filename}"'},
    )


@router.get("/preview.jpg")
async def preview():
    img = get_session().preview()
    if img is None:
        raise HTTPException(status_code=404, detail="No frame composed yet")
    ok, buf = cv2.imencode(".jpg", img)
    if not ok:
        raise HTTPException(status_code=500, detail="JPEG encoding failed")
    return Response(content=buf.tobytes(), media_type="image/jpeg")
