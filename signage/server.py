import time
from fastapi import FastAPI, Depends, HTTPException, Header
from fastapi.responses import PlainTextResponse
from typing import Optional
from .state import StateManager
from .mirror import FolderMirror
from .config import settings

app = FastAPI(title="Signage Folder Mirror")
state_manager: Optional[StateManager] = None
mirror: Optional[FolderMirror] = None

def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if settings.HTTP_SERVER_TOKEN and x_token != settings.HTTP_SERVER_TOKEN:
        raise HTTPException(status_code=401, detail="Invalid token")

@app.get("/healthz")
def healthz():
    if not state_manager:
        return {"status": "starting"}

    s = state_manager.state
    if s.paused:
        return {"status": "paused"}

    if s.consecutive_failures > 0:
        return {"status": "failing", "consecutive_failures": s.consecutive_failures, "last_error": s.last_error}

    # Lenient threshold: a few missed intervals before reporting lag
    age = time.time() - s.last_successful_sync
    if age > (settings.SYNC_INTERVAL_SECONDS * 3 + 60):
        return {"status": "lagging", "last_sync_age": age}

    return {"status": "ok"}

@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if not state_manager:
        return {"status": "not_ready"}

    s = state_manager.state
    return {
        "last_sync": s.last_successful_sync,
        "last_attempt": s.last_attempt_at,
        "last_error": s.last_error,
        "file_count": s.last_file_count,
        "paused": s.paused,
        "busy": bool(mirror and mirror.busy),
        "config": {
            "interval": settings.SYNC_INTERVAL_SECONDS,
            "download_path": settings.DOWNLOAD_PATH
        }
    }

@app.get("/metrics", response_class=PlainTextResponse)
def metrics():
    # Simple prometheus-style text format
    if not state_manager:
        return ""

    s = state_manager.state
    lines = [
        f'signage_mirror_last_sync_timestamp {s.last_successful_sync}',
        f'signage_mirror_files {s.last_file_count}',
        f'signage_mirror_downloaded_total {s.total_downloaded}',
        f'signage_mirror_removed_total {s.total_removed}',
        f'signage_mirror_consecutive_failures {s.consecutive_failures}',
        f'signage_mirror_paused {int(s.paused)}'
    ]
    return "\n".join(lines)

@app.post("/pause", dependencies=[Depends(get_token)])
async def pause():
    # Runs on the event loop that owns the mirror schedule
    if not mirror:
        raise HTTPException(status_code=503, detail="Mirror not ready")
    mirror.pause()
    return {"paused": True}

@app.post("/resume", dependencies=[Depends(get_token)])
async def resume():
    if not mirror:
        raise HTTPException(status_code=503, detail="Mirror not ready")
    try:
        files = await mirror.resume()
    except Exception as e:
        raise HTTPException(status_code=502, detail=f"Sync failed: {e}")
    return {"paused": False, "files": len(files) if files is not None else None}
