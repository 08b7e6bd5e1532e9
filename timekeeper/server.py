from __future__ import annotations

"""
Timekeeper - timekeeper/server.py
---------------------------------
HTTP control surface for the trackside timekeeper.

The operator UI posts one request per button press; every route maps onto a
single Timekeeper / UploadStatusPoller call and returns the fresh snapshot.
All rules live in those classes. This module only translates errors:

    InvalidTransition  -> 409   (button pressed in the wrong state)
    LapNotFound        -> 404
    ValueError         -> 400   (bad payload)
    UploadInitiationError / RemoteApiError -> 502

Routes are `async def` so every mutation runs on the event loop thread,
alongside the countdown's deadline callback and the poll loop.
"""

import logging
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator

from .config_loader import (
    CONFIG,
    get_default_event,
    get_remote_cfg,
    get_timekeeper_cfg,
    get_upload_cfg,
)
from .errors import InvalidTransition, LapNotFound, RemoteApiError, UploadInitiationError
from .models import Event
from .remote import RemoteApi
from .session import Timekeeper
from .upload import UploadStatusPoller

log = logging.getLogger("timekeeper")
log.setLevel(logging.INFO)


# ------------------------------------------------------------
# Singletons (one timekeeper per operator console)
# ------------------------------------------------------------
_remote_cfg = get_remote_cfg()
REMOTE = RemoteApi(
    str(_remote_cfg.get("base_url") or "http://127.0.0.1:20002"),
    api_key=_remote_cfg.get("api_key") or None,
    timeout_ms=int(_remote_cfg.get("timeout_ms", 5000)),
)

TIMEKEEPER = Timekeeper(
    get_default_event(),
    trace_size=int(get_timekeeper_cfg().get("trace_size", 500)),
)

_upload_cfg = get_upload_cfg()
POLLER = UploadStatusPoller(
    REMOTE,
    interval_ms=_upload_cfg["interval_ms"],
    max_polls=_upload_cfg["max_polls"],
    max_consecutive_errors=_upload_cfg["max_consecutive_errors"],
)


# ------------------------------------------------------------
# FastAPI app bootstrap
# ------------------------------------------------------------
app = FastAPI(title="Timekeeper", version="0.3.0")

# CORS: permissive for development. Tighten for production.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def start_remote() -> None:
    await REMOTE.start()
    log.info("remote api: %s", REMOTE.base_url)


@app.on_event("shutdown")
async def stop_remote() -> None:
    POLLER.dismiss()
    await REMOTE.stop()


# ------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------
class EventIn(BaseModel):
    event_name: str = "Practice"
    race_time_in_sec: int = Field(gt=0)
    number_of_resets: int = Field(default=0, ge=0)
    event_id: Optional[str] = None


class RacerIn(BaseModel):
    racer_name: str

    @field_validator("racer_name")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("racer_name must not be blank")
        return v.strip()


class LapIn(BaseModel):
    is_valid: bool = True


class EndIn(BaseModel):
    submit: bool


class UploadIn(BaseModel):
    car_id: str = Field(min_length=1)
    model_key: str = Field(min_length=1)


def _apply(fn: Callable[..., Any], *args: Any) -> Any:
    """Run a Timekeeper action, translating rejections into HTTP errors."""
    try:
        return fn(*args)
    except LapNotFound as ex:
        raise HTTPException(status_code=404, detail=str(ex))
    except InvalidTransition as ex:
        raise HTTPException(status_code=409, detail=str(ex))
    except ValueError as ex:
        raise HTTPException(status_code=400, detail=str(ex))


# ------------------------------------------------------------
# Timekeeper: session lifecycle
# ------------------------------------------------------------
@app.get("/timekeeper/state")
async def timekeeper_state() -> Dict[str, Any]:
    return TIMEKEEPER.snapshot()


@app.post("/timekeeper/event")
async def timekeeper_select_event(req: EventIn) -> Dict[str, Any]:
    event = Event(
        event_name=req.event_name,
        race_time_in_sec=req.race_time_in_sec,
        number_of_resets=req.number_of_resets,
        event_id=req.event_id,
    )
    return _apply(TIMEKEEPER.select_event, event)


@app.post("/timekeeper/racer")
async def timekeeper_select_racer(req: RacerIn) -> Dict[str, Any]:
    return _apply(TIMEKEEPER.select_racer, req.racer_name)


@app.post("/timekeeper/racer/dismiss")
async def timekeeper_dismiss_racer() -> Dict[str, Any]:
    return _apply(TIMEKEEPER.dismiss_racer_selection)


@app.post("/timekeeper/start")
async def timekeeper_start() -> Dict[str, Any]:
    return _apply(TIMEKEEPER.start)


@app.post("/timekeeper/pause")
async def timekeeper_pause() -> Dict[str, Any]:
    return _apply(TIMEKEEPER.pause)


@app.post("/timekeeper/toggle")
async def timekeeper_toggle() -> Dict[str, Any]:
    return _apply(TIMEKEEPER.toggle_race)


# ------------------------------------------------------------
# Timekeeper: laps & resets
# ------------------------------------------------------------
@app.post("/timekeeper/lap")
async def timekeeper_capture_lap(req: LapIn) -> Dict[str, Any]:
    lap = _apply(TIMEKEEPER.capture_lap, req.is_valid)
    return {"ok": True, "lap": lap.as_snapshot(), "state": TIMEKEEPER.snapshot()}


@app.post("/timekeeper/dnf")
async def timekeeper_dnf() -> Dict[str, Any]:
    lap = _apply(TIMEKEEPER.capture_lap, False)
    return {"ok": True, "lap": lap.as_snapshot(), "state": TIMEKEEPER.snapshot()}


@app.post("/timekeeper/laps/{lap_id}/toggle")
async def timekeeper_toggle_lap(lap_id: int) -> Dict[str, Any]:
    lap = _apply(TIMEKEEPER.toggle_lap_validity, lap_id)
    return {"ok": True, "lap": lap.as_snapshot(), "state": TIMEKEEPER.snapshot()}


@app.post("/timekeeper/undo")
async def timekeeper_undo() -> Dict[str, Any]:
    lap = _apply(TIMEKEEPER.undo_last_capture)
    return {
        "ok": True,
        "removed": lap.as_snapshot() if lap else None,
        "state": TIMEKEEPER.snapshot(),
    }


@app.post("/timekeeper/resets/increment")
async def timekeeper_reset_increment() -> Dict[str, Any]:
    _apply(TIMEKEEPER.increment_resets)
    return TIMEKEEPER.snapshot()


@app.post("/timekeeper/resets/decrement")
async def timekeeper_reset_decrement() -> Dict[str, Any]:
    _apply(TIMEKEEPER.decrement_resets)
    return TIMEKEEPER.snapshot()


# ------------------------------------------------------------
# Timekeeper: end of session
# ------------------------------------------------------------
@app.post("/timekeeper/end")
async def timekeeper_request_end() -> Dict[str, Any]:
    return _apply(TIMEKEEPER.request_end)


@app.post("/timekeeper/end/cancel")
async def timekeeper_cancel_end() -> Dict[str, Any]:
    return _apply(TIMEKEEPER.cancel_end)


@app.post("/timekeeper/end/confirm")
async def timekeeper_confirm_end(req: EndIn) -> Dict[str, Any]:
    result = _apply(TIMEKEEPER.confirm_end, req.submit)
    return {
        "ok": True,
        "result": result.as_snapshot() if result else None,
        "state": TIMEKEEPER.snapshot(),
    }


@app.get("/timekeeper/last_result")
async def timekeeper_last_result() -> Dict[str, Any]:
    if TIMEKEEPER.last_result is None:
        raise HTTPException(status_code=404, detail="no finished session yet")
    return TIMEKEEPER.last_result.as_snapshot()


# ------------------------------------------------------------
# Remote lookups
# ------------------------------------------------------------
@app.get("/events")
async def list_events() -> Dict[str, Any]:
    try:
        events = await REMOTE.list_events()
    except RemoteApiError as ex:
        raise HTTPException(status_code=502, detail=str(ex))
    return {"events": [e.as_snapshot() for e in events]}


@app.get("/cars")
async def list_cars() -> Dict[str, Any]:
    try:
        cars = await REMOTE.list_cars_online()
    except RemoteApiError as ex:
        raise HTTPException(status_code=502, detail=str(ex))
    return {"cars": cars}


# ------------------------------------------------------------
# Upload model to car
# ------------------------------------------------------------
@app.post("/uploads")
async def upload_submit(req: UploadIn) -> Dict[str, Any]:
    try:
        command_id = await POLLER.submit(req.car_id, req.model_key)
    except UploadInitiationError as ex:
        raise HTTPException(status_code=502, detail=str(ex))
    return {"ok": True, "command_id": command_id, **POLLER.snapshot()}


@app.get("/uploads/status")
async def upload_status() -> Dict[str, Any]:
    return POLLER.snapshot()


@app.post("/uploads/refresh")
async def upload_refresh() -> Dict[str, Any]:
    if POLLER.task is None or POLLER.task.command_id is None:
        raise HTTPException(status_code=409, detail="no upload to refresh")
    await POLLER.refresh()
    return POLLER.snapshot()


@app.post("/uploads/dismiss")
async def upload_dismiss() -> Dict[str, Any]:
    POLLER.dismiss()
    return POLLER.snapshot()


# ------------------------------------------------------------
# Debugging & probes
# ------------------------------------------------------------
@app.get("/__debug/trace")
async def debug_trace() -> Dict[str, Any]:
    return {"events": TIMEKEEPER.events()}


@app.get("/__debug/config")
async def debug_config() -> Dict[str, Any]:
    # never echo credentials
    remote = dict(get_remote_cfg())
    if remote.get("api_key"):
        remote["api_key"] = "***"
    return {"remote": remote, "upload": get_upload_cfg(), "log": CONFIG.get("log") or {}}


@app.get("/healthz")
async def healthz() -> Dict[str, Any]:
    """Liveness probe. Does not touch the remote API."""
    return {"status": "ok", "service": "timekeeper"}
