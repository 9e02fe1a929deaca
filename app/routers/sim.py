"""Simulator API — control surface and read surface for the UI."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from app.config import settings
from geo.reference import canvas_to_latlng

router = APIRouter(prefix="/api/sim", tags=["simulation"])


class TargetRequest(BaseModel):
    x: float
    y: float


class StreamingMethodRequest(BaseModel):
    method: str  # persistent, batch, both


def _get_simulator(request: Request):
    """Retrieve the DroneSimulator from app state."""
    sim = getattr(request.app.state, "simulator", None)
    if sim is None:
        raise HTTPException(503, "Simulator not available")
    return sim


def _state_response(sim) -> dict:
    snapshot = sim.snapshot()
    lat, lng = canvas_to_latlng(snapshot.x, snapshot.y, settings.geo_bounds)
    data = snapshot.to_dict()
    data["latitude"] = lat
    data["longitude"] = lng
    data["display"] = snapshot.to_display()
    return data


# --- Read surface ---

@router.get("/state")
async def get_state(request: Request):
    """Current drone state (raw values, plus rounded display values)."""
    return _state_response(_get_simulator(request))


@router.get("/history")
async def get_history(request: Request, limit: int = Query(20, ge=1, le=100)):
    """Recent snapshots, newest first."""
    sim = _get_simulator(request)
    return [s.to_display() for s in sim.history(limit)]


@router.get("/path")
async def get_path(request: Request):
    """Trailing path (up to 10 most recent points, newest first)."""
    sim = _get_simulator(request)
    return [{"x": x, "y": y} for x, y in sim.trail()]


@router.get("/connection")
async def get_connection(request: Request):
    return _get_simulator(request).connection_status()


# --- Control surface ---

@router.post("/start")
async def start(request: Request):
    sim = _get_simulator(request)
    sim.start()
    return _state_response(sim)


@router.post("/stop")
async def stop(request: Request):
    sim = _get_simulator(request)
    sim.stop()
    return _state_response(sim)


@router.post("/reset")
async def reset(request: Request):
    sim = _get_simulator(request)
    sim.reset()
    return _state_response(sim)


@router.post("/anomaly/{kind}")
async def trigger_anomaly(kind: str, request: Request):
    sim = _get_simulator(request)
    try:
        sim.trigger_anomaly(kind)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return _state_response(sim)


@router.post("/normal")
async def return_to_normal(request: Request):
    sim = _get_simulator(request)
    sim.return_to_normal()
    return _state_response(sim)


@router.post("/target")
async def set_target(body: TargetRequest, request: Request):
    sim = _get_simulator(request)
    sim.set_target(body.x, body.y)
    return _state_response(sim)


@router.post("/streaming-method")
async def set_streaming_method(body: StreamingMethodRequest, request: Request):
    sim = _get_simulator(request)
    try:
        method = sim.set_streaming_method(body.method)
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"method": method.value}


@router.post("/connection/rearm")
async def rearm_connection(request: Request):
    """Re-arm the persistent channel after it exhausted its reconnects."""
    sim = _get_simulator(request)
    sim.rearm_streaming()
    return sim.connection_status()


@router.post("/retry")
async def retry_failed(request: Request):
    """Drain the batch channel's retry queue now."""
    sim = _get_simulator(request)
    delivered = await sim.retry_failed_requests()
    return {"delivered": delivered, "queued": len(sim.batch.queue)}
