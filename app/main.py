"""Drone telemetry simulator — FastAPI service.

Hosts the simulator on the server's event loop, exposes its control and
read surfaces under /api/sim and a live renderer feed on /ws/live.
"""

import random
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.config import Settings, settings
from app.routers import sim_router, ws_router
from app.routers.ws import start_event_bridge
from comms.batch import BatchChannel
from comms.event_bus import EventBus
from comms.streaming import StreamingChannel
from simulation.engine import SimulationEngine
from simulation.simulator import DroneSimulator

VERSION = "1.0.0"


def create_simulator(cfg: Settings, event_bus: EventBus | None = None) -> DroneSimulator:
    """Wire engine + both channels from settings."""
    rng = random.Random(cfg.random_seed) if cfg.random_seed is not None else None
    engine = SimulationEngine(event_bus, history_size=cfg.history_size, rng=rng)

    streaming = StreamingChannel(
        cfg.ws_url,
        engine.snapshot,
        drone_id=cfg.drone_id,
        token=cfg.api_token,
        bounds=cfg.geo_bounds,
        max_reconnect_attempts=cfg.max_reconnect_attempts,
        reconnect_base_delay=cfg.reconnect_base_delay,
    )
    batch = BatchChannel(
        cfg.api_base_url,
        engine.snapshot,
        drone_id=cfg.drone_id,
        token=cfg.api_token,
        bounds=cfg.geo_bounds,
        interval=cfg.batch_interval,
        timeout=cfg.request_timeout,
        queue_size=cfg.retry_queue_size,
        retry_on_success=cfg.retry_on_success,
    )
    return DroneSimulator(
        engine,
        streaming,
        batch,
        event_bus=event_bus,
        method=cfg.streaming_method,
        tick_interval=cfg.tick_interval,
        stream_interval=cfg.stream_interval,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("=" * 60)
    logger.info(f"  {settings.app_name} v{VERSION} - INITIALIZING")
    logger.info("=" * 60)

    event_bus = EventBus()
    simulator = create_simulator(settings, event_bus)
    app.state.event_bus = event_bus
    app.state.simulator = simulator
    logger.info(f"Drone {settings.drone_id}, streaming method: {settings.streaming_method}")

    # The persistent link comes up with the service, before the drone starts
    if settings.connect_on_startup:
        simulator.streaming.open()
        logger.info(f"Persistent channel connecting to {settings.ws_url}")

    bridge = start_event_bridge(event_bus)
    logger.info("Live feed bridge started")

    if settings.autostart:
        simulator.start()

    logger.info(f"  {settings.app_name} ONLINE")

    yield

    logger.info(f"{settings.app_name} shutting down...")
    bridge.cancel()
    await simulator.close()
    app.state.simulator = None


app = FastAPI(
    title="DRONE-SIM",
    description="Drone telemetry simulator",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sim_router)
app.include_router(ws_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "operational",
        "version": VERSION,
        "system": settings.app_name,
    }
