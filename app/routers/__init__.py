"""API routers for the drone simulator."""

from app.routers.sim import router as sim_router
from app.routers.ws import router as ws_router

__all__ = ["sim_router", "ws_router"]
