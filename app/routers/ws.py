"""WebSocket feed for local renderer clients (map, gauges, data log)."""

import asyncio
import json

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from comms.event_bus import EventBus
from simulation.state import utc_timestamp

router = APIRouter(prefix="/ws", tags=["websocket"])


class RendererFeed:
    """Renderer sockets currently attached to /ws/live.

    Only the server's event loop touches the client set.
    """

    def __init__(self) -> None:
        self.clients: set[WebSocket] = set()

    async def attach(self, websocket: WebSocket) -> None:
        await websocket.accept()
        self.clients.add(websocket)
        logger.info(f"Renderer attached ({len(self.clients)} live)")

    def detach(self, websocket: WebSocket) -> None:
        self.clients.discard(websocket)
        logger.info(f"Renderer detached ({len(self.clients)} live)")

    async def send(self, websocket: WebSocket, message: dict) -> bool:
        try:
            await websocket.send_text(json.dumps(message))
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            logger.warning(f"Renderer send failed: {e}")
            return False
        return True

    async def broadcast(self, message: dict) -> None:
        """Fan one event out; sockets that fail are dropped."""
        for websocket in list(self.clients):
            if not await self.send(websocket, message):
                self.clients.discard(websocket)


feed = RendererFeed()


@router.websocket("/live")
async def websocket_live(websocket: WebSocket):
    """Live simulator events: telemetry, anomaly start/clear, config updates."""
    await feed.attach(websocket)

    connected = {"type": "connected", "timestamp": utc_timestamp()}
    simulator = getattr(websocket.app.state, "simulator", None)
    if simulator is not None:
        connected["data"] = simulator.snapshot().to_dict()
    await feed.send(websocket, connected)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                await feed.send(websocket, {"type": "error", "message": "Invalid JSON"})
                continue
            await handle_client_message(websocket, message)
    except WebSocketDisconnect:
        feed.detach(websocket)


async def handle_client_message(websocket: WebSocket, message: dict):
    msg_type = message.get("type") if isinstance(message, dict) else None

    if msg_type == "ping":
        await feed.send(websocket, {"type": "pong", "timestamp": utc_timestamp()})
    else:
        await feed.send(
            websocket,
            {"type": "error", "message": f"Unknown message type: {msg_type}"},
        )


async def _bridge_loop(queue: asyncio.Queue) -> None:
    while True:
        msg = await queue.get()
        await feed.broadcast({
            "type": msg.get("type", "unknown"),
            "data": msg.get("data", {}),
            "timestamp": utc_timestamp(),
        })


def start_event_bridge(event_bus: EventBus) -> asyncio.Task:
    """Forward EventBus events to every attached renderer.

    Returns the bridge task; cancel it on shutdown.
    """
    queue = event_bus.subscribe()
    task = asyncio.create_task(_bridge_loop(queue))
    task.add_done_callback(lambda _t: event_bus.unsubscribe(queue))
    return task
