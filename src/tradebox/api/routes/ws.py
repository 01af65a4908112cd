"""WebSocket hub broadcasting engine events to connected clients."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

log = structlog.get_logger(__name__)

router = APIRouter()


class EventHub:
    """Manages WebSocket connections and fans bus events out to all of them."""

    def __init__(self) -> None:
        self.connections: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        """Accept a WebSocket connection and add it to the active connections list."""
        await ws.accept()
        self.connections.append(ws)
        log.info("event_ws_connected", total=len(self.connections))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.connections:
            self.connections.remove(ws)
        log.info("event_ws_disconnected", total=len(self.connections))

    async def broadcast(self, message: dict) -> None:
        """Send a JSON message to all connected clients, removing broken connections."""
        for ws in self.connections.copy():
            try:
                await ws.send_json(message)
            except Exception:
                self.connections.remove(ws)
                log.warning("event_ws_broadcast_error", remaining=len(self.connections))

    async def on_event(self, event: str, data: dict) -> None:
        """EventBus handler: forward every event as {"event", "data"}."""
        await self.broadcast({"event": event, "data": data})


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """JSON stream of trade.created, trade.settled, balance.updated, trades.updated."""
    hub: EventHub = websocket.app.state.hub
    await hub.connect(websocket)
    try:
        while True:
            # Consume messages to keep connection alive
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(websocket)
