import logging
from typing import List
from fastapi import WebSocket
from .config import config
from .schemas import Alert, IngestResult

logger = logging.getLogger(__name__)

class ConnectionManager:
    def __init__(self, max_connections: int = None):
        self.active_connections: List[WebSocket] = []
        self.max_connections = max_connections or config.ws_max_connections

    async def connect(self, websocket: WebSocket) -> bool:
        if len(self.active_connections) >= self.max_connections:
            logger.warning(f"Rejecting WebSocket: {self.max_connections} connections already open")
            await websocket.close(code=1013)
            return False
        await websocket.accept()
        self.active_connections.append(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.active_connections)}")
        return True

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
            logger.info(f"WebSocket disconnected. Total connections: {len(self.active_connections)}")

    async def broadcast(self, message: dict):
        """Broadcast message to all connected WebSocket clients."""
        if not self.active_connections:
            return

        for connection in list(self.active_connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"WebSocket broadcast error: {e}")
                # Remove bad connection
                self.disconnect(connection)

    async def broadcast_alert(self, alert: Alert):
        """Alert sink pushing alerts to live subscribers."""
        await self.broadcast({"type": "alert", "payload": alert.model_dump(mode="json")})

    async def broadcast_update(self, result: IngestResult):
        await self.broadcast({
            "type": "aggregate",
            "payload": {
                "trip_id": result.trip_id,
                "aggregate": result.aggregate.model_dump(mode="json"),
                "violations": [v.kind.value for v in result.violations]
            }
        })
