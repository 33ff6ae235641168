import json
import logging
from typing import Dict, Set
from fastapi import WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)


class ConnectionManager:
    def __init__(self):
        # Maps session_id -> set of websocket connections
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, session_id: str):
        await websocket.accept()
        self.active_connections.setdefault(session_id, set()).add(websocket)

    def disconnect(self, websocket: WebSocket, session_id: str):
        connections = self.active_connections.get(session_id)
        if connections is None:
            return
        connections.discard(websocket)
        if not connections:
            del self.active_connections[session_id]

    async def send_to_session(self, session_id: str, event: str, data: dict | None = None):
        """Send an event to every listener of a pipeline session."""
        if session_id not in self.active_connections:
            return

        message = json.dumps({"event": event, "data": data}, default=str)
        dead_connections = set()

        for connection in list(self.active_connections[session_id]):
            try:
                await connection.send_text(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Dropping websocket for session {session_id}: {e}")
                dead_connections.add(connection)

        for conn in dead_connections:
            self.disconnect(conn, session_id)

    async def broadcast_progress(
        self,
        session_id: str,
        step: str,
        progress: int | None = None,
        message: str | None = None,
    ):
        await self.send_to_session(
            session_id,
            "progress",
            {"step": step, "progress": progress, "message": message},
        )

    async def broadcast_error(self, session_id: str, kind: str, error: str):
        await self.send_to_session(session_id, "error", {"kind": kind, "error": error})

    async def broadcast_complete(self, session_id: str, result: dict | None = None):
        await self.send_to_session(session_id, "complete", result)


manager = ConnectionManager()


async def websocket_endpoint(websocket: WebSocket, session_id: str):
    """Progress stream for one pipeline session."""
    await manager.connect(websocket, session_id)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if message.get("type") == "ping":
                await websocket.send_text(json.dumps({"event": "pong"}))
    except WebSocketDisconnect:
        manager.disconnect(websocket, session_id)
