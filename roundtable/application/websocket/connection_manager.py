from typing import Dict, List, Optional
from fastapi import WebSocket, WebSocketDisconnect
import asyncio
import structlog

from .schema.events import BaseEvent, ConnectionEvent, ErrorEvent

logger = structlog.get_logger(__name__)


class ConnectionManager:
    """Tracks WebSocket observers per session and fans events out to them"""

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, session_id: str):
        """Accept a new WebSocket connection"""
        await websocket.accept()

        async with self._lock:
            self.active_connections.setdefault(session_id, []).append(websocket)

        await self._send(websocket, ConnectionEvent(status="connected", session_id=session_id))
        logger.info("WebSocket connected", session_id=session_id)

    async def disconnect(self, session_id: str, websocket: WebSocket):
        """Forget a connection and close it"""
        async with self._lock:
            sockets = self.active_connections.get(session_id, [])
            if websocket in sockets:
                sockets.remove(websocket)
            if not sockets:
                self.active_connections.pop(session_id, None)

        try:
            await websocket.close()
        except (RuntimeError, WebSocketDisconnect):
            # Already closed by the peer
            pass

        logger.info("WebSocket disconnected", session_id=session_id)

    async def send_event(self, session_id: str, event: BaseEvent) -> int:
        """Send an event to every observer of a session; returns delivery count"""

        async with self._lock:
            sockets = list(self.active_connections.get(session_id, []))

        if not sockets:
            return 0

        results = await asyncio.gather(*(self._send(ws, event) for ws in sockets))

        for websocket, delivered in zip(sockets, results):
            if not delivered:
                await self.disconnect(session_id, websocket)

        return sum(1 for delivered in results if delivered)

    async def _send(self, websocket: WebSocket, event: BaseEvent) -> bool:
        try:
            await websocket.send_json(event.model_dump(mode="json"))
            return True
        except (RuntimeError, OSError, WebSocketDisconnect) as e:
            logger.error("Failed to send event", error=str(e))
            return False

    async def send_error(self, session_id: str, error_message: str, error_code: Optional[str] = None):
        """Send an error event to a session"""
        error_event = ErrorEvent(
            payload={"message": error_message},
            error_code=error_code,
            session_id=session_id
        )
        await self.send_event(session_id, error_event)

    def connection_count(self, session_id: Optional[str] = None) -> int:
        if session_id:
            return len(self.active_connections.get(session_id, []))
        return sum(len(sockets) for sockets in self.active_connections.values())

    async def close_all(self):
        """Disconnect every observer"""
        async with self._lock:
            pairs = [
                (session_id, ws)
                for session_id, sockets in self.active_connections.items()
                for ws in sockets
            ]
        for session_id, websocket in pairs:
            await self.disconnect(session_id, websocket)
