from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
import structlog

from roundtable.domain.errors import SessionNotFoundError
from .schema.events import EventType, UserMessage

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.websocket("/ws/sessions/{session_id}")
async def session_websocket(websocket: WebSocket, session_id: str):
    """Streams scheduler events for one session and accepts user messages"""

    container = websocket.app.state.container
    connection_manager = container.connection_manager

    try:
        await container.runtime_memory.get_session(session_id)
    except SessionNotFoundError:
        await websocket.close(code=1008, reason="Unknown session")
        return

    await connection_manager.connect(websocket, session_id)

    try:
        while True:
            data = await websocket.receive_json()
            event_type = data.get("type") if isinstance(data, dict) else None

            if event_type != EventType.USER_MESSAGE.value:
                await connection_manager.send_error(
                    session_id, f"Unsupported event type: {event_type}", "unsupported_event"
                )
                continue

            try:
                user_message = UserMessage(content=data.get("content"), session_id=session_id)
                await container.conversation_manager.inject(session_id, user_message.content)
            except (ValidationError, ValueError) as e:
                logger.warning("Rejected user message", session_id=session_id, error=str(e))
                await connection_manager.send_error(session_id, str(e), "invalid_message")
            except SessionNotFoundError:
                await connection_manager.send_error(session_id, "Session was deleted", "session_not_found")
                break

    except WebSocketDisconnect:
        logger.info("Client disconnected", session_id=session_id)
    finally:
        await connection_manager.disconnect(session_id, websocket)
