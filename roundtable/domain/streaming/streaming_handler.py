from typing import Dict, Any, Optional, List, Callable, Awaitable
import structlog

from roundtable.application.websocket.connection_manager import ConnectionManager
from roundtable.application.websocket.schema.events import (
    AgentStatusData, AgentStatusEvent, BaseEvent, CodeExecutionData, CodeExecutionEvent,
    EventType, MessageEvent, SessionStatusData, SessionStatusEvent, TurnFailedEvent
)
from roundtable.domain.models.conversation import Agent, Message, SessionPhase
from roundtable.domain.models.sandbox import CodeBlock

logger = structlog.get_logger(__name__)

EventHandler = Callable[[str, BaseEvent], Awaitable[None]]


class StreamingHandler:
    """Publishes scheduler events to registered observers and WebSocket clients.

    Delivery is best-effort: a failing observer is logged and skipped, and no
    scheduler behavior depends on an event being seen.
    """

    def __init__(self, connection_manager: Optional[ConnectionManager] = None):
        self.connection_manager = connection_manager
        self.event_handlers: Dict[str, List[EventHandler]] = {}

    def register_event_handler(self, event_type: str, handler: EventHandler):
        """Register a handler for one event type, or '*' for all"""

        key = event_type.value if isinstance(event_type, EventType) else event_type
        if key not in self.event_handlers:
            self.event_handlers[key] = []
        self.event_handlers[key].append(handler)

    async def emit(self, session_id: str, event: BaseEvent):
        """Deliver an event to handlers and connected clients"""

        event.session_id = session_id
        handlers = self.event_handlers.get(event.type.value, []) + self.event_handlers.get("*", [])

        for handler in handlers:
            try:
                await handler(session_id, event)
            except Exception as e:
                logger.error("Error in event handler", event_type=event.type.value, error=str(e))

        if self.connection_manager:
            await self.connection_manager.send_event(session_id, event)

    async def agent_status_changed(self, session_id: str, agent: Agent):
        await self.emit(
            session_id,
            AgentStatusEvent(
                payload=AgentStatusData(agent_id=agent.id, agent_name=agent.name, status=agent.status)
            )
        )

    async def message_committed(self, session_id: str, message: Message):
        await self.emit(session_id, MessageEvent(payload=message))

    async def session_phase_changed(self, session_id: str, phase: SessionPhase, topic: str, turn_index: int):
        await self.emit(
            session_id,
            SessionStatusEvent(payload=SessionStatusData(phase=phase, topic=topic, turn_index=turn_index))
        )

    async def code_executed(self, session_id: str, message_id: str, block: CodeBlock):
        await self.emit(
            session_id,
            CodeExecutionEvent(payload=CodeExecutionData(message_id=message_id, block=block))
        )

    async def turn_failed(self, session_id: str, agent: Agent, error: str):
        payload: Dict[str, Any] = {"agent_id": agent.id, "agent_name": agent.name, "error": error}
        await self.emit(session_id, TurnFailedEvent(payload=payload))
