from typing import Dict, Any, Optional, Literal
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum

from roundtable.domain.models.conversation import AgentStatus, Message, SessionPhase
from roundtable.domain.models.sandbox import CodeBlock


class EventType(str, Enum):
    """WebSocket event types"""
    AGENT_STATUS = "agent_status"
    MESSAGE = "message"
    SESSION_STATUS = "session_status"
    CODE_EXECUTION = "code_execution"
    TURN_FAILED = "turn_failed"
    ERROR = "error"
    CONNECTION = "connection"
    USER_MESSAGE = "user_message"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseEvent(BaseModel):
    """Base event model for all WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=utc_now)
    session_id: Optional[str] = None


class AgentStatusData(BaseModel):
    agent_id: str
    agent_name: str
    status: AgentStatus


class AgentStatusEvent(BaseEvent):
    """An agent changed between idle, thinking and speaking"""
    type: Literal[EventType.AGENT_STATUS] = EventType.AGENT_STATUS
    payload: AgentStatusData


class MessageEvent(BaseEvent):
    """A message was committed to the session"""
    type: Literal[EventType.MESSAGE] = EventType.MESSAGE
    payload: Message


class SessionStatusData(BaseModel):
    phase: SessionPhase
    topic: str = ""
    turn_index: int = 0


class SessionStatusEvent(BaseEvent):
    """The scheduler phase changed"""
    type: Literal[EventType.SESSION_STATUS] = EventType.SESSION_STATUS
    payload: SessionStatusData


class CodeExecutionData(BaseModel):
    message_id: str
    block: CodeBlock


class CodeExecutionEvent(BaseEvent):
    """A code block from a message ran in the session sandbox"""
    type: Literal[EventType.CODE_EXECUTION] = EventType.CODE_EXECUTION
    payload: CodeExecutionData


class TurnFailedEvent(BaseEvent):
    """A turn produced no message after all retries"""
    type: Literal[EventType.TURN_FAILED] = EventType.TURN_FAILED
    payload: Dict[str, Any]


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected"]


class UserMessage(BaseEvent):
    """User message injected from a client"""
    type: Literal[EventType.USER_MESSAGE] = EventType.USER_MESSAGE
    content: str
