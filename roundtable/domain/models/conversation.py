from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from enum import Enum
import time
import uuid


USER_AGENT_ID = "user"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


class AgentStatus(str, Enum):
    """Agent turn status"""
    IDLE = "idle"
    THINKING = "thinking"
    SPEAKING = "speaking"


class SessionPhase(str, Enum):
    """Scheduler phase of a conversation"""
    IDLE = "idle"
    ACTIVE = "active"
    PAUSED = "paused"


class Agent(BaseModel):
    """A conversational participant with a fixed persona"""
    id: str = Field(description="Unique agent identifier")
    name: str = Field(description="Display name used in rendered history")
    role: str = Field(description="Short role description")
    system_prompt: str = Field(description="Persona instructions sent as the system prompt")
    model: str = Field(default="llama3.2:latest", description="Backend model id for this agent")
    status: AgentStatus = Field(default=AgentStatus.IDLE)

    def update_status(self, status: AgentStatus):
        """Update agent status"""
        self.status = status


class Message(BaseModel):
    """A committed conversation message, never mutated after creation"""
    id: str = Field(default_factory=new_id)
    agent_id: str = Field(description="Speaking agent id or the reserved user id")
    content: str
    thought_process: Optional[str] = Field(None, description="Reasoning segment split from the visible content")
    timestamp: int = Field(default_factory=now_ms)

    model_config = {"frozen": True}

    @property
    def is_user(self) -> bool:
        return self.agent_id == USER_AGENT_ID


class ChatSession(BaseModel):
    """A conversation with its ordered message log"""
    id: str = Field(default_factory=lambda: str(now_ms()))
    name: str = Field(default="New Chat")
    topic: str = Field(default="")
    messages: List[Message] = Field(default_factory=list)
    sandbox_id: Optional[str] = Field(None, description="Container id of the session sandbox")
    last_modified: int = Field(default_factory=now_ms)

    def set_topic(self, topic: str):
        """Set the discussion topic and derive the display name"""
        self.topic = topic
        self.name = topic or "New Chat"
        self.touch()

    def append_message(self, message: Message):
        """Append a message, keeping timestamps monotonic within the session"""
        if self.messages and message.timestamp < self.messages[-1].timestamp:
            message = message.model_copy(update={"timestamp": self.messages[-1].timestamp})
        self.messages.append(message)
        self.touch()
        return message

    def recent_messages(self, limit: int) -> List[Message]:
        """Get the last `limit` messages"""
        if limit <= 0:
            return []
        return self.messages[-limit:]

    def touch(self):
        self.last_modified = now_ms()

    def to_record(self) -> Dict[str, Any]:
        """Serializable record for the persistence collaborator"""
        return self.model_dump(mode="json")

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ChatSession":
        return cls.model_validate(record)
