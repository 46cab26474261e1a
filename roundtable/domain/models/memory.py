from typing import List
from pydantic import BaseModel, Field
from enum import Enum

from .conversation import new_id, now_ms


class MemoryType(str, Enum):
    """Kind of long-term memory entry"""
    INSIGHT = "insight"
    TOPIC = "topic"
    LEARNING = "learning"
    DECISION = "decision"


class MemoryEntry(BaseModel):
    """A durable, cross-session fact or insight"""
    id: str = Field(default_factory=new_id)
    session_id: str
    timestamp: int = Field(default_factory=now_ms, description="Epoch milliseconds")
    type: MemoryType = Field(default=MemoryType.INSIGHT)
    content: str
    importance: float = Field(default=5.0, ge=1, le=10)
    tags: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def retention_score(self) -> float:
        """Pruning score; importance dominates, recency breaks ties"""
        return self.importance + self.timestamp / 10 ** 10


class SessionSummary(BaseModel):
    """Summary of a finished conversation, one per session"""
    session_id: str
    topic: str = ""
    summary: str
    key_insights: List[str] = Field(default_factory=list)
    timestamp: int = Field(default_factory=now_ms)


class GlobalMemory(BaseModel):
    """The persisted memory blob"""
    entries: List[MemoryEntry] = Field(default_factory=list)
    conversation_history: List[SessionSummary] = Field(default_factory=list)
    version: int = 1
