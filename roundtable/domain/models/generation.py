from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field


class GenerationOptions(BaseModel):
    """Sampling options passed through to the generation backend"""
    temperature: float = 1.0
    top_p: float = 0.9
    num_ctx: int = 4096
    repeat_penalty: float = 1.5
    format: Optional[str] = Field(None, description="Set to 'json' to request structured output")

    def to_backend_options(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"format"})


class GenerationResult(BaseModel):
    """Raw text returned by a single generation call"""
    text: str


class ConversationMetrics(BaseModel):
    """Heuristic health indicators for a conversation"""
    repetition_score: float = Field(0.0, ge=0, le=100, description="Higher means more repetitive")
    diversity_score: float = Field(0.0, ge=0, le=100, description="Higher means more diverse")
    topics_discussed: List[str] = Field(default_factory=list)
    message_count: int = 0
