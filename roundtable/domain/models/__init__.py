from .conversation import (
    Agent, AgentStatus, ChatSession, Message, SessionPhase, USER_AGENT_ID, new_id, now_ms
)
from .generation import ConversationMetrics, GenerationOptions, GenerationResult
from .memory import GlobalMemory, MemoryEntry, MemoryType, SessionSummary
from .sandbox import CodeBlock, ExecutionResult, SandboxHandle, SandboxState
