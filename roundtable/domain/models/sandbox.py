from typing import Optional
from pydantic import BaseModel, Field
from enum import Enum


class SandboxState(str, Enum):
    """Lifecycle state of a sandbox handle"""
    RUNNING = "running"
    DESTROYED = "destroyed"


class SandboxHandle(BaseModel):
    """Reference to the isolated environment owned by one session"""
    id: str = Field(description="Runtime container id")
    session_id: str
    network_enabled: bool = False
    state: SandboxState = Field(default=SandboxState.RUNNING)


class ExecutionResult(BaseModel):
    """Outcome of running code inside a sandbox"""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    execution_time_ms: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.error is None


class CodeBlock(BaseModel):
    """A fenced code block parsed from message content"""
    language: str
    code: str
    executed: bool = False
    result: Optional[ExecutionResult] = None
