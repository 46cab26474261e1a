"""
Error taxonomy for the conversation core.

Generation and sandbox failures are caught at the scheduler and sandbox
manager boundaries and turned into an idle reset or a structured
ExecutionResult; these classes are what those boundaries catch.
"""
from typing import Optional


class RoundtableError(Exception):
    """Base class for all domain errors"""


class TransportError(RoundtableError):
    """Generation or search backend could not be reached or returned an error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(RoundtableError):
    """Backend returned text where structured JSON was required"""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class SessionNotFoundError(RoundtableError):
    """No session with the given id"""


class SandboxError(RoundtableError):
    """A sandbox operation failed"""


class SandboxUnavailableError(SandboxError):
    """No running environment for the given handle"""


class ExecutionTimeoutError(SandboxError):
    """Sandbox run exceeded its wall-clock limit"""

    def __init__(self, timeout_seconds: float):
        super().__init__(f"Execution timed out after {timeout_seconds:g}s")
        self.timeout_seconds = timeout_seconds


class InvalidPathError(SandboxError):
    """Path escapes the sandbox working directory"""
