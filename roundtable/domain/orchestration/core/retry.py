from typing import Awaitable, Callable, Optional, TypeVar
import asyncio
import structlog

from roundtable.domain.errors import TransportError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class GenerationCancelled(Exception):
    """The owning session stopped before or during a retry sequence"""


class RetryPolicy:
    """Bounded retry with exponential backoff: base, 2*base, 4*base, ..."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep or asyncio.sleep

    def backoff(self, attempt: int) -> float:
        """Delay after the zero-based `attempt` failed"""
        return self.base_delay * (2 ** attempt)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        should_continue: Callable[[], bool] = lambda: True,
        description: str = "operation"
    ) -> T:
        """Await `operation` until it succeeds or attempts run out.

        `should_continue` is checked before every attempt; a False answer
        raises GenerationCancelled. The last TransportError is re-raised
        once every attempt has failed.
        """
        last_error: Optional[TransportError] = None

        for attempt in range(self.max_attempts):
            if not should_continue():
                raise GenerationCancelled(description)

            try:
                return await operation()
            except TransportError as e:
                last_error = e
                delay = self.backoff(attempt)
                logger.warning(
                    "Attempt failed",
                    operation=description,
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    retry_in=delay,
                    error=str(e)
                )
                await self.sleep(delay)

        raise last_error
