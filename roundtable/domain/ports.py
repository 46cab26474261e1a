from abc import ABC, abstractmethod
from typing import Dict, Any, Optional

from roundtable.domain.models.generation import GenerationOptions, GenerationResult


class GenerationClient(ABC):
    """Single-attempt access to the text generation backend"""

    @abstractmethod
    async def generate(
        self,
        model_id: str,
        system_prompt: str,
        user_prompt: str,
        options: Optional[GenerationOptions] = None
    ) -> GenerationResult:
        """Generate text; raises TransportError on any backend failure"""
        pass

    async def ping(self) -> bool:
        """Report whether the backend is reachable"""
        return True


class SearchProvider(ABC):
    """Web search collaborator"""

    @abstractmethod
    async def search(self, query: str) -> str:
        """Return a formatted summary of the top results; never raises"""
        pass


class MemoryPersistence(ABC):
    """Storage collaborator for the global memory blob"""

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """Load the saved blob, or None when nothing was saved"""
        pass

    @abstractmethod
    def save(self, data: Dict[str, Any]) -> None:
        """Persist the blob"""
        pass
