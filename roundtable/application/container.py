from typing import Optional
from pathlib import Path
import structlog

from roundtable.application.websocket.connection_manager import ConnectionManager
from roundtable.application.websocket.schema.events import EventType
from roundtable.domain.context.memory.memory_store import MemoryStore
from roundtable.domain.context.memory.runtime_memory import RuntimeMemory
from roundtable.domain.orchestration.core.conversation_manager import ConversationManager
from roundtable.domain.ports import GenerationClient, MemoryPersistence, SearchProvider
from roundtable.domain.sandbox.sandbox_manager import SandboxManager
from roundtable.domain.streaming.streaming_handler import StreamingHandler
from roundtable.infrastructure.config.settings import Settings
from roundtable.infrastructure.llm.ollama_client import OllamaGenerationClient
from roundtable.infrastructure.persistence.json_persistence import InMemoryPersistence, JsonFilePersistence
from roundtable.infrastructure.sandbox.docker_runtime import DockerSdkRuntime
from roundtable.infrastructure.search.web_search import DuckDuckGoSearchProvider

logger = structlog.get_logger(__name__)


class Container:
    """Wires the application's long-lived collaborators together"""

    def __init__(
        self,
        settings: Settings,
        generation_client: GenerationClient,
        search_provider: Optional[SearchProvider] = None,
        sandbox_manager: Optional[SandboxManager] = None,
        memory_persistence: Optional[MemoryPersistence] = None,
        session_persistence: Optional[MemoryPersistence] = None,
        sleep=None
    ):
        self.settings = settings
        self.generation_client = generation_client
        self.search_provider = search_provider
        self.sandbox_manager = sandbox_manager
        self.session_persistence = session_persistence or InMemoryPersistence()

        self.connection_manager = ConnectionManager()
        self.streaming_handler = StreamingHandler(self.connection_manager)
        self.runtime_memory = RuntimeMemory()
        self.memory_store = MemoryStore(
            persistence=memory_persistence or InMemoryPersistence(),
            max_memories=settings.memory.max_memories
        )
        self.conversation_manager = ConversationManager(
            runtime_memory=self.runtime_memory,
            generation_client=generation_client,
            memory_store=self.memory_store,
            search_provider=search_provider,
            sandbox_manager=sandbox_manager,
            streaming_handler=self.streaming_handler,
            scheduler_config=settings.scheduler,
            generation_config=settings.generation,
            sleep=sleep
        )

        self.streaming_handler.register_event_handler(EventType.MESSAGE, self._on_session_changed)
        self.streaming_handler.register_event_handler(EventType.SESSION_STATUS, self._on_session_changed)

    async def _on_session_changed(self, session_id: str, event):
        await self.save_sessions()

    async def load_sessions(self) -> int:
        """Restore saved sessions and make sure at least one exists"""

        data = self.session_persistence.load()
        count = 0
        if data and data.get("sessions"):
            count = await self.runtime_memory.import_sessions(data["sessions"])
        await self.runtime_memory.ensure_session()
        logger.info("Sessions loaded", count=count)
        return count

    async def save_sessions(self):
        records = await self.runtime_memory.export_sessions()
        try:
            self.session_persistence.save({"sessions": records})
        except OSError as e:
            logger.error("Failed to save sessions", error=str(e))

    async def shutdown(self):
        await self.conversation_manager.shutdown()
        await self.save_sessions()

        if self.sandbox_manager:
            destroyed = await self.sandbox_manager.destroy_all()
            logger.info("Sandboxes destroyed", count=destroyed)

        await self.connection_manager.close_all()

        close = getattr(self.generation_client, "close", None)
        if close:
            await close()


def build_container(settings: Settings) -> Container:
    """Production wiring from settings"""

    memory_persistence: Optional[MemoryPersistence] = None
    session_persistence: Optional[MemoryPersistence] = None
    if settings.memory.storage_dir:
        storage = Path(settings.memory.storage_dir)
        memory_persistence = JsonFilePersistence(str(storage / "memory.json"))
        session_persistence = JsonFilePersistence(str(storage / "sessions.json"))

    sandbox_manager = None
    if settings.sandbox.enabled:
        sandbox_manager = SandboxManager(
            DockerSdkRuntime(),
            image=settings.sandbox.image,
            build_context=settings.sandbox.build_context,
            memory_limit_bytes=settings.sandbox.memory_limit_bytes,
            execution_timeout=settings.sandbox.execution_timeout,
            working_dir=settings.sandbox.working_dir
        )

    return Container(
        settings=settings,
        generation_client=OllamaGenerationClient(
            settings.generation.base_url,
            timeout=settings.generation.request_timeout
        ),
        search_provider=DuckDuckGoSearchProvider(),
        sandbox_manager=sandbox_manager,
        memory_persistence=memory_persistence,
        session_persistence=session_persistence
    )
