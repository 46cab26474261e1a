from typing import Callable, Dict, List, Optional
import asyncio
import structlog

from roundtable.domain.context.context_manager import ContextManager
from roundtable.domain.context.memory.memory_store import MemoryStore
from roundtable.domain.context.memory.runtime_memory import RuntimeMemory
from roundtable.domain.context.memory.summarizer import SessionSummarizer
from roundtable.domain.context.repetition_guard import RepetitionGuard
from roundtable.domain.errors import SandboxError, SessionNotFoundError
from roundtable.domain.models.conversation import Agent, ChatSession, Message
from roundtable.domain.models.generation import GenerationOptions
from roundtable.domain.ports import GenerationClient, SearchProvider
from roundtable.domain.sandbox.sandbox_manager import SandboxManager
from roundtable.domain.streaming.streaming_handler import StreamingHandler
from roundtable.infrastructure.config.settings import GenerationConfig, SchedulerConfig
from roundtable.infrastructure.observability.logging import bind_session
from roundtable.domain.orchestration.agents import default_agents
from .retry import RetryPolicy
from .topic_refiner import TopicRefiner
from .turn_scheduler import TurnScheduler

logger = structlog.get_logger(__name__)


class ConversationManager:
    """Owns one TurnScheduler and one cycle-loop task per session"""

    def __init__(
        self,
        runtime_memory: RuntimeMemory,
        generation_client: GenerationClient,
        memory_store: Optional[MemoryStore] = None,
        search_provider: Optional[SearchProvider] = None,
        sandbox_manager: Optional[SandboxManager] = None,
        streaming_handler: Optional[StreamingHandler] = None,
        scheduler_config: Optional[SchedulerConfig] = None,
        generation_config: Optional[GenerationConfig] = None,
        agents_factory: Callable[[], List[Agent]] = default_agents,
        sleep=None
    ):
        self.runtime_memory = runtime_memory
        self.generation_client = generation_client
        self.memory_store = memory_store
        self.search_provider = search_provider
        self.sandbox_manager = sandbox_manager
        self.streaming_handler = streaming_handler or StreamingHandler()
        self.scheduler_config = scheduler_config or SchedulerConfig()
        self.generation_config = generation_config or GenerationConfig()
        self.agents_factory = agents_factory
        self.sleep = sleep or asyncio.sleep

        self.schedulers: Dict[str, TurnScheduler] = {}
        self.tasks: Dict[str, asyncio.Task] = {}
        self.task_epochs: Dict[str, int] = {}
        self._lock = asyncio.Lock()

        self.topic_refiner = TopicRefiner(generation_client, model=self.generation_config.refine_model)
        self.summarizer = (
            SessionSummarizer(generation_client, memory_store, model=self.generation_config.summary_model)
            if memory_store else None
        )

    def _build_scheduler(self, session: ChatSession) -> TurnScheduler:
        config = self.scheduler_config
        generation = self.generation_config

        return TurnScheduler(
            session=session,
            agents=self.agents_factory(),
            generation_client=self.generation_client,
            context_manager=ContextManager(self.memory_store, history_window=config.history_window),
            memory_store=self.memory_store,
            repetition_guard=RepetitionGuard(config.repetition_threshold, config.repetition_window),
            retry_policy=RetryPolicy(config.max_attempts, config.backoff_base, sleep=self.sleep),
            search_provider=self.search_provider,
            topic_refiner=self.topic_refiner,
            summarizer=self.summarizer,
            sandbox_manager=self.sandbox_manager,
            streaming_handler=self.streaming_handler,
            options=GenerationOptions(
                temperature=generation.temperature,
                top_p=generation.top_p,
                num_ctx=generation.num_ctx,
                repeat_penalty=generation.repeat_penalty
            ),
            speaking_delay=config.speaking_delay,
            tick_interval=config.tick_interval,
            execute_code=config.execute_code,
            sleep=self.sleep
        )

    async def get_scheduler(self, session_id: str) -> TurnScheduler:
        """Scheduler for a session, created on first use"""

        session = await self.runtime_memory.get_session(session_id)

        async with self._lock:
            scheduler = self.schedulers.get(session_id)
            if scheduler is None or scheduler.session is not session:
                scheduler = self._build_scheduler(session)
                self.schedulers[session_id] = scheduler
            return scheduler

    async def start(self, session_id: str, topic: Optional[str] = None) -> TurnScheduler:
        """Activate a session and spawn its cycle loop"""

        scheduler = await self.get_scheduler(session_id)
        await scheduler.start(topic)

        task = self.tasks.get(session_id)
        epoch = scheduler.state.run_epoch
        if task is None or task.done():
            self.tasks[session_id] = asyncio.create_task(self._run(scheduler))
        elif self.task_epochs.get(session_id) != epoch:
            # The old loop still has a stale cycle in flight and exits after it
            self.tasks[session_id] = asyncio.create_task(self._run(scheduler, previous=task))
        self.task_epochs[session_id] = epoch

        return scheduler

    async def _run(self, scheduler: TurnScheduler, previous: Optional[asyncio.Task] = None):
        bind_session(scheduler.session_id)
        if previous is not None:
            await previous

        epoch = scheduler.state.run_epoch
        try:
            await scheduler.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Cycle loop crashed", session_id=scheduler.session_id)
            if scheduler.state.run_epoch == epoch:
                await scheduler.stop()

    async def stop(self, session_id: str) -> TurnScheduler:
        """Pause a session; its loop exits after any in-flight cycle"""

        scheduler = await self.get_scheduler(session_id)
        await scheduler.stop()
        return scheduler

    async def inject(self, session_id: str, content: str) -> Message:
        scheduler = await self.get_scheduler(session_id)
        return await scheduler.inject(content)

    async def set_topic(self, session_id: str, topic: str) -> ChatSession:
        session = await self.runtime_memory.get_session(session_id)
        session.set_topic(topic.strip())
        return session

    async def delete_session(self, session_id: str) -> Optional[ChatSession]:
        """Stop, tear down and forget a session; returns a replacement if one was created"""

        await self._teardown(session_id)
        return await self.runtime_memory.delete_session(session_id)

    async def _teardown(self, session_id: str):
        scheduler = self.schedulers.pop(session_id, None)
        if scheduler:
            await scheduler.stop()

        self.task_epochs.pop(session_id, None)
        task = self.tasks.pop(session_id, None)
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if self.sandbox_manager and session_id in self.sandbox_manager.handles:
            try:
                await self.sandbox_manager.destroy(self.sandbox_manager.handles[session_id])
            except SandboxError as e:
                logger.warning("Failed to destroy session sandbox", session_id=session_id, error=str(e))

    def active_count(self) -> int:
        return sum(1 for scheduler in self.schedulers.values() if scheduler.state.active)

    def snapshot(self, session_id: str) -> Optional[Dict]:
        scheduler = self.schedulers.get(session_id)
        return scheduler.snapshot() if scheduler else None

    async def shutdown(self):
        """Stop every session and wait for loops and pending summaries"""

        for session_id in list(self.schedulers.keys()):
            try:
                await self.stop(session_id)
            except SessionNotFoundError:
                continue

        tasks = [task for task in self.tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        summaries = [s.summary_task for s in self.schedulers.values() if s.summary_task]

        await asyncio.gather(*tasks, *summaries, return_exceptions=True)
        self.tasks.clear()
        self.task_epochs.clear()
        logger.info("Conversation manager shut down")
