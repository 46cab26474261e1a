from typing import Dict, Any, List, Optional, Callable, Awaitable
from pydantic import BaseModel, Field
import asyncio
import time
import structlog

from roundtable.domain.context.context_manager import ContextManager
from roundtable.domain.context.memory.memory_store import MemoryStore
from roundtable.domain.context.memory.summarizer import SessionSummarizer
from roundtable.domain.context.repetition_guard import RepetitionGuard, extract_discussed_topics
from roundtable.domain.context.response_parser import extract_code_blocks, split_thought
from roundtable.domain.errors import SandboxError, TransportError
from roundtable.domain.models.conversation import (
    Agent, AgentStatus, ChatSession, Message, SessionPhase, USER_AGENT_ID
)
from roundtable.domain.models.generation import GenerationOptions
from roundtable.domain.models.memory import SessionSummary
from roundtable.domain.models.sandbox import CodeBlock
from roundtable.domain.ports import GenerationClient, SearchProvider
from roundtable.domain.sandbox.sandbox_manager import LANGUAGE_RUNNERS, SandboxManager
from roundtable.domain.streaming.streaming_handler import StreamingHandler
from roundtable.infrastructure.observability.logging import agent_logger
from .retry import GenerationCancelled, RetryPolicy
from .topic_refiner import TopicRefiner

logger = structlog.get_logger(__name__)


SPEAKING_DELAY_SECONDS = 2.0
TICK_INTERVAL_SECONDS = 1.0
MIN_MESSAGES_FOR_SUMMARY = 5


class SchedulerState(BaseModel):
    """Per-session scheduling flags"""
    phase: SessionPhase = SessionPhase.IDLE
    active: bool = Field(default=False, description="Liveness flag checked around generation calls")
    cycle_in_flight: bool = Field(default=False, description="Single-flight guard for cycle()")
    turn_index: int = 0
    run_epoch: int = Field(default=0, description="Bumped on every stop so late responses can be told apart")


class TurnScheduler:
    """Drives round-robin agent turns for one chat session"""

    def __init__(
        self,
        session: ChatSession,
        agents: List[Agent],
        generation_client: GenerationClient,
        context_manager: Optional[ContextManager] = None,
        memory_store: Optional[MemoryStore] = None,
        repetition_guard: Optional[RepetitionGuard] = None,
        retry_policy: Optional[RetryPolicy] = None,
        search_provider: Optional[SearchProvider] = None,
        topic_refiner: Optional[TopicRefiner] = None,
        summarizer: Optional[SessionSummarizer] = None,
        sandbox_manager: Optional[SandboxManager] = None,
        streaming_handler: Optional[StreamingHandler] = None,
        options: Optional[GenerationOptions] = None,
        speaking_delay: float = SPEAKING_DELAY_SECONDS,
        tick_interval: float = TICK_INTERVAL_SECONDS,
        execute_code: bool = False,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None
    ):
        if not agents:
            raise ValueError("A conversation needs at least one agent")

        self.session = session
        self.agents = agents
        self.generation_client = generation_client
        self.memory_store = memory_store
        self.context_manager = context_manager or ContextManager(memory_store)
        self.repetition_guard = repetition_guard or RepetitionGuard()
        self.sleep = sleep or asyncio.sleep
        self.retry_policy = retry_policy or RetryPolicy(sleep=self.sleep)
        self.search_provider = search_provider
        self.topic_refiner = topic_refiner
        self.summarizer = summarizer
        self.sandbox_manager = sandbox_manager
        self.streaming_handler = streaming_handler or StreamingHandler()
        self.options = options or GenerationOptions(temperature=0.7)
        self.speaking_delay = speaking_delay
        self.tick_interval = tick_interval
        self.execute_code = execute_code

        self.state = SchedulerState()
        self.search_context = ""
        self.summary_task: Optional[asyncio.Task] = None

    @property
    def session_id(self) -> str:
        return self.session.id

    def _is_live(self, epoch: int) -> bool:
        return self.state.active and self.state.run_epoch == epoch

    async def _set_phase(self, phase: SessionPhase, reason: Optional[str] = None):
        previous = self.state.phase
        self.state.phase = phase
        agent_logger.log_state_transition(self.session_id, previous.value, phase.value, reason)
        await self.streaming_handler.session_phase_changed(
            self.session_id, phase, self.session.topic, self.state.turn_index
        )

    async def _set_status(self, agent: Agent, status: AgentStatus):
        if agent.status == status:
            return
        agent.update_status(status)
        await self.streaming_handler.agent_status_changed(self.session_id, agent)

    async def start(self, topic: Optional[str] = None):
        """Activate the session, preparing topic and search context for a fresh one"""

        if topic is not None and topic.strip():
            self.session.set_topic(topic.strip())

        if not self.session.topic.strip():
            raise ValueError("A topic is required to start the conversation")

        if self.state.active:
            return

        if not self.session.messages:
            if self.topic_refiner:
                refined = await self.topic_refiner.refine(self.session.topic)
                if refined != self.session.topic:
                    logger.info("Topic refined", session_id=self.session_id, topic=refined)
                    self.session.set_topic(refined)

            if self.search_provider:
                self.search_context = await self.search_provider.search(self.session.topic)

            self.state.turn_index = 0

        self.state.active = True
        await self._set_phase(SessionPhase.ACTIVE, reason="start")

    async def stop(self):
        """Pause the session; an outstanding response will be discarded"""

        was_active = self.state.active
        self.state.active = False
        self.state.run_epoch += 1

        for agent in self.agents:
            await self._set_status(agent, AgentStatus.IDLE)

        if was_active or self.state.phase != SessionPhase.PAUSED:
            await self._set_phase(SessionPhase.PAUSED, reason="stop")

        if self.summarizer and len(self.session.messages) > MIN_MESSAGES_FOR_SUMMARY:
            self.summary_task = asyncio.create_task(self._summarize())

    async def _summarize(self) -> Optional[SessionSummary]:
        try:
            return await self.summarizer.summarize(self.session, self.agents)
        except Exception:
            logger.exception("Background summarization crashed", session_id=self.session_id)
            return None

    async def inject(self, content: str) -> Message:
        """Append a user message without consuming a turn"""

        content = (content or "").strip()
        if not content:
            raise ValueError("Message content must not be empty")

        message = self.session.append_message(Message(agent_id=USER_AGENT_ID, content=content))
        await self.streaming_handler.message_committed(self.session_id, message)

        logger.info("User message injected", session_id=self.session_id, message_id=message.id)
        return message

    async def cycle(self) -> Optional[Message]:
        """Run one turn; returns the committed message or None"""

        # Test-and-set with no await in between
        if not self.state.active or self.state.cycle_in_flight:
            return None
        self.state.cycle_in_flight = True

        epoch = self.state.run_epoch
        agent = self.agents[self.state.turn_index % len(self.agents)]

        try:
            return await self._run_turn(agent, epoch)
        finally:
            await self._set_status(agent, AgentStatus.IDLE)
            self.state.cycle_in_flight = False

    async def _generate(self, agent: Agent, prompt: str) -> str:
        result = await self.generation_client.generate(agent.model, agent.system_prompt, prompt, self.options)
        if not result.text.strip():
            raise TransportError("Generation backend returned an empty response")
        return result.text

    async def _run_turn(self, agent: Agent, epoch: int) -> Optional[Message]:
        started = time.monotonic()
        turn_index = self.state.turn_index

        await self._set_status(agent, AgentStatus.THINKING)

        prompt = await self.context_manager.build_turn_prompt(self.session, self.agents, self.search_context)

        try:
            raw = await self.retry_policy.run(
                lambda: self._generate(agent, prompt),
                should_continue=lambda: self._is_live(epoch),
                description=f"turn:{agent.name}"
            )
        except GenerationCancelled:
            logger.info("Turn cancelled before generation", session_id=self.session_id, agent=agent.name)
            return None
        except TransportError as e:
            agent_logger.log_turn(
                self.session_id, agent.name, turn_index, success=False,
                duration_ms=(time.monotonic() - started) * 1000, error=str(e)
            )
            await self.streaming_handler.turn_failed(self.session_id, agent, str(e))
            return None

        if not self._is_live(epoch):
            logger.info("Discarding response from stopped session", session_id=self.session_id, agent=agent.name)
            return None

        content, thought = split_thought(raw)

        regenerated = False
        if self.repetition_guard.is_repeat(content, self.session.messages):
            similarity = self.repetition_guard.max_similarity(content, self.session.messages)
            logger.info(
                "Repetitive response, regenerating",
                session_id=self.session_id,
                agent=agent.name,
                similarity=round(similarity, 3)
            )
            directive = self.repetition_guard.intensified_directive(
                similarity, extract_discussed_topics(self.session.messages)
            )
            try:
                content, thought = split_thought(await self._generate(agent, prompt + directive))
                regenerated = True
            except TransportError as e:
                logger.warning("Regeneration failed, keeping first response", session_id=self.session_id, error=str(e))

            if not self._is_live(epoch):
                logger.info("Discarding regenerated response from stopped session", session_id=self.session_id)
                return None

        message = self.session.append_message(
            Message(agent_id=agent.id, content=content, thought_process=thought or None)
        )
        await self.streaming_handler.message_committed(self.session_id, message)

        if self.memory_store:
            await self.memory_store.add_insights_from_message(message, agent, self.session_id, self.session.topic)

        if self.execute_code and self.sandbox_manager:
            await self._execute_code_blocks(message)

        await self._set_status(agent, AgentStatus.SPEAKING)
        await self.sleep(self.speaking_delay)

        # A committed message always moves the turn on, even if stopped meanwhile
        self.state.turn_index = (turn_index + 1) % len(self.agents)

        agent_logger.log_turn(
            self.session_id, agent.name, turn_index, success=True,
            duration_ms=(time.monotonic() - started) * 1000, regenerated=regenerated
        )
        return message

    async def _execute_code_blocks(self, message: Message) -> List[CodeBlock]:
        """Run JS/TS blocks from a message in the session sandbox and publish the results"""

        blocks = [b for b in extract_code_blocks(message.content) if b.language in LANGUAGE_RUNNERS]
        if not blocks:
            return []

        try:
            handle = await self.sandbox_manager.ensure(self.session_id)
        except SandboxError as e:
            logger.warning("Sandbox unavailable for code execution", session_id=self.session_id, error=str(e))
            return []

        self.session.sandbox_id = handle.id

        executed = []
        for block in blocks:
            try:
                result = await self.sandbox_manager.execute(handle, block.code, block.language)
            except SandboxError as e:
                logger.warning("Code execution failed", session_id=self.session_id, error=str(e))
                break
            block = block.model_copy(update={"executed": True, "result": result})
            executed.append(block)
            await self.streaming_handler.code_executed(self.session_id, message.id, block)

        return executed

    async def run(self):
        """Cycle until the session is stopped"""

        epoch = self.state.run_epoch
        while self._is_live(epoch):
            await self.cycle()
            if not self._is_live(epoch):
                break
            await self.sleep(self.tick_interval)

    def snapshot(self) -> Dict[str, Any]:
        """Plain view of scheduler state for observers"""
        return {
            "session_id": self.session_id,
            "phase": self.state.phase.value,
            "active": self.state.active,
            "cycle_in_flight": self.state.cycle_in_flight,
            "turn_index": self.state.turn_index,
            "message_count": len(self.session.messages),
            "agents": [
                {"id": agent.id, "name": agent.name, "status": agent.status.value}
                for agent in self.agents
            ],
        }
