from typing import Dict, List, Any, Optional
import asyncio
import structlog

from roundtable.domain.context.memory_ranker import rank_memories
from roundtable.domain.context.response_parser import extract_emphasized
from roundtable.domain.models.conversation import Agent, Message
from roundtable.domain.models.memory import GlobalMemory, MemoryEntry, MemoryType, SessionSummary
from roundtable.domain.ports import MemoryPersistence

logger = structlog.get_logger(__name__)


MAX_MEMORIES = 1000
INSIGHT_IMPORTANCE = 5.0


class MemoryStore:
    """Process-wide, append-only long-term memory log"""

    def __init__(
        self,
        persistence: Optional[MemoryPersistence] = None,
        max_memories: int = MAX_MEMORIES
    ):
        self.persistence = persistence
        self.max_memories = max_memories
        self.memory = self._load()
        self._lock = asyncio.Lock()

    def _load(self) -> GlobalMemory:
        """Load the saved blob, starting empty when absent or unreadable"""

        if not self.persistence:
            return GlobalMemory()

        try:
            data = self.persistence.load()
        except OSError as e:
            logger.error("Failed to load memory", error=str(e))
            return GlobalMemory()

        if not data:
            return GlobalMemory()

        try:
            return GlobalMemory.model_validate(data)
        except ValueError as e:
            logger.error("Discarding unreadable memory blob", error=str(e))
            return GlobalMemory()

    def _save(self):
        if not self.persistence:
            return
        try:
            self.persistence.save(self.memory.model_dump(mode="json"))
        except OSError as e:
            logger.error("Failed to save memory", error=str(e))

    async def add_memory(self, entry: MemoryEntry) -> None:
        """Append an entry, pruning past the ceiling"""

        async with self._lock:
            self.memory.entries.append(entry)
            self._prune()
            self._save()

    async def add_insights_from_message(
        self,
        message: Message,
        agent: Agent,
        session_id: str,
        topic: str
    ) -> List[MemoryEntry]:
        """Store each emphasized fragment of a committed message as an insight"""

        fragments = extract_emphasized(message.content)
        if not fragments:
            return []

        tags = [tag for tag in (agent.name, topic) if tag]
        entries = [
            MemoryEntry(
                session_id=session_id,
                timestamp=message.timestamp,
                type=MemoryType.INSIGHT,
                content=fragment,
                importance=INSIGHT_IMPORTANCE,
                tags=tags
            )
            for fragment in fragments
        ]

        async with self._lock:
            self.memory.entries.extend(entries)
            self._prune()
            self._save()

        logger.debug("Stored insights", session_id=session_id, agent=agent.name, count=len(entries))
        return entries

    async def add_session_summary(
        self,
        session_id: str,
        topic: str,
        summary: str,
        insights: List[str]
    ) -> SessionSummary:
        """Record a session summary, replacing any earlier one for the session"""

        record = SessionSummary(
            session_id=session_id,
            topic=topic,
            summary=summary,
            key_insights=insights
        )

        async with self._lock:
            history = self.memory.conversation_history
            for index, existing in enumerate(history):
                if existing.session_id == session_id:
                    history[index] = record
                    break
            else:
                history.append(record)
            self._save()

        return record

    async def get_relevant_memories(self, context: str, limit: int = 5) -> List[MemoryEntry]:
        """Entries most relevant to the context"""

        async with self._lock:
            entries = list(self.memory.entries)

        return [entry for entry, _ in rank_memories(entries, context, limit)]

    async def get_recent_summaries(self, limit: int = 3) -> List[SessionSummary]:
        """Most recent session summaries regardless of topic"""

        async with self._lock:
            history = sorted(self.memory.conversation_history, key=lambda h: h.timestamp, reverse=True)

        return history[:limit]

    async def get_memory_prompt(self, topic: str) -> str:
        """Render relevant memories and recent summaries as prompt context"""

        relevant = await self.get_relevant_memories(topic, 5)
        recent = await self.get_recent_summaries(3)

        prompt = ""

        if relevant:
            prompt += "Relevant Past Insights:\n"
            for entry in relevant:
                prompt += f"- {entry.content} (Tags: {', '.join(entry.tags)})\n"
            prompt += "\n"

        if recent:
            lines = [
                f"- Topic: {h.topic}\n  Summary: {h.summary}\n"
                for h in recent if h.topic and h.summary
            ]
            if lines:
                prompt += "Recent Conversation Context:\n" + "".join(lines)

        return prompt

    async def get_all_memories(self) -> List[MemoryEntry]:
        async with self._lock:
            return list(self.memory.entries)

    async def get_stats(self) -> Dict[str, Any]:
        """Get memory statistics"""

        async with self._lock:
            return {
                "total_entries": len(self.memory.entries),
                "sessions_summarized": len(self.memory.conversation_history),
                "max_entries": self.max_memories
            }

    async def clear_memory(self) -> None:
        async with self._lock:
            self.memory = GlobalMemory()
            self._save()

    def _prune(self):
        """Keep only the top entries by importance plus a small recency term"""

        if len(self.memory.entries) <= self.max_memories:
            return

        dropped = len(self.memory.entries) - self.max_memories
        self.memory.entries.sort(key=lambda entry: entry.retention_score, reverse=True)
        self.memory.entries = self.memory.entries[:self.max_memories]

        logger.info("Pruned memories", dropped=dropped, kept=self.max_memories)
