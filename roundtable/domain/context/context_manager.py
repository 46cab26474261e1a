from typing import Dict, List, Optional
import structlog

from roundtable.domain.models.conversation import Agent, ChatSession, Message, USER_AGENT_ID
from .memory.memory_store import MemoryStore
from .repetition_guard import extract_discussed_topics

logger = structlog.get_logger(__name__)


HISTORY_WINDOW = 15

TURN_INSTRUCTIONS = (
    "INSTRUCTIONS:\n"
    "1. Do NOT summarize the previous messages in your final response.\n"
    "2. Your goal is to ADD NEW information or a COUNTER-ARGUMENT.\n"
    "3. If you agree, explain WHY with a NEW example. If you disagree, explain WHY with logic.\n"
    "4. First, THINK about what has been said inside <think> tags. Identify a missing perspective.\n"
    "5. CHECK: Have I or others said this before? If yes, say something DIFFERENT.\n"
    "6. Then, provide your response outside the tags. Be concise and use bold for key concepts.\n"
    "Your turn to speak."
)


def render_history(messages: List[Message], agents: List[Agent]) -> str:
    """Render messages as `AgentName: content` blocks"""

    names: Dict[str, str] = {agent.id: agent.name for agent in agents}
    names[USER_AGENT_ID] = "User"

    return "\n\n".join(
        f"{names.get(message.agent_id, 'Unknown')}: {message.content}"
        for message in messages
    )


class ContextManager:
    """Assembles the user prompt for an agent turn from multiple sources"""

    def __init__(self, memory_store: Optional[MemoryStore] = None, history_window: int = HISTORY_WINDOW):
        self.memory_store = memory_store
        self.history_window = history_window

    async def build_turn_prompt(
        self,
        session: ChatSession,
        agents: List[Agent],
        search_context: str = ""
    ) -> str:
        """Build the prompt for the next agent turn"""

        topic = session.topic
        prompt = f"Topic: {topic}\n\n"

        if search_context:
            prompt += f"Context from Internet Search:\n{search_context}\n\n"

        # Long-term memory relevant to the topic
        if self.memory_store:
            memory_prompt = await self.memory_store.get_memory_prompt(topic)
            if memory_prompt:
                prompt += f"Long-Term Memory:\n{memory_prompt}\n"

        discussed = extract_discussed_topics(session.messages)
        if discussed:
            prompt += (
                "Topics already discussed (do NOT repeat these points, build beyond them): "
                f"{', '.join(discussed)}\n\n"
            )

        history = render_history(session.recent_messages(self.history_window), agents)
        prompt += f"Conversation History:\n{history}\n\n"
        prompt += TURN_INSTRUCTIONS

        logger.debug(
            "Built turn prompt",
            session_id=session.id,
            prompt_chars=len(prompt),
            discussed_topics=len(discussed)
        )

        return prompt
