from typing import Dict, List, Optional
import structlog

from roundtable.domain.context.response_parser import parse_json_object
from roundtable.domain.errors import MalformedResponseError, TransportError
from roundtable.domain.models.conversation import Agent, ChatSession
from roundtable.domain.models.generation import GenerationOptions
from roundtable.domain.models.memory import SessionSummary
from roundtable.domain.ports import GenerationClient
from .memory_store import MemoryStore

logger = structlog.get_logger(__name__)


MIN_MESSAGES_FOR_SUMMARY = 5
SUMMARY_WINDOW = 20
MESSAGE_EXCERPT_CHARS = 300
FALLBACK_SUMMARY_CHARS = 500

SUMMARY_SYSTEM_PROMPT = "You summarize multi-agent discussions. Reply with JSON only."


class SessionSummarizer:
    """Produces the long-term summary record for a stopped session"""

    def __init__(
        self,
        generation_client: GenerationClient,
        memory_store: MemoryStore,
        model: str = "gemma2:9b"
    ):
        self.generation_client = generation_client
        self.memory_store = memory_store
        self.model = model
        self.options = GenerationOptions(temperature=0.3, num_ctx=4096, format="json")

    def build_prompt(self, session: ChatSession, agents: List[Agent]) -> str:
        names: Dict[str, str] = {agent.id: agent.name for agent in agents}
        transcript = "\n".join(
            f"{names.get(m.agent_id, m.agent_id)}: {m.content[:MESSAGE_EXCERPT_CHARS]}"
            for m in session.messages[-SUMMARY_WINDOW:]
        )

        return (
            "Analyze the following conversation and provide a concise summary and key insights.\n\n"
            f"Topic: {session.topic or 'General Discussion'}\n\n"
            f"Conversation:\n{transcript}\n\n"
            "INSTRUCTIONS:\n"
            "1. Provide a 2-3 sentence summary of the main discussion points.\n"
            "2. Extract 3-5 key insights, facts, or decisions made (bullet points).\n"
            "3. Format the output as JSON.\n\n"
            'Example Output Format:\n{"summary": "The agents discussed the implications of...", '
            '"insights": ["Insight 1", "Insight 2"]}\n\n'
            "RESPONSE (JSON ONLY):"
        )

    def parse_summary(self, raw_text: str) -> Dict[str, object]:
        """Extract summary and insights, falling back to truncated raw text"""

        try:
            parsed = parse_json_object(raw_text)
            summary = parsed.get("summary")
            if not isinstance(summary, str) or not summary.strip():
                raise MalformedResponseError("Summary field missing", raw_text=raw_text)
        except MalformedResponseError as e:
            logger.warning("Summary was not valid JSON, using raw text", error=str(e))
            return {"summary": raw_text.strip()[:FALLBACK_SUMMARY_CHARS], "insights": []}

        insights = parsed.get("insights") or []
        if not isinstance(insights, list):
            insights = [insights]

        return {
            "summary": summary.strip(),
            "insights": [str(item).strip() for item in insights if str(item).strip()]
        }

    async def summarize(self, session: ChatSession, agents: List[Agent]) -> Optional[SessionSummary]:
        """Summarize the session and store the record; None when skipped or failed"""

        if len(session.messages) <= MIN_MESSAGES_FOR_SUMMARY:
            return None

        try:
            result = await self.generation_client.generate(
                self.model,
                SUMMARY_SYSTEM_PROMPT,
                self.build_prompt(session, agents),
                self.options
            )
        except TransportError as e:
            logger.error("Session summarization failed", session_id=session.id, error=str(e))
            return None

        parsed = self.parse_summary(result.text)
        if not parsed["summary"]:
            return None

        record = await self.memory_store.add_session_summary(
            session.id,
            session.topic,
            parsed["summary"],
            parsed["insights"]
        )

        logger.info("Session summarized", session_id=session.id, insights=len(record.key_insights))
        return record
