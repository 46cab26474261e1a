from typing import Optional
import structlog

from roundtable.domain.context.response_parser import split_thought
from roundtable.domain.errors import TransportError
from roundtable.domain.models.generation import GenerationOptions
from roundtable.domain.ports import GenerationClient

logger = structlog.get_logger(__name__)


MAX_TOPIC_CHARS = 200

REFINE_SYSTEM_PROMPT = (
    "You turn rough user ideas into a single, clear discussion topic for a panel of experts. "
    "Reply with the topic only: one sentence, no quotes, no preamble."
)


class TopicRefiner:
    """Normalizes a freeform topic with one lightweight generation call"""

    def __init__(self, generation_client: GenerationClient, model: str = "llama3.2:latest"):
        self.generation_client = generation_client
        self.model = model
        self.options = GenerationOptions(temperature=0.3, num_ctx=2048, repeat_penalty=1.1)

    @staticmethod
    def clean(text: str) -> str:
        """First non-empty line without labels, quotes or markup"""
        for line in text.splitlines():
            line = line.strip().strip("*#").strip()
            if line.lower().startswith("topic:"):
                line = line[len("topic:"):].strip()
            line = line.strip(" *#\"'")
            if line:
                return line[:MAX_TOPIC_CHARS]
        return ""

    async def refine(self, topic: str) -> str:
        """Return the refined topic, or the original one when refinement fails"""

        raw_topic = topic.strip()
        if not raw_topic:
            return raw_topic

        try:
            result = await self.generation_client.generate(
                self.model,
                REFINE_SYSTEM_PROMPT,
                f"Rough idea: {raw_topic}\n\nDiscussion topic:",
                self.options
            )
        except TransportError as e:
            logger.warning("Topic refinement failed, keeping original", error=str(e))
            return raw_topic

        content, _ = split_thought(result.text)
        refined: Optional[str] = self.clean(content)
        return refined or raw_topic
