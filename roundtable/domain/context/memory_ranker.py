from typing import List, Optional, Tuple
import re

from roundtable.domain.models.conversation import now_ms
from roundtable.domain.models.memory import MemoryEntry


MS_PER_DAY = 1000 * 60 * 60 * 24
MIN_RELEVANCE = 5.0


def context_keywords(context: str) -> List[str]:
    """Whitespace tokens of the lowercased context longer than 3 characters"""
    return [word for word in re.split(r"\s+", context.lower()) if len(word) > 3]


def score_memory(entry: MemoryEntry, context: str, now: Optional[int] = None) -> float:
    """Relevance of a memory entry to the given context"""

    now = now_ms() if now is None else now
    context_lower = context.lower()
    content_lower = entry.content.lower()
    tags_lower = [tag.lower() for tag in entry.tags]

    # Recency: up to 5 points, fading over five days
    age_in_days = (now - entry.timestamp) / MS_PER_DAY
    score = max(5 - age_in_days, 0)

    # Full context match
    if context_lower and context_lower in content_lower:
        score += 20

    # Keyword matches, tags weighted higher
    for word in context_keywords(context):
        if word in content_lower:
            score += 2
        score += 3 * sum(1 for tag in tags_lower if word in tag)

    return score + entry.importance


def rank_memories(
    entries: List[MemoryEntry],
    context: str,
    limit: int = 5,
    now: Optional[int] = None
) -> List[Tuple[MemoryEntry, float]]:
    """Entries scoring above the relevance floor, best first, at most `limit`"""

    if limit <= 0:
        return []

    now = now_ms() if now is None else now
    scored = [(entry, score_memory(entry, context, now)) for entry in entries]
    relevant = [item for item in scored if item[1] > MIN_RELEVANCE]
    relevant.sort(key=lambda item: item[1], reverse=True)

    return relevant[:limit]
