"""
Novelty check over recent conversation.

Similarity is keyword-set Jaccard overlap, a lexical heuristic rather than a
semantic comparison: paraphrases slip through and shared jargon can trip it.
That approximation is accepted; the guard only decides whether to spend one
regeneration call.
"""
from typing import Dict, List, Iterable, Optional, Set
from collections import Counter
import re

from roundtable.domain.models.conversation import Message
from roundtable.domain.models.generation import ConversationMetrics


_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_CAPITALIZED = re.compile(r"\b[A-Z][a-zA-Z]{3,}\b")
_LONG_LOWERCASE = re.compile(r"\b[a-z]{8,}\b")

_TOPIC_STOPWORDS = {
    "this", "that", "there", "their", "these", "those", "what", "when", "where",
    "which", "while", "however", "therefore", "because", "although", "something",
    "everything", "anything", "another", "perhaps", "indeed", "instead", "consider",
    "question", "important", "response", "conversation", "previous", "argument",
}


def normalize(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace"""
    text = _PUNCTUATION.sub(" ", text.lower())
    return _WHITESPACE.sub(" ", text).strip()


def extract_keywords(text: str) -> Set[str]:
    """Keyword tokens (longer than 3 characters) of the normalized text"""
    return {word for word in normalize(text).split(" ") if len(word) > 3}


def jaccard_similarity(first: Set[str], second: Set[str]) -> float:
    """|intersection| / |union|; 0.0 when both sets are empty"""
    union = first | second
    if not union:
        return 0.0
    return len(first & second) / len(union)


class RepetitionGuard:
    """Flags candidate output that overlaps too much with recent messages"""

    def __init__(self, threshold: float = 0.5, window: int = 5):
        self.threshold = threshold
        self.window = window

    def similarities(self, candidate: str, history: Iterable[Message]) -> List[float]:
        """Pairwise similarity of the candidate against each recent message"""
        recent = list(history)[-self.window:] if self.window > 0 else []
        candidate_keywords = extract_keywords(candidate)
        return [
            jaccard_similarity(candidate_keywords, extract_keywords(message.content))
            for message in recent
        ]

    def max_similarity(self, candidate: str, history: Iterable[Message]) -> float:
        scores = self.similarities(candidate, history)
        return max(scores) if scores else 0.0

    def is_repeat(self, candidate: str, history: Iterable[Message]) -> bool:
        """True when any recent message reaches the similarity threshold"""
        return any(score >= self.threshold for score in self.similarities(candidate, history))

    def intensified_directive(self, similarity: float, discussed_topics: Optional[List[str]] = None) -> str:
        """Extra instruction appended to the prompt for the regeneration attempt"""
        directive = (
            "\n\nCRITICAL: Your previous draft repeated points that were already made "
            f"(overlap {similarity:.0%}). Discard it entirely.\n"
            "- Take a perspective NOBODY has raised yet.\n"
            "- Introduce a new example, fact, or counter-argument.\n"
            "- Do NOT restate, rephrase, or summarize earlier messages.\n"
        )
        if discussed_topics:
            directive += f"- Avoid these exhausted themes: {', '.join(discussed_topics)}.\n"
        return directive


def extract_discussed_topics(messages: Iterable[Message], limit: int = 10) -> List[str]:
    """Capitalized or long lowercase words that keep recurring, most frequent first"""
    counts: Counter = Counter()
    display: Dict[str, str] = {}

    for message in messages:
        text = message.content.replace("*", "")
        candidates = _CAPITALIZED.findall(text) + _LONG_LOWERCASE.findall(text)
        for word in candidates:
            key = word.lower()
            if key in _TOPIC_STOPWORDS:
                continue
            counts[key] += 1
            display.setdefault(key, word)

    return [display[key] for key, _ in counts.most_common(limit)]


def analyze_conversation(messages: List[Message], window: int = 10) -> ConversationMetrics:
    """Repetition and diversity scores over the most recent messages"""
    recent = messages[-window:] if window > 0 else []
    keyword_sets = [extract_keywords(message.content) for message in recent]

    pair_scores = [
        jaccard_similarity(keyword_sets[i], keyword_sets[j])
        for i in range(len(keyword_sets))
        for j in range(i + 1, len(keyword_sets))
    ]
    repetition = sum(pair_scores) / len(pair_scores) if pair_scores else 0.0

    all_keywords = [word for keywords in keyword_sets for word in keywords]
    diversity = len(set(all_keywords)) / len(all_keywords) if all_keywords else 0.0

    return ConversationMetrics(
        repetition_score=round(repetition * 100, 1),
        diversity_score=round(diversity * 100, 1),
        topics_discussed=extract_discussed_topics(messages),
        message_count=len(messages)
    )
