from roundtable.domain.context.repetition_guard import (
    RepetitionGuard, analyze_conversation, extract_discussed_topics, extract_keywords,
    jaccard_similarity, normalize
)
from roundtable.domain.models.conversation import Message


def message(content: str) -> Message:
    return Message(agent_id="agent-1", content=content)


class TestNormalization:
    def test_normalize_lowercases_and_strips_punctuation(self):
        assert normalize("Hello,   WORLD!! It's  fine.") == "hello world it s fine"

    def test_keywords_keep_tokens_longer_than_three(self):
        assert extract_keywords("The quick brown fox jumps") == {"quick", "brown", "jumps"}

    def test_jaccard_of_empty_sets_is_zero(self):
        assert jaccard_similarity(set(), set()) == 0.0

    def test_jaccard_ratio(self):
        assert jaccard_similarity({"a", "b", "c"}, {"b", "c", "d"}) == 0.5


class TestRepetitionGuard:
    def test_shared_half_of_keywords_is_repeat(self):
        guard = RepetitionGuard()
        history = [message("The quick brown fox jumps over lazy dogs")]

        assert guard.max_similarity("A quick brown fox jumped over some lazy dog", history) >= 0.5
        assert guard.is_repeat("A quick brown fox jumped over some lazy dog", history)

    def test_unrelated_text_is_not_repeat(self):
        guard = RepetitionGuard()
        history = [message("The quick brown fox jumps over lazy dogs")]

        assert guard.max_similarity("Neural networks approximate functions", history) == 0.0
        assert not guard.is_repeat("Neural networks approximate functions", history)

    def test_only_last_window_messages_are_compared(self):
        guard = RepetitionGuard(window=5)
        history = [message("Photosynthesis converts sunlight into chemical energy")]
        history += [message(f"unrelated filler {i} zzzz{i}yyyy") for i in range(5)]

        assert not guard.is_repeat("Photosynthesis converts sunlight into chemical energy", history)

    def test_empty_history_is_never_repeat(self):
        assert not RepetitionGuard().is_repeat("anything at all here", [])

    def test_threshold_is_configurable(self):
        history = [message("alpha beta gamma delta")]
        strict = RepetitionGuard(threshold=0.2)
        lenient = RepetitionGuard(threshold=0.9)

        candidate = "alpha beta epsilon zeta"
        assert strict.is_repeat(candidate, history)
        assert not lenient.is_repeat(candidate, history)

    def test_intensified_directive_mentions_topics(self):
        directive = RepetitionGuard().intensified_directive(0.75, ["Quantum", "entanglement"])

        assert "CRITICAL" in directive
        assert "75%" in directive
        assert "Quantum, entanglement" in directive


class TestDiscussedTopics:
    def test_capitalized_and_long_words_by_frequency(self):
        messages = [
            message("Quantum machines threaten encryption."),
            message("Quantum advantage is overstated; encryption survives."),
            message("Consider Tor and quantum encryption."),
        ]

        topics = extract_discussed_topics(messages)

        assert topics[0].lower() in ("quantum", "encryption")
        assert "Tor" not in topics  # too short
        assert "Consider" not in topics  # stopword

    def test_limit(self):
        messages = [message(" ".join(f"Word{chr(65 + i)}xyz" for i in range(20)))]
        assert len(extract_discussed_topics(messages, limit=10)) == 10


class TestConversationMetrics:
    def test_identical_messages_score_full_repetition(self):
        messages = [message("alpha beta gamma delta")] * 3
        metrics = analyze_conversation(messages)

        assert metrics.repetition_score == 100.0
        assert metrics.message_count == 3

    def test_distinct_messages_score_full_diversity(self):
        messages = [message("alpha beta"), message("gamma delta")]
        metrics = analyze_conversation(messages)

        assert metrics.repetition_score == 0.0
        assert metrics.diversity_score == 100.0

    def test_empty_conversation(self):
        metrics = analyze_conversation([])
        assert metrics.repetition_score == 0.0
        assert metrics.diversity_score == 0.0
