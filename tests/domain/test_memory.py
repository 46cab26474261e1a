import pytest

from roundtable.domain.context.memory.memory_store import MemoryStore
from roundtable.domain.context.memory_ranker import MS_PER_DAY, rank_memories, score_memory
from roundtable.domain.models.conversation import Agent, Message
from roundtable.domain.models.memory import MemoryEntry, MemoryType
from roundtable.infrastructure.persistence.json_persistence import InMemoryPersistence


NOW = 1_700_000_000_000


def entry(content, importance=5.0, age_days=0.0, tags=None, session_id="s1"):
    return MemoryEntry(
        session_id=session_id,
        timestamp=int(NOW - age_days * MS_PER_DAY),
        content=content,
        importance=importance,
        tags=tags or []
    )


class TestMemoryRanker:
    def test_score_adds_every_component(self):
        e = entry("Quantum computing breaks RSA", tags=["Atlas", "quantum computing"])

        # recency 5 + full match 20 + 2 keywords in content 4 + 2 keywords in tags 6 + importance 5
        assert score_memory(e, "quantum computing", NOW) == 40

    def test_recency_fades_to_zero(self):
        assert score_memory(entry("nothing here", importance=1, age_days=2.5), "zzzz", NOW) == pytest.approx(3.5)
        assert score_memory(entry("nothing here", importance=1, age_days=30), "zzzz", NOW) == 1

    def test_scores_at_or_below_five_are_dropped(self):
        entries = [
            entry("gardening tips", importance=5, age_days=10),
            entry("quantum computing overview", importance=1, age_days=10),
        ]

        ranked = rank_memories(entries, "quantum computing", now=NOW)

        assert [e.content for e, _ in ranked] == ["quantum computing overview"]

    def test_relevant_results_are_limited_and_sorted(self):
        entries = [entry(f"quantum computing fact {i}", importance=1 + i % 10) for i in range(20)]

        ranked = rank_memories(entries, "quantum computing", limit=5, now=NOW)

        assert len(ranked) == 5
        scores = [score for _, score in ranked]
        assert scores == sorted(scores, reverse=True)
        assert all(score > 5 for score in scores)


@pytest.mark.asyncio
class TestMemoryStore:
    async def test_insights_are_stored_from_bold_fragments(self):
        store = MemoryStore()
        agent = Agent(id="agent-1", name="Atlas", role="r", system_prompt="p")
        message = Message(agent_id="agent-1", content="We need **error correction** and **fault tolerance** first.")

        entries = await store.add_insights_from_message(message, agent, "s1", "Quantum computing")

        assert [e.content for e in entries] == ["error correction", "fault tolerance"]
        assert all(e.type == MemoryType.INSIGHT for e in entries)
        assert all(e.tags == ["Atlas", "Quantum computing"] for e in entries)
        assert all(e.timestamp == message.timestamp for e in entries)
        assert len(await store.get_all_memories()) == 2

    async def test_message_without_emphasis_stores_nothing(self):
        store = MemoryStore()
        agent = Agent(id="agent-1", name="Atlas", role="r", system_prompt="p")

        entries = await store.add_insights_from_message(Message(agent_id="agent-1", content="plain"), agent, "s1", "t")

        assert entries == []

    async def test_pruning_keeps_top_thousand(self):
        store = MemoryStore(max_memories=1000)
        entries = [
            MemoryEntry(session_id="s1", timestamp=NOW, content=f"fact {i}", importance=1 + i * 9 / 1000)
            for i in range(1001)
        ]
        lowest = min(entries, key=lambda e: e.importance + e.timestamp / 10 ** 10)

        for e in reversed(entries):
            await store.add_memory(e)

        remaining = await store.get_all_memories()
        assert len(remaining) == 1000
        assert lowest.id not in {e.id for e in remaining}

    async def test_relevant_memories_never_exceed_limit(self):
        store = MemoryStore()
        for i in range(12):
            await store.add_memory(MemoryEntry(session_id="s1", content=f"quantum computing insight {i}"))
        await store.add_memory(MemoryEntry(session_id="s1", content="bread recipes", importance=1,
                                           timestamp=NOW - 100 * MS_PER_DAY))

        relevant = await store.get_relevant_memories("quantum computing", limit=5)

        assert len(relevant) == 5
        assert all("quantum" in e.content for e in relevant)

    async def test_session_summary_overwrites_by_session(self):
        store = MemoryStore()
        await store.add_session_summary("s1", "Topic", "first", ["a"])
        await store.add_session_summary("s2", "Other", "other", [])
        await store.add_session_summary("s1", "Topic", "second", ["b", "c"])

        summaries = await store.get_recent_summaries(10)

        assert len(summaries) == 2
        s1 = next(s for s in summaries if s.session_id == "s1")
        assert s1.summary == "second"
        assert s1.key_insights == ["b", "c"]

    async def test_recent_summaries_limit(self):
        store = MemoryStore()
        for i in range(5):
            await store.add_session_summary(f"s{i}", f"Topic {i}", f"summary {i}", [])

        assert len(await store.get_recent_summaries()) == 3

    async def test_memory_prompt_sections(self):
        store = MemoryStore()
        await store.add_memory(MemoryEntry(session_id="s1", content="quantum error rates", tags=["Atlas"]))
        await store.add_session_summary("s0", "Fusion power", "Agents debated tokamaks.", [])

        prompt = await store.get_memory_prompt("quantum error rates")

        assert "Relevant Past Insights:" in prompt
        assert "- quantum error rates (Tags: Atlas)" in prompt
        assert "Recent Conversation Context:" in prompt
        assert "Summary: Agents debated tokamaks." in prompt

    async def test_memory_prompt_empty_store(self):
        assert await MemoryStore().get_memory_prompt("anything") == ""

    async def test_state_round_trips_through_persistence(self):
        persistence = InMemoryPersistence()
        store = MemoryStore(persistence=persistence)
        await store.add_memory(MemoryEntry(session_id="s1", content="kept", tags=["x"], importance=7.5))
        await store.add_session_summary("s1", "Topic", "summary", ["insight"])

        reloaded = MemoryStore(persistence=persistence)

        assert await reloaded.get_all_memories() == await store.get_all_memories()
        assert await reloaded.get_recent_summaries() == await store.get_recent_summaries()

    async def test_unreadable_blob_starts_empty(self):
        store = MemoryStore(persistence=InMemoryPersistence({"entries": "not a list"}))
        assert await store.get_all_memories() == []

    async def test_clear_memory(self):
        persistence = InMemoryPersistence()
        store = MemoryStore(persistence=persistence)
        await store.add_memory(MemoryEntry(session_id="s1", content="gone"))

        await store.clear_memory()

        assert await store.get_all_memories() == []
        assert persistence.data["entries"] == []
