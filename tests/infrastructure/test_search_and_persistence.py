import json
import pytest
from duckduckgo_search.exceptions import DuckDuckGoSearchException

from roundtable.infrastructure.persistence.json_persistence import InMemoryPersistence, JsonFilePersistence
from roundtable.infrastructure.search.web_search import (
    NO_RESULTS, UNAVAILABLE, DuckDuckGoSearchProvider, format_results
)


RESULTS = [
    {"title": "Qubits", "body": "Qubits hold superpositions.", "href": "https://a.example"},
    {"title": "Shor", "body": "Factoring in polynomial time.", "href": "https://b.example"},
    {"title": "Grover", "body": "Quadratic speedup.", "href": "https://c.example"},
    {"title": "Extra", "body": "Ignored.", "href": "https://d.example"},
]


class TestFormatResults:
    def test_numbered_blocks_capped_at_three(self):
        text = format_results(RESULTS)

        assert text.startswith("[Result 1] Title: Qubits\nSnippet: Qubits hold superpositions.\nSource: https://a.example")
        assert "[Result 3] Title: Grover" in text
        assert "Extra" not in text


@pytest.mark.asyncio
class TestDuckDuckGoSearchProvider:
    async def test_results_are_formatted(self, monkeypatch):
        provider = DuckDuckGoSearchProvider()
        monkeypatch.setattr(provider, "_search_sync", lambda query: RESULTS[:1])

        assert await provider.search("qubits") == format_results(RESULTS[:1])

    async def test_no_results(self, monkeypatch):
        provider = DuckDuckGoSearchProvider()
        monkeypatch.setattr(provider, "_search_sync", lambda query: [])

        assert await provider.search("obscure") == NO_RESULTS

    async def test_failure_never_raises(self, monkeypatch):
        provider = DuckDuckGoSearchProvider()

        def fail(query):
            raise DuckDuckGoSearchException("rate limited")

        monkeypatch.setattr(provider, "_search_sync", fail)

        assert await provider.search("anything") == UNAVAILABLE

    async def test_network_error_never_raises(self, monkeypatch):
        provider = DuckDuckGoSearchProvider()

        def fail(query):
            raise ConnectionError("offline")

        monkeypatch.setattr(provider, "_search_sync", fail)

        assert await provider.search("anything") == UNAVAILABLE

    async def test_blank_query(self):
        assert await DuckDuckGoSearchProvider().search("   ") == NO_RESULTS


class TestPersistence:
    def test_in_memory_copies_data(self):
        persistence = InMemoryPersistence()
        data = {"entries": [{"id": "1"}]}

        persistence.save(data)
        data["entries"].append({"id": "2"})

        assert persistence.load() == {"entries": [{"id": "1"}]}
        assert persistence.save_count == 1

    def test_json_file_round_trip(self, tmp_path):
        path = tmp_path / "state" / "memory.json"
        persistence = JsonFilePersistence(str(path))

        assert persistence.load() is None
        persistence.save({"entries": [], "summaries": [{"session_id": "s1"}]})

        assert json.loads(path.read_text(encoding="utf-8"))["summaries"][0]["session_id"] == "s1"
        assert persistence.load() == {"entries": [], "summaries": [{"session_id": "s1"}]}
        assert not path.with_suffix(".json.tmp").exists()

    def test_corrupt_file_loads_as_none(self, tmp_path):
        path = tmp_path / "memory.json"
        path.write_text("{not json", encoding="utf-8")

        assert JsonFilePersistence(str(path)).load() is None
