from typing import Dict, List
import asyncio
import structlog
from duckduckgo_search import DDGS
from duckduckgo_search.exceptions import DuckDuckGoSearchException

from roundtable.domain.ports import SearchProvider

logger = structlog.get_logger(__name__)


NO_RESULTS = "No relevant search results found."
UNAVAILABLE = "Unable to perform web search at this time."
MAX_RESULTS = 3


def format_results(results: List[Dict[str, str]]) -> str:
    """Render results as numbered Title / Snippet / Source blocks"""
    return "\n\n".join(
        f"[Result {index}] Title: {r.get('title', '')}\n"
        f"Snippet: {r.get('body', '')}\n"
        f"Source: {r.get('href', '')}"
        for index, r in enumerate(results[:MAX_RESULTS], start=1)
    )


class DuckDuckGoSearchProvider(SearchProvider):
    """Web search through DuckDuckGo; never raises"""

    def __init__(self, max_results: int = MAX_RESULTS, safesearch: str = "moderate"):
        self.max_results = max_results
        self.safesearch = safesearch

    def _search_sync(self, query: str) -> List[Dict[str, str]]:
        with DDGS() as ddgs:
            return list(ddgs.text(query, safesearch=self.safesearch, max_results=self.max_results))

    async def search(self, query: str) -> str:
        if not query.strip():
            return NO_RESULTS

        try:
            results = await asyncio.to_thread(self._search_sync, query)
        except (DuckDuckGoSearchException, OSError) as e:
            logger.warning("Web search failed", query=query, error=str(e))
            return UNAVAILABLE

        if not results:
            return NO_RESULTS

        logger.info("Web search completed", query=query, results=len(results))
        return format_results(results)
