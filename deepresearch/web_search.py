import logging
from typing import Any, Dict, List, Optional

from .config import WebSearchSettings
from .firecrawl import FirecrawlClient
from .schemas import WebSearchResult
from .tavily import TavilyClient


logger = logging.getLogger(__name__)


class WebSearchError(RuntimeError):
    pass


def _error_message(provider: str, resp: Dict[str, Any]) -> str:
    error = resp.get("error")
    detail = resp.get("detail")
    if isinstance(detail, dict):
        detail = detail.get("detail") or detail.get("error") or detail
    status = resp.get("status_code")
    parts = [f"{provider} search failed: {error}"]
    if status:
        parts.append(f"(HTTP {status})")
    if detail:
        parts.append(str(detail))
    return " ".join(parts)


class WebSearch:
    """Provider-agnostic search returning only entries that carry content and a URL."""

    def __init__(
        self,
        settings: WebSearchSettings,
        tavily_client: Optional[TavilyClient] = None,
        firecrawl_client: Optional[FirecrawlClient] = None,
    ) -> None:
        self.settings = settings
        self._tavily = tavily_client
        self._firecrawl = firecrawl_client

    @property
    def tavily(self) -> TavilyClient:
        if self._tavily is None:
            self._tavily = TavilyClient(self.settings.api_key)
        return self._tavily

    @property
    def firecrawl(self) -> FirecrawlClient:
        if self._firecrawl is None:
            self._firecrawl = FirecrawlClient(self.settings.api_key, self.settings.resolved_api_base)
        return self._firecrawl

    async def search(self, query: str, max_results: int = 5, lang: Optional[str] = None) -> List[WebSearchResult]:
        if self.settings.provider == "firecrawl":
            provider = "Firecrawl"
            resp = await self.firecrawl.search(query, limit=max_results, lang=lang)
        else:
            provider = "Tavily"
            resp = await self.tavily.search(
                query,
                max_results=max_results,
                advanced=self.settings.tavily_advanced_search,
                topic=self.settings.tavily_search_topic,
            )
        if resp.get("error"):
            raise WebSearchError(_error_message(provider, resp))
        results = resp["results"]
        logger.debug("%s returned %d usable results for %r", provider, len(results), query)
        return results

    async def close(self) -> None:
        if self._tavily is not None:
            await self._tavily.close()
        if self._firecrawl is not None:
            await self._firecrawl.close()
