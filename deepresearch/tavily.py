from typing import Any, Dict, Optional

import httpx

from .schemas import collect_results


TAVILY_SEARCH_URL = "https://api.tavily.com/search"
TAVILY_TOPICS = ("general", "news", "finance")


class TavilyClient:
    """Tavily search. Failures come back as ``{"error": ...}`` dicts, never raised."""

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key
        # Sibling branches search concurrently and share this pool.
        self.client = httpx.AsyncClient(
            timeout=60,
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        query: str,
        max_results: int = 5,
        advanced: bool = False,
        topic: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Return ``{"results": [WebSearchResult, ...]}`` holding only rows with content and a URL."""
        if not self.enabled:
            return {"error": "missing_api_key"}
        payload: Dict[str, Any] = {
            "query": query,
            "search_depth": "advanced" if advanced else "basic",
            "max_results": max_results,
            "api_key": self.api_key,
        }
        topic = (topic or "").strip().lower()
        if topic in TAVILY_TOPICS:
            payload["topic"] = topic
        headers = {"Content-Type": "application/json", "Authorization": f"Bearer {self.api_key}"}
        try:
            resp = await self.client.post(TAVILY_SEARCH_URL, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            return {"error": "http_status", "status_code": e.response.status_code, "detail": _response_detail(e.response)}
        except httpx.RequestError as e:
            return {"error": "request_failed", "detail": str(e)}
        rows = data.get("results") if isinstance(data, dict) else None
        return {"results": collect_results(rows)}

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()


def _response_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
