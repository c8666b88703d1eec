from typing import Any, Dict, Optional

import httpx

from .config import FIRECRAWL_API_BASE
from .schemas import collect_results
from .tavily import _response_detail


class FirecrawlClient:
    def __init__(self, api_key: Optional[str] = None, api_base: Optional[str] = None):
        self.api_key = api_key
        self.api_base = (api_base or FIRECRAWL_API_BASE).rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=90,
            limits=httpx.Limits(max_connections=32, max_keepalive_connections=16),
        )

    @property
    def enabled(self) -> bool:
        # Self-hosted instances may run without a key.
        return bool(self.api_key) or self.api_base != FIRECRAWL_API_BASE

    async def search(self, query: str, limit: int = 5, lang: Optional[str] = None) -> Dict[str, Any]:
        """Search and scrape; page markdown becomes the result content."""
        if not self.enabled:
            return {"error": "missing_api_key"}
        payload: Dict[str, Any] = {
            "query": query,
            "limit": limit,
            "scrapeOptions": {"formats": ["markdown"]},
        }
        if lang:
            payload["lang"] = lang
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            resp = await self.client.post(f"{self.api_base}/v1/search", json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            return {"error": "http_status", "status_code": e.response.status_code, "detail": _response_detail(e.response)}
        except httpx.RequestError as e:
            return {"error": "request_failed", "detail": str(e)}
        if not isinstance(data, dict):
            return {"error": "search_failed", "detail": "unexpected response"}
        if data.get("success") is False:
            return {"error": "search_failed", "detail": data.get("error") or "unknown error"}
        return {"results": collect_results(data.get("data"), content_key="markdown")}

    async def close(self) -> None:
        if not self.client.is_closed:
            await self.client.aclose()
