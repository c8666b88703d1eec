import json

import pytest
import respx
from httpx import Response

from deepresearch.config import WebSearchSettings
from deepresearch.web_search import WebSearch, WebSearchError


@pytest.mark.asyncio
async def test_tavily_results_without_content_or_url_are_dropped():
    search = WebSearch(WebSearchSettings(provider="tavily", api_key="tvly", tavily_search_topic="finance"))
    captured = {}
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            def handler(request):
                captured["json"] = json.loads(request.content.decode("utf-8"))
                return Response(
                    200,
                    json={
                        "results": [
                            {"content": "kept", "url": "https://a.example", "title": "A"},
                            {"content": "", "url": "https://b.example"},
                            {"content": "no url"},
                        ]
                    },
                )

            respx_mock.post("https://api.tavily.com/search").mock(side_effect=handler)
            results = await search.search("markets", max_results=5, lang="en")
    finally:
        await search.close()

    assert [(r.content, r.url, r.title) for r in results] == [("kept", "https://a.example", "A")]
    assert captured["json"]["search_depth"] == "basic"
    assert captured["json"]["topic"] == "finance"
    assert captured["json"]["max_results"] == 5


@pytest.mark.asyncio
async def test_tavily_failure_raises():
    search = WebSearch(WebSearchSettings(provider="tavily", api_key="tvly"))
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.tavily.com/search").mock(
                return_value=Response(432, json={"detail": {"error": "usage limit"}})
            )
            with pytest.raises(WebSearchError, match="usage limit"):
                await search.search("markets")
    finally:
        await search.close()


@pytest.mark.asyncio
async def test_firecrawl_uses_markdown_and_language():
    settings = WebSearchSettings(provider="firecrawl", api_base="http://firecrawl.local/")
    search = WebSearch(settings)
    captured = {}
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            def handler(request):
                captured["json"] = json.loads(request.content.decode("utf-8"))
                captured["headers"] = request.headers
                return Response(
                    200,
                    json={
                        "success": True,
                        "data": [
                            {"markdown": "# Page", "url": "https://c.example", "title": "C"},
                            {"markdown": "", "url": "https://d.example"},
                        ],
                    },
                )

            respx_mock.post("http://firecrawl.local/v1/search").mock(side_effect=handler)
            results = await search.search("rust async", max_results=3, lang="de")
    finally:
        await search.close()

    assert [(r.content, r.url) for r in results] == [("# Page", "https://c.example")]
    assert captured["json"] == {
        "query": "rust async",
        "limit": 3,
        "scrapeOptions": {"formats": ["markdown"]},
        "lang": "de",
    }
    assert "Authorization" not in captured["headers"]


@pytest.mark.asyncio
async def test_firecrawl_unsuccessful_response_raises():
    search = WebSearch(WebSearchSettings(provider="firecrawl", api_key="fc-key"))
    try:
        with respx.mock(assert_all_called=True) as respx_mock:
            respx_mock.post("https://api.firecrawl.dev/v1/search").mock(
                return_value=Response(200, json={"success": False, "error": "quota exceeded"})
            )
            with pytest.raises(WebSearchError, match="quota exceeded"):
                await search.search("anything")
    finally:
        await search.close()
