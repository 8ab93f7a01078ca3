"""Web search through SearXNG and page text extraction."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from bs4 import BeautifulSoup
from mcp.types import CallToolResult

from ..chat.results import text_result, unknown_tool_result
from ..chat.types import ToolDescriptor
from .time_tool import TIME_TOOL_NAME, current_time_text, time_tool_descriptor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RESPONSE_BYTES = 5 * 1024 * 1024
_BOILERPLATE_TAGS = ["script", "style", "noscript", "nav", "header", "footer", "aside", "form"]
_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 homellm"


def extract_page_text(html: str) -> tuple[str | None, str]:
    """Return the page title and the text of its main content."""

    soup = BeautifulSoup(html, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else None
    for tag in soup(_BOILERPLATE_TAGS):
        tag.decompose()
    main = soup.find("article") or soup.find("main") or soup.body or soup
    return title, main.get_text(separator="\n", strip=True)


class WebSearchTools:
    provider_id = "web-search"

    def __init__(
        self,
        searxng_url: str | None = None,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._searxng_url = str(searxng_url) if searxng_url else None
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
            headers={"User-Agent": _USER_AGENT},
        )

    async def list_tools(self) -> list[ToolDescriptor]:
        return [
            time_tool_descriptor(),
            ToolDescriptor(
                name="search-web",
                description="Search the web for a query.",
                parameters={
                    "type": "object",
                    "properties": {
                        "query": {
                            "type": "string",
                            "description": (
                                "The search query. Rather than using the user input "
                                "directly, construct a good query for their intent "
                                "to ensure good results."
                            ),
                        },
                    },
                    "required": ["query"],
                    "additionalProperties": False,
                },
            ),
            ToolDescriptor(
                name="get-web-page-content",
                description="Get the main content of a web page.",
                parameters={
                    "type": "object",
                    "properties": {
                        "url": {
                            "type": "string",
                            "description": "The URL of the web page to retrieve.",
                        },
                    },
                    "required": ["url"],
                    "additionalProperties": False,
                },
            ),
        ]

    async def search_web(self, query: str) -> str:
        if not self._searxng_url:
            return (
                "Search failed. Inform the user: The SearXNG URL must be "
                "configured in the service settings."
            )

        try:
            async with self._client() as client:
                response = await client.get(
                    self._searxng_url, params={"format": "json", "q": query}
                )
                if response.status_code >= 400:
                    return f"HTTP error! Status: {response.status_code}"
                payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("SearXNG search for %r failed: %s", query, exc)
            return f"Search failed with backend error. Inform the user: {exc}"

        results = payload.get("results") if isinstance(payload, dict) else None
        if not results:
            return "No results found."

        header = (
            f'The following are the Search results for "{query}". To gather '
            "further information from these links, use the get-web-page-content "
            "tool. You MUST use multiple get-web-page-content tool calls in a "
            "single response if you intend to retrieve content from multiple "
            "pages. If a web page provides an answer to the query, include the "
            "link in your response:\n"
        )
        entries = [
            f"\n{index}. {result.get('title', '')}\n"
            f"    - {result.get('url', '')}\n"
            f"    - {result.get('content', '')}"
            for index, result in enumerate(results)
            if isinstance(result, dict)
        ]
        return header + "\n".join(entries)

    async def get_web_page_content(self, url: str) -> str:
        if not (url.startswith("http://") or url.startswith("https://")):
            return f"# URL: {url}\n\nInvalid URL scheme."

        try:
            async with self._client() as client:
                response = await client.get(url)
            data = response.content
        except httpx.HTTPError as exc:
            logger.warning("Fetching %s failed: %s", url, exc)
            return f"# URL: {url}\n\nError fetching or parsing article:\n{exc}"

        if len(data) > MAX_RESPONSE_BYTES:
            return f"# URL: {url}\n\nResponse too large."

        title, text = extract_page_text(data.decode("utf-8", errors="replace"))
        if not text:
            return f"# URL: {url}\n\nFailed to parse article"
        return f"# URL: {url}\n\n# Title: {title or ''}\n\n# Content: {text}"

    async def call_llm_tool(
        self, tool_call_id: str, name: str, arguments: dict[str, Any]
    ) -> CallToolResult:
        if name == "search-web":
            query = arguments.get("query")
            if not isinstance(query, str) or not query.strip():
                return text_result('"query" parameter is required for search-web tool.')
            return text_result(await self.search_web(query))
        if name == "get-web-page-content":
            url = arguments.get("url")
            if not isinstance(url, str) or not url.strip():
                return text_result(
                    '"url" parameter is required for get-web-page-content tool.'
                )
            return text_result(await self.get_web_page_content(url.strip()))
        if name == TIME_TOOL_NAME:
            return text_result(current_time_text())
        return unknown_tool_result(name)


__all__ = ["WebSearchTools", "extract_page_text"]
