"""
Web search+scrape service using Tavily.

Wraps TavilyClient in an asyncio executor so it is safe to await inside
async LangGraph node functions without blocking the event loop. Raw page
content is requested in the search call itself, so one call both finds and
scrapes the pages. Every call is bounded by an explicit timeout.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Optional

from tavily import TavilyClient

from deep_research.errors import SearchError, describe_error
from deep_research.schemas import Page

logger = logging.getLogger(__name__)


class WebSearchService:
    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 15.0,
        search_depth: str = "advanced",
        client: Optional[TavilyClient] = None,
    ):
        self._api_key = api_key
        self._client = client
        self.timeout = timeout
        self.search_depth = search_depth

    def _get_client(self) -> TavilyClient:
        if self._client is None:
            self._client = TavilyClient(api_key=self._api_key or os.getenv("TAVILY_API_KEY"))
        return self._client

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        scrape_format: str = "markdown",
    ) -> list[Page]:
        """Search the web and return scraped pages (url, title, content)."""
        loop = asyncio.get_event_loop()
        try:
            client = self._get_client()
            response = await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: client.search(
                        query=query,
                        max_results=limit,
                        search_depth=self.search_depth,
                        include_raw_content=scrape_format,
                    ),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise SearchError(query, f"timed out after {self.timeout}s") from exc
        except Exception as exc:
            raise SearchError(query, describe_error(exc)) from exc

        pages: list[Page] = []
        for result in response.get("results", [])[:limit]:
            url = result.get("url")
            if not url:
                continue
            pages.append(
                Page(
                    url=url,
                    title=result.get("title") or None,
                    content=result.get("raw_content") or result.get("content") or "",
                )
            )
        logger.debug(f"Tavily returned {len(pages)} page(s) for {query!r}")
        return pages
