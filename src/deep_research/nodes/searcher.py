"""
searcher.py — One web search per visit.

Input:  search_queries[current_search_index]
Output: new sources merged into the URL-keyed source map, updated sub-queries,
        cursor advanced by one
Route:  searching while queries remain, then analyzing. A pass in which every
        query failed and nothing was collected escalates to error (kind=search)
        so the retry can rerun the pass; any single failure is just skipped.
"""

from __future__ import annotations

import asyncio
import logging

from langchain_core.runnables import RunnableConfig

from deep_research.configuration import ResearchConfiguration
from deep_research.context_processor import contains_keyword
from deep_research.errors import ErrorKind, describe_error
from deep_research.prompts import PAGE_FINDING_PROMPT, date_context
from deep_research.schemas import Page, ResearchState, Source, SubQuery
from deep_research.tools.base import ResearchServices

logger = logging.getLogger(__name__)

FINDING_INPUT_CHARS = 2000
FINDING_CONCURRENCY = 4


def score_content(content: str, query: str) -> float:
    """0.2 per query word (or its stem) contained in the content, capped at 1.0."""
    lowered = content.lower()
    score = sum(0.2 for word in query.lower().split(" ") if word and contains_keyword(lowered, word))
    return min(round(score, 2), 1.0)


async def summarize_page(completion, content: str, query: str) -> str:
    """One-sentence finding for the query. Returns "" on any failure."""
    messages = [
        {"role": "system", "content": PAGE_FINDING_PROMPT.format(date_context=date_context())},
        {
            "role": "user",
            "content": f'Query: "{query}"\n\nContent: {content[:FINDING_INPUT_CHARS]}',
        },
    ]
    try:
        return (await completion.complete(messages)).strip()
    except Exception as exc:
        logger.debug(f"Page finding failed: {describe_error(exc)}")
        return ""


def update_sub_queries(
    sub_queries: list[SubQuery] | None,
    search_query: str,
    sources: list[Source],
    min_confidence: float,
) -> list[SubQuery] | None:
    """Re-evaluate the sub-queries that produced `search_query`."""
    if not sub_queries:
        return sub_queries
    confidence = max((s.quality for s in sources), default=0.0)
    updated = []
    for sub_query in sub_queries:
        if sub_query.search_query == search_query:
            sub_query = sub_query.model_copy(update={
                "confidence": confidence,
                "answered": confidence >= min_confidence,
                "sources": [s.url for s in sources],
            })
        updated.append(sub_query)
    return updated


def _end_of_pass(state: ResearchState, failures: int, collected: int) -> dict:
    total = len(state.get("search_queries") or [])
    if total and failures >= total and not (state.get("sources") or {}) and not collected:
        logger.warning(f"All {total} search(es) failed and no sources were collected")
        return {
            "phase": "error",
            "error": f"All {total} search queries failed",
            "error_kind": ErrorKind.SEARCH,
        }
    return {"phase": "analyzing"}


async def search_node(state: ResearchState, config: RunnableConfig) -> dict:
    cfg = ResearchConfiguration.from_runnable_config(config)
    services = ResearchServices.from_runnable_config(config)

    search_queries = state.get("search_queries") or []
    index = state.get("current_search_index", 0)
    failures = state.get("search_failures", 0)

    if index >= len(search_queries):
        return _end_of_pass(state, failures, 0)

    search_query = search_queries[index]
    logger.debug(f"Searching [{index + 1}/{len(search_queries)}]: {search_query!r}")

    update: dict = {"current_search_index": index + 1, "phase": "searching"}
    try:
        pages: list[Page] = await services.web_search.search(
            search_query,
            limit=cfg.depth_preset["sources_per_search"],
            scrape_format="markdown",
        )
    except Exception as exc:
        logger.warning(f"Search failed for {search_query!r}, continuing: {describe_error(exc)}")
        failures += 1
        update["search_failures"] = failures
        if index + 1 >= len(search_queries):
            update.update(_end_of_pass(state, failures, 0))
        return update

    sources = [
        Source(
            url=page.url,
            title=page.title or page.url,
            content=page.content,
            quality=score_content(page.content or "", state["query"]),
        )
        for page in pages
    ]

    semaphore = asyncio.Semaphore(FINDING_CONCURRENCY)

    async def _finding(source: Source) -> Source:
        if not source.content or len(source.content) <= cfg.min_content_length:
            return source
        async with semaphore:
            summary = await summarize_page(services.completion, source.content, search_query)
        return source.model_copy(update={"summary": summary}) if summary else source

    sources = list(await asyncio.gather(*(_finding(s) for s in sources)))
    logger.debug(f"Search returned {len(sources)} source(s)")

    update["sources"] = {s.url: s for s in sources}
    update["sub_queries"] = update_sub_queries(
        state.get("sub_queries"), search_query, sources, cfg.min_answer_confidence
    )
    if index + 1 >= len(search_queries):
        update.update(_end_of_pass(state, failures, len(sources)))
    return update
