"""
planner.py — Query understanding and search planning.

Input:  the research query (+ sub_queries carried over from an earlier pass)
Output: understanding text, sub-queries, and the queue of search queries
Route:  planning → searching when any sub-query is unanswered or below the
        confidence bar, otherwise straight to analyzing
"""

from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig
from pydantic import ValidationError

from deep_research.configuration import ResearchConfiguration
from deep_research.errors import ErrorKind, describe_error
from deep_research.prompts import SUB_QUERY_PROMPT, UNDERSTAND_QUERY_PROMPT, date_context
from deep_research.schemas import ResearchState, SubQuery
from deep_research.tools.base import ResearchServices

logger = logging.getLogger(__name__)


async def plan_sub_queries(completion, query: str) -> list[SubQuery]:
    """
    Decompose a query into atomic {question, search_query} pairs.

    Never raises: an unreachable service, malformed JSON or an empty list all
    fall back to a single sub-query equal to the original text.
    """
    fallback = [SubQuery(question=query, search_query=query)]
    messages = [
        {"role": "system", "content": SUB_QUERY_PROMPT},
        {"role": "user", "content": f'Query: "{query}"'},
    ]
    try:
        raw = await completion.complete_with_json(messages)
    except Exception as exc:
        logger.warning(f"Sub-query extraction failed, using the query verbatim: {describe_error(exc)}")
        return fallback

    if not isinstance(raw, list):
        return fallback

    sub_queries: list[SubQuery] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            sub_query = SubQuery.model_validate(item)
        except ValidationError:
            continue
        if sub_query.question.strip() and sub_query.search_query.strip():
            sub_queries.append(sub_query)

    return sub_queries or fallback


async def understand_node(state: ResearchState, config: RunnableConfig) -> dict:
    """Summarise what the query is asking for (1-2 sentences)."""
    services = ResearchServices.from_runnable_config(config)
    query = state["query"]
    logger.debug(f"Understanding query {query!r}")

    messages = [
        {"role": "system", "content": UNDERSTAND_QUERY_PROMPT.format(date_context=date_context())},
        {"role": "user", "content": f'Query: "{query}"'},
    ]
    try:
        understanding = await services.completion.complete(messages)
    except Exception as exc:
        logger.error(f"Failed to understand query: {describe_error(exc)}")
        return {
            "error": describe_error(exc),
            "error_kind": ErrorKind.LLM,
            "phase": "error",
        }

    return {"understanding": understanding, "phase": "planning"}


async def plan_node(state: ResearchState, config: RunnableConfig) -> dict:
    """
    Build the search queue from the sub-queries that still need searching.

    Sub-queries survive retries, so on a second pass only the unanswered or
    low-confidence ones are searched again.
    """
    cfg = ResearchConfiguration.from_runnable_config(config)
    services = ResearchServices.from_runnable_config(config)
    logger.debug("Planning search strategy")

    try:
        sub_queries = state.get("sub_queries")
        if sub_queries is None:
            sub_queries = await plan_sub_queries(services.completion, state["query"])

        pending = [sq for sq in sub_queries if sq.needs_search(cfg.min_answer_confidence)]
        if not pending:
            return {"sub_queries": sub_queries, "phase": "analyzing"}

        search_queries = list(dict.fromkeys(sq.search_query for sq in pending))
        search_queries = search_queries[: cfg.depth_preset["search_queries"]]
    except Exception as exc:
        logger.error(f"Failed to plan search: {describe_error(exc)}")
        return {
            "error": describe_error(exc),
            "error_kind": ErrorKind.LLM,
            "phase": "error",
        }

    logger.info(f"Planned {len(search_queries)} search(es) for {len(pending)} open sub-query(ies)")
    return {
        "sub_queries": sub_queries,
        "search_queries": search_queries,
        "current_search_index": 0,
        "search_failures": 0,
        "phase": "searching",
    }
