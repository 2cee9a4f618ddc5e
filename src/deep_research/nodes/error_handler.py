"""
error_handler.py — Retry routing and the terminal node.

A search failure retries the search pass from the first queued query; any
other failure restarts from understanding. Once retry_count reaches
max_retries the run completes with whatever it has.
"""

from __future__ import annotations

import logging

from deep_research.errors import ErrorKind
from deep_research.schemas import ResearchState

logger = logging.getLogger(__name__)


async def handle_error_node(state: ResearchState) -> dict:
    retry_count = state.get("retry_count", 0)
    max_retries = state.get("max_retries", 0)
    error_kind = state.get("error_kind")
    logger.warning(
        f"Handling {getattr(error_kind, 'value', error_kind) or 'unknown'} error "
        f"(attempt {retry_count + 1}/{max_retries}): {state.get('error')}"
    )

    if retry_count >= max_retries:
        logger.warning("Retry budget exhausted, completing with partial results")
        return {"phase": "complete"}

    update = {
        "retry_count": retry_count + 1,
        "error": None,
        "error_kind": None,
    }
    if error_kind == ErrorKind.SEARCH:
        update.update({"phase": "searching", "current_search_index": 0, "search_failures": 0})
    else:
        update["phase"] = "understanding"
    return update


async def complete_node(state: ResearchState) -> dict:
    logger.info(
        f"Research complete for {state['query']!r}: "
        f"{len(state.get('sources') or {})} source(s), retries={state.get('retry_count', 0)}"
    )
    return {"phase": "complete"}
