"""
analyzer.py — Hand accumulated sources to the context processor.

Always advances to synthesizing, even with zero sources. If the processor
itself blows up, the raw sources are used as-is.
"""

from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from deep_research.configuration import ResearchConfiguration
from deep_research.context_processor import ContextProcessor
from deep_research.errors import describe_error
from deep_research.schemas import ResearchState
from deep_research.tools.base import ResearchServices

logger = logging.getLogger(__name__)


async def analyze_node(state: ResearchState, config: RunnableConfig) -> dict:
    sources = list((state.get("sources") or {}).values())
    logger.debug(f"Analyzing {len(sources)} source(s)")

    if not sources:
        return {"processed_sources": [], "phase": "synthesizing"}

    cfg = ResearchConfiguration.from_runnable_config(config)
    services = ResearchServices.from_runnable_config(config)
    processor = ContextProcessor.from_configuration(services.completion, cfg)

    try:
        processed = await processor.process_sources(
            state["query"], sources, state.get("search_queries") or []
        )
    except Exception as exc:
        logger.warning(f"Context processing failed, using raw sources: {describe_error(exc)}")
        processed = sorted(sources, key=lambda s: s.quality, reverse=True)

    return {"processed_sources": processed, "phase": "synthesizing"}
