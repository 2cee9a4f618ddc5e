"""
engine.py — Drive one research state machine run.

DeepResearchEngine.run()       → final ResearchState
DeepResearchEngine.research()  → ResearchResult (sources numbered 1..N)

The run is streamed so that when the step ceiling (recursion_limit) trips,
the last observed state is still returned as a partial result.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Optional

from langgraph.errors import GraphRecursionError

from deep_research.configuration import ResearchConfiguration, ResearchDepth
from deep_research.nodes.synthesizer import ranked_sources
from deep_research.research_graph import research_graph
from deep_research.schemas import ResearchResult, ResearchState
from deep_research.tools.base import SERVICES_KEY, ResearchServices

logger = logging.getLogger(__name__)


def initial_state(query: str, max_retries: int) -> ResearchState:
    return {
        "query": query,
        "understanding": "",
        "sub_queries": None,
        "search_queries": [],
        "current_search_index": 0,
        "search_failures": 0,
        "sources": {},
        "processed_sources": None,
        "answer_sources": [],
        "final_answer": "",
        "extracted_facts": [],
        "follow_up_questions": [],
        "phase": "understanding",
        "error": None,
        "error_kind": None,
        "retry_count": 0,
        "max_retries": max_retries,
    }


def build_result(query: str, state: ResearchState, max_sources: int = 10) -> ResearchResult:
    """
    Package a final (or partial) state.

    When an answer exists its sources are exactly the ones it was written
    from, in the order they were numbered. Otherwise the best available
    sources are returned so a partial run still carries what it found.
    """
    answer = state.get("final_answer") or ""
    if answer:
        sources = list(state.get("answer_sources") or [])
    else:
        sources = ranked_sources(state)[:max_sources]

    return ResearchResult(
        query=query,
        answer=answer,
        sources=[s.model_copy(update={"id": i}) for i, s in enumerate(sources, start=1)],
        facts=list(state.get("extracted_facts") or []) if answer else [],
        follow_up_questions=list(state.get("follow_up_questions") or []) if answer else [],
    )


class DeepResearchEngine:
    """Runs the research state machine at a given depth."""

    def __init__(
        self,
        depth: Optional[ResearchDepth] = None,
        configuration: Optional[ResearchConfiguration] = None,
        services: Optional[ResearchServices] = None,
    ):
        cfg = configuration or ResearchConfiguration()
        if depth is not None:
            cfg = dataclasses.replace(cfg, depth=depth)
        self.configuration = cfg
        self.services = services or ResearchServices.from_env(cfg)

    @property
    def depth(self) -> ResearchDepth:
        return self.configuration.depth

    def runnable_config(self) -> dict:
        configurable = self.configuration.as_configurable()
        configurable[SERVICES_KEY] = self.services
        return {
            "configurable": configurable,
            "recursion_limit": self.configuration.recursion_limit,
        }

    async def run(self, query: str) -> ResearchState:
        logger.info(f"Starting deep research ({self.depth}): {query!r}")
        state = initial_state(query, self.configuration.retry_budget)
        last: ResearchState = state
        try:
            async for snapshot in research_graph.astream(
                state, config=self.runnable_config(), stream_mode="values"
            ):
                last = snapshot
        except GraphRecursionError:
            logger.warning(
                f"Step ceiling of {self.configuration.recursion_limit} reached "
                f"in phase {last.get('phase')!r}, returning partial state"
            )
        return last

    async def research(self, query: str) -> ResearchResult:
        state = await self.run(query)
        result = build_result(query, state, self.configuration.max_synthesis_sources)
        logger.info(
            f"Deep research finished: {len(result.sources)} source(s), "
            f"{len(result.facts)} fact(s), answered={bool(result.answer)}"
        )
        return result
