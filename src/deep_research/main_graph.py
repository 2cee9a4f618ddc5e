"""
main_graph.py — Top-level compiled graph for the deep research workflow.

Graph flow:
  START
    → topic_research      (research engine ∥ gap analysis, then index results)
    → section_research    (only when enabled and the outline has sections)
    → finalize            (renumber every source 1..N, remap citations)
    → END

Collaborators and configuration travel in RunnableConfig['configurable']
(see ResearchServices / ResearchConfiguration), so one compiled graph serves
any number of concurrent runs.

Exported `graph` at module level; run_deep_research() is the caller entry point.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from dotenv import load_dotenv
from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from deep_research.configuration import (
    ResearchConfiguration,
    ResearchOptions,
    merge_options,
)
from deep_research.engine import DeepResearchEngine
from deep_research.errors import describe_error
from deep_research.gap_analyzer import GapAnalyzer
from deep_research.schemas import (
    DeepResearchState,
    GapAnalysisResult,
    Outline,
    Page,
    ResearchResult,
    WorkflowState,
)
from deep_research.section_research import (
    add_knowledge_base_sources,
    build_research_state,
    local_topic_research,
    research_sections,
)
from deep_research.tools.base import SERVICES_KEY, ResearchServices

load_dotenv()

logger = logging.getLogger(__name__)

MIN_INDEXED_ANSWER_CHARS = 50


async def index_research_results(vector_store, keyword: str, research: ResearchResult) -> None:
    """Store facts and the answer for later semantic lookups. Never raises."""
    if not vector_store.is_enabled():
        return

    jobs = []
    if research.facts:
        jobs.append(vector_store.index_facts(research.facts))
    if research.answer and len(research.answer) > MIN_INDEXED_ANSWER_CHARS:
        primary_url = research.sources[0].url if research.sources else None
        jobs.append(vector_store.index_research_answer(keyword, research.answer, primary_url))
    if not jobs:
        return

    try:
        await asyncio.gather(*jobs)
    except Exception as exc:
        logger.warning(f"Failed to index research results: {describe_error(exc)}")
        return
    logger.info(f"Research results indexed for {keyword!r}: {len(research.facts)} fact(s)")


async def research_topic(
    keyword: str,
    competitor_pages: Sequence[Page],
    options: ResearchOptions,
    *,
    services: ResearchServices,
    configuration: ResearchConfiguration,
) -> tuple[ResearchResult, GapAnalysisResult]:
    if not options.enabled or not options.topic_level_research:
        logger.debug("Topic-level research disabled")
        return ResearchResult(query=keyword), GapAnalysisResult()

    logger.info(
        f"Starting topic-level research for {keyword!r} "
        f"({options.depth}, source={options.research_source})"
    )
    analyzer = GapAnalyzer(services.completion)
    if options.research_source == "knowledge_base":
        topic_job = local_topic_research(keyword, services)
    else:
        topic_job = DeepResearchEngine(options.depth, configuration, services).research(keyword)

    research, gaps = await asyncio.gather(
        topic_job,
        analyzer.analyze_gaps(keyword, list(competitor_pages)),
    )
    if options.research_source == "both":
        research = await add_knowledge_base_sources(research, services)
    logger.info(
        f"Topic-level research complete: {len(research.sources)} source(s), "
        f"{len(research.facts)} fact(s), {len(gaps.gaps)} gap(s)"
    )

    # local results already live in the stores
    if options.research_source != "knowledge_base":
        await index_research_results(services.vector_store, keyword, research)
    return research, gaps


# ── Nodes ─────────────────────────────────────────────────────────────────────

async def topic_research_node(state: WorkflowState, config: RunnableConfig) -> dict:
    research, gaps = await research_topic(
        state["keyword"],
        state.get("competitor_pages") or [],
        merge_options(state.get("options")),
        services=ResearchServices.from_runnable_config(config),
        configuration=ResearchConfiguration.from_runnable_config(config),
    )
    return {"topic_research": research, "gap_analysis": gaps}


async def section_research_node(state: WorkflowState, config: RunnableConfig) -> dict:
    results = await research_sections(
        state["outline"],
        state["topic_research"],
        merge_options(state.get("options")),
        services=ResearchServices.from_runnable_config(config),
        configuration=ResearchConfiguration.from_runnable_config(config),
    )
    return {"section_research": results}


async def finalize_node(state: WorkflowState) -> dict:
    result = build_research_state(
        state.get("topic_research") or ResearchResult(query=state["keyword"]),
        state.get("gap_analysis"),
        state.get("section_research") or {},
        include_citations=merge_options(state.get("options")).include_citations,
    )
    return {"result": result}


def route_after_topic(state: WorkflowState) -> str:
    options = merge_options(state.get("options"))
    outline = state.get("outline")
    if options.enabled and options.section_level_research and outline and outline.sections:
        return "section_research"
    return "finalize"


# ── Build graph ───────────────────────────────────────────────────────────────

def build_graph(checkpointer=None):
    """
    Build and compile the workflow graph.

    Args:
        checkpointer: optional LangGraph checkpointer. Runs are one-shot, so
                      none is attached by default.

    Returns:
        CompiledStateGraph ready for invocation.
    """
    builder = StateGraph(WorkflowState)

    builder.add_node("topic_research", topic_research_node)
    builder.add_node("section_research", section_research_node)
    builder.add_node("finalize", finalize_node)

    builder.add_edge(START, "topic_research")
    builder.add_conditional_edges(
        "topic_research", route_after_topic, ["section_research", "finalize"]
    )
    builder.add_edge("section_research", "finalize")
    builder.add_edge("finalize", END)

    return builder.compile(checkpointer=checkpointer)


async def run_deep_research(
    keyword: str,
    outline: Optional[Outline | dict] = None,
    *,
    options: Optional[ResearchOptions | dict] = None,
    competitor_pages: Optional[Sequence[Page | dict]] = None,
    services: Optional[ResearchServices] = None,
    configuration: Optional[ResearchConfiguration] = None,
) -> DeepResearchState:
    """Topic research, optional per-section research, and the final merge."""
    cfg = configuration or ResearchConfiguration()
    if isinstance(outline, dict):
        outline = Outline.model_validate(outline)
    pages = [p if isinstance(p, Page) else Page.model_validate(p) for p in competitor_pages or []]

    configurable = cfg.as_configurable()
    configurable[SERVICES_KEY] = services or ResearchServices.from_env(cfg)

    final = await graph.ainvoke(
        {
            "keyword": keyword,
            "outline": outline,
            "options": merge_options(options),
            "competitor_pages": pages,
            "section_research": {},
        },
        config={"configurable": configurable},
    )
    return final["result"]


# ── Module-level graph ────────────────────────────────────────────────────────
graph = build_graph()
