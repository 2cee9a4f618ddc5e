"""
section_research.py — Per-section research fan-out and the final merge.

For every node of the outline (depth-first) a shallower research engine run is
combined with three supplementary lookups:

  knowledge base   curated entries, quality 0.9
  vector cache     previously indexed page chunks / facts, quality 0.7
  topic facts      facts from the topic-level result relevant to the heading

Sections run concurrently behind a semaphore. Each run owns its own engine
state, and results are only combined after every section has returned.

build_research_state() is the single place where source ids become final:
every unique source across topic + sections is renumbered 1..N and facts and
answer citations are re-mapped through their source URLs.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Iterable, Optional, Sequence

from deep_research.configuration import (
    ResearchConfiguration,
    ResearchOptions,
    merge_options,
    section_depth,
)
from deep_research.engine import DeepResearchEngine
from deep_research.errors import describe_error
from deep_research.schemas import (
    DeepResearchState,
    ExtractedFact,
    GapAnalysisResult,
    Outline,
    OutlineSection,
    ResearchResult,
    SearchResult,
    SectionResearchContext,
    Source,
)
from deep_research.tools.base import ResearchServices

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE_QUALITY = 0.9
SEMANTIC_CACHE_QUALITY = 0.7
SIMILARITY_THRESHOLD = 0.6
KNOWLEDGE_BASE_FACTS = 3
TOPIC_FACTS = 2
SEMANTIC_FACTS = 2
SEMANTIC_FACT_CHARS = 500
LOCAL_TOPIC_KB_RESULTS = 15
COMBINED_TOPIC_KB_RESULTS = 10

_CITATION = re.compile(r"(\s?)\[(\d+)\]")


# ── Outline helpers ───────────────────────────────────────────────────────────

def flatten_sections(sections: Sequence[OutlineSection]) -> list[OutlineSection]:
    """Depth-first, parent before its subsections."""
    flattened: list[OutlineSection] = []
    for section in sections:
        flattened.append(section)
        if section.subsections:
            flattened.extend(flatten_sections(section.subsections))
    return flattened


def build_section_query(keyword: str, section: OutlineSection) -> str:
    return f"{keyword} {section.heading} {section.description or ''}".strip()


# ── Source / fact combination ─────────────────────────────────────────────────

def merge_by_url(
    local_sources: Iterable[Source], topic_sources: Iterable[Source]
) -> dict[str, Source]:
    """
    One entry per URL. A later local entry replaces an earlier one with the
    same URL; topic sources only fill URLs not already present.
    """
    by_url: dict[str, Source] = {}
    for source in local_sources:
        by_url[source.url] = source
    for source in topic_sources:
        by_url.setdefault(source.url, source)
    return by_url


def combine_sources(
    local_sources: Iterable[Source],
    topic_sources: Iterable[Source],
    max_sources: int,
) -> list[Source]:
    """merge_by_url, sorted by quality (stable on ties) and truncated to max_sources."""
    by_url = merge_by_url(local_sources, topic_sources)
    return sorted(by_url.values(), key=lambda s: s.quality, reverse=True)[:max_sources]


def include_cited_sources(
    sources: Sequence[Source],
    facts: Sequence[ExtractedFact],
    candidates: dict[str, Source],
) -> list[Source]:
    """Append candidates a kept fact cites that the per-section limit cut."""
    present = {s.url for s in sources}
    missing = [
        url for fact in facts for url in fact.source_urls
        if url not in present and url in candidates
    ]
    return [*sources, *(candidates[url] for url in dict.fromkeys(missing))]


def find_relevant_facts(
    facts: Sequence[ExtractedFact], heading: str, description: str = ""
) -> list[ExtractedFact]:
    """Facts containing any heading/description term longer than 3 chars."""
    terms = [t for t in re.split(r"\W+", f"{heading} {description}".lower()) if len(t) > 3]
    return [f for f in facts if any(term in f.fact.lower() for term in terms)]


def _result_fact(result: SearchResult, max_chars: Optional[int] = None) -> ExtractedFact:
    fact_type = "claim"
    if result.content_type == "fact":
        fact_type = result.metadata.get("factType") or result.metadata.get("fact_type") or "claim"
        if fact_type not in ("statistic", "quote", "definition", "claim"):
            fact_type = "claim"
    content = result.content if max_chars is None else result.content[:max_chars]
    return ExtractedFact(
        fact=content,
        type=fact_type,
        source_urls=[result.source_url] if result.source_url else [],
    )


async def find_relevant_facts_semantic(
    vector_store,
    facts: Sequence[ExtractedFact],
    heading: str,
    description: str = "",
) -> list[ExtractedFact]:
    """Vector search over indexed facts, keyword match over topic facts as fallback."""
    if vector_store.is_enabled():
        try:
            results = await vector_store.search(
                f"{heading} {description}".strip(),
                limit=5,
                content_types=["fact"],
                similarity_threshold=SIMILARITY_THRESHOLD,
            )
            if results:
                return [_result_fact(r) for r in results]
        except Exception as exc:
            logger.debug(f"Semantic fact search failed, using keyword fallback: {describe_error(exc)}")
    return find_relevant_facts(facts, heading, description)


def convert_knowledge_base_results(
    results: Sequence[SearchResult],
) -> tuple[list[ExtractedFact], list[Source]]:
    facts: list[ExtractedFact] = []
    sources: dict[str, Source] = {}
    for result in results:
        facts.append(ExtractedFact(
            fact=result.content,
            type="claim",
            source_urls=[result.source_url] if result.source_url else [],
        ))
        if result.source_url and result.source_url not in sources:
            meta = result.metadata
            sources[result.source_url] = Source(
                url=result.source_url,
                title=result.source_title or meta.get("entityName") or "Knowledge Base",
                summary=f"{meta.get('country') or ''} {meta.get('field') or ''}".strip(),
                quality=KNOWLEDGE_BASE_QUALITY,
            )
    return facts, list(sources.values())


def convert_semantic_results(
    results: Sequence[SearchResult],
) -> tuple[list[ExtractedFact], list[Source]]:
    facts: list[ExtractedFact] = []
    sources: dict[str, Source] = {}
    for result in results:
        if result.content_type not in ("page_chunk", "fact"):
            continue
        facts.append(_result_fact(result, SEMANTIC_FACT_CHARS))
        if result.source_url and result.source_url not in sources:
            sources[result.source_url] = Source(
                url=result.source_url,
                title=result.source_title or "Cached Source",
                summary=result.content[:100],
                quality=SEMANTIC_CACHE_QUALITY,
            )
    return facts, list(sources.values())


# ── Supplementary lookups (never fatal) ───────────────────────────────────────

async def knowledge_base_results(knowledge_base, query: str, limit: int = 5) -> list[SearchResult]:
    if not knowledge_base.is_enabled():
        return []
    try:
        return await knowledge_base.search(query, limit=limit)
    except Exception as exc:
        logger.debug(f"Knowledge base search failed: {describe_error(exc)}")
        return []


async def semantic_results(vector_store, query: str) -> list[SearchResult]:
    if not vector_store.is_enabled():
        return []
    try:
        return await vector_store.search(
            query,
            limit=10,
            content_types=["page_chunk", "fact"],
            similarity_threshold=SIMILARITY_THRESHOLD,
        )
    except Exception as exc:
        logger.debug(f"Semantic search failed: {describe_error(exc)}")
        return []


# ── Topic research from local stores ──────────────────────────────────────────

def _numbered(sources: Sequence[Source], start: int = 1) -> list[Source]:
    return [s.model_copy(update={"id": i}) for i, s in enumerate(sources, start=start)]


async def local_topic_research(keyword: str, services: ResearchServices) -> ResearchResult:
    """
    Topic result from the knowledge base and the vector cache, no web search.

    Cache entries repeating a knowledge base entry are skipped. There is no
    synthesized answer.
    """
    kb_results = await knowledge_base_results(
        services.knowledge_base, keyword, limit=LOCAL_TOPIC_KB_RESULTS
    )
    kb_contents = {r.content for r in kb_results}
    cached_results = [
        r for r in await semantic_results(services.vector_store, keyword)
        if r.content not in kb_contents
    ]

    kb_facts, kb_sources = convert_knowledge_base_results(kb_results)
    cached_facts, cached_sources = convert_semantic_results(cached_results)
    sources = sorted(
        merge_by_url([*kb_sources, *cached_sources], []).values(),
        key=lambda s: s.quality,
        reverse=True,
    )
    logger.info(
        f"Local topic research for {keyword!r}: {len(kb_results)} knowledge base, "
        f"{len(cached_results)} cached result(s)"
    )
    return ResearchResult(
        query=keyword,
        sources=_numbered(sources),
        facts=[*kb_facts, *cached_facts],
    )


async def add_knowledge_base_sources(
    research: ResearchResult, services: ResearchServices
) -> ResearchResult:
    """Append knowledge base sources for URLs the live result does not have."""
    results = await knowledge_base_results(
        services.knowledge_base, research.query, limit=COMBINED_TOPIC_KB_RESULTS
    )
    _, kb_sources = convert_knowledge_base_results(results)
    present = {s.url for s in research.sources}
    extra = [s for s in kb_sources if s.url not in present]
    if not extra:
        return research
    logger.debug(f"Adding {len(extra)} knowledge base source(s) to topic research")
    return research.model_copy(update={
        "sources": [*research.sources, *_numbered(extra, start=len(research.sources) + 1)],
    })


# ── Section research ──────────────────────────────────────────────────────────

async def research_section(
    section: OutlineSection,
    keyword: str,
    topic_research: ResearchResult,
    depth: str,
    *,
    services: ResearchServices,
    configuration: Optional[ResearchConfiguration] = None,
    live_search: bool = True,
) -> SectionResearchContext:
    """
    Research one outline node. Any failure yields an empty context.

    With live_search off only the knowledge base, the vector cache and the
    topic facts are consulted.
    """
    cfg = configuration or ResearchConfiguration()
    logger.debug(f"Researching section {section.id}: {section.heading!r}")

    try:
        query = build_section_query(keyword, section)
        kb_results = await knowledge_base_results(services.knowledge_base, query)
        cached_results = await semantic_results(services.vector_store, query)

        if live_search:
            engine = DeepResearchEngine(section_depth(depth), cfg, services)
            live = await engine.research(query)
        else:
            live = ResearchResult(query=query)

        topic_facts = await find_relevant_facts_semantic(
            services.vector_store, topic_research.facts, section.heading, section.description
        )
        kb_facts, kb_sources = convert_knowledge_base_results(kb_results)
        cached_facts, cached_sources = convert_semantic_results(cached_results)

        local_sources = [*kb_sources, *cached_sources, *live.sources]
        facts = [
            *kb_facts[:KNOWLEDGE_BASE_FACTS],
            *live.facts[: cfg.max_facts_per_section],
            *topic_facts[:TOPIC_FACTS],
            *cached_facts[:SEMANTIC_FACTS],
        ]
        sources = include_cited_sources(
            combine_sources(local_sources, topic_research.sources, cfg.max_sources_per_section),
            facts,
            merge_by_url(local_sources, topic_research.sources),
        )
    except Exception as exc:
        logger.warning(f"Section research failed for {section.id}: {describe_error(exc)}")
        return SectionResearchContext()

    if kb_results:
        logger.debug(f"Knowledge base returned {len(kb_results)} result(s) for {section.id}")
    if cached_results:
        logger.debug(f"Semantic cache returned {len(cached_results)} result(s) for {section.id}")

    return SectionResearchContext(
        facts=facts,
        sources=sources,
        statistics=[f.fact for f in facts if f.type == "statistic"],
        quotes=[f.fact for f in facts if f.type == "quote"],
    )


async def research_sections(
    outline: Outline,
    topic_research: ResearchResult,
    options: Optional[ResearchOptions | dict] = None,
    *,
    services: ResearchServices,
    configuration: Optional[ResearchConfiguration] = None,
) -> dict[str, SectionResearchContext]:
    """Research every outline node, at most `section_concurrency` at a time."""
    resolved = merge_options(options)
    if not resolved.enabled or not resolved.section_level_research:
        logger.debug("Section-level research disabled")
        return {}

    cfg = configuration or ResearchConfiguration()
    sections = flatten_sections(outline.sections)
    logger.info(f"Starting section-level research for {len(sections)} section(s)")

    semaphore = asyncio.Semaphore(max(1, cfg.section_concurrency))

    async def _bounded(section: OutlineSection) -> SectionResearchContext:
        async with semaphore:
            return await research_section(
                section,
                outline.keyword,
                topic_research,
                resolved.depth,
                services=services,
                configuration=cfg,
                live_search=resolved.research_source != "knowledge_base",
            )

    contexts = await asyncio.gather(*(_bounded(s) for s in sections))
    results = {section.id: context for section, context in zip(sections, contexts)}
    logger.info(f"Section-level research complete: {len(results)} section(s)")
    return results


# ── Final merge ───────────────────────────────────────────────────────────────

def remap_fact(fact: ExtractedFact, citation_map: dict[str, int]) -> ExtractedFact:
    """Final ids for the fact's source URLs; source_urls are kept either way."""
    ids = [citation_map[url] for url in fact.source_urls if url in citation_map]
    return fact.model_copy(update={"source_ids": list(dict.fromkeys(ids))})


def rewrite_citations(answer: str, old_sources: Sequence[Source], citation_map: dict[str, int]) -> str:
    """
    Replace every [n] that points at old_sources[n-1] with its final id.

    Markers with no matching source are removed together with one preceding
    space, so they cannot collide with a renumbered id.
    """
    substitutions = {
        source.id: citation_map[source.url]
        for source in old_sources
        if source.url in citation_map
    }

    def _replace(match: re.Match) -> str:
        old = int(match.group(2))
        if old in substitutions:
            return f"{match.group(1)}[{substitutions[old]}]"
        logger.debug(f"Dropping citation [{old}] with no matching source")
        return ""

    return _CITATION.sub(_replace, answer)


def build_research_state(
    topic_research: ResearchResult,
    gap_analysis: Optional[GapAnalysisResult],
    section_research: dict[str, SectionResearchContext],
    include_citations: bool = True,
) -> DeepResearchState:
    """
    Renumber every unique source 1..N (best quality first) and re-map fact ids
    and topic answer markers through citation_map.

    With include_citations off the answer carries no [n] markers and facts no
    source_ids; all_sources and citation_map are still built.
    """
    by_url: dict[str, Source] = {}
    for source in topic_research.sources:
        by_url.setdefault(source.url, source)
    for context in section_research.values():
        for source in context.sources:
            by_url.setdefault(source.url, source)

    ranked = sorted(by_url.values(), key=lambda s: s.quality, reverse=True)
    all_sources = _numbered(ranked)
    citation_map = {s.url: s.id for s in all_sources}

    def _renumber(sources: Sequence[Source]) -> list[Source]:
        return [s.model_copy(update={"id": citation_map[s.url]}) for s in sources]

    fact_map = citation_map if include_citations else {}
    cited_sources = topic_research.sources if include_citations else []

    topic = topic_research.model_copy(update={
        "answer": rewrite_citations(topic_research.answer, cited_sources, citation_map),
        "sources": _renumber(topic_research.sources),
        "facts": [remap_fact(f, fact_map) for f in topic_research.facts],
    })
    sections = {
        section_id: context.model_copy(update={
            "sources": _renumber(context.sources),
            "facts": [remap_fact(f, fact_map) for f in context.facts],
        })
        for section_id, context in section_research.items()
    }

    logger.debug(f"Merged {len(all_sources)} unique source(s) across topic and sections")
    return DeepResearchState(
        topic_research=topic,
        gap_analysis=gap_analysis or GapAnalysisResult(),
        section_research=sections,
        all_sources=all_sources,
        citation_map=citation_map,
    )
