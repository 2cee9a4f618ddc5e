from __future__ import annotations

from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing_extensions import TypedDict

from deep_research.errors import ErrorKind

FactType = Literal["statistic", "quote", "definition", "claim"]

ResearchPhase = Literal[
    "understanding",
    "planning",
    "searching",
    "analyzing",
    "synthesizing",
    "extracting",
    "complete",
    "error",
]


class _Record(BaseModel):
    """snake_case fields, camelCase on the wire (LLM JSON and caller payloads)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Reducers ──────────────────────────────────────────────────────────────────

def merge_dicts(a: dict, b: dict) -> dict:
    """Reducer: shallow-merge two dicts (b wins on key conflicts)."""
    return {**a, **b}


def merge_sources(
    existing: dict[str, "Source"], update: Optional[dict[str, "Source"]]
) -> dict[str, "Source"]:
    """Reducer for the raw-source map: keyed by URL, a re-fetched source
    replaces the stale copy, nothing is ever removed."""
    if not update:
        return existing
    return {**existing, **update}


# ── Sources and facts ─────────────────────────────────────────────────────────

class Source(_Record):
    """A retrieved page. ``id`` stays 0 until a result is built."""

    id: int = 0
    url: str
    title: str = ""
    content: Optional[str] = None
    summary: str = ""
    quality: float = Field(default=0.0, ge=0.0, le=1.0)


class ProcessedSource(Source):
    """A source after relevance scoring and compression."""

    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    extracted_sections: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    summarized: bool = False


class ExtractedFact(_Record):
    fact: str
    source_ids: list[int] = Field(default_factory=list)
    type: FactType = "claim"
    # Provenance by URL so ids can be re-mapped when sources are renumbered
    source_urls: list[str] = Field(default_factory=list)


class SubQuery(_Record):
    """An atomic factual question extracted from the research query."""

    question: str
    search_query: str
    answered: bool = False
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)

    def needs_search(self, min_confidence: float = 0.3) -> bool:
        return not self.answered or self.confidence < min_confidence


class ResearchResult(_Record):
    """Final output of one pipeline run. Immutable once returned."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    query: str
    answer: str = ""
    sources: list[Source] = Field(default_factory=list)
    facts: list[ExtractedFact] = Field(default_factory=list)
    follow_up_questions: list[str] = Field(default_factory=list)


class SectionResearchContext(_Record):
    facts: list[ExtractedFact] = Field(default_factory=list)
    sources: list[Source] = Field(default_factory=list)
    statistics: list[str] = Field(default_factory=list)
    quotes: list[str] = Field(default_factory=list)


# ── Collaborator payloads ─────────────────────────────────────────────────────

class Page(_Record):
    """One result of the web search+scrape service."""

    url: str
    title: Optional[str] = None
    content: str = ""


class SearchResult(_Record):
    """A vector-similarity or knowledge-base hit."""

    id: str = ""
    content: str
    content_type: Literal["page_chunk", "fact", "research_answer", "knowledge"] = "page_chunk"
    source_url: Optional[str] = None
    source_title: Optional[str] = None
    similarity: float = 0.0
    metadata: dict[str, Any] = Field(default_factory=dict)


# ── Outline ───────────────────────────────────────────────────────────────────

class OutlineSection(_Record):
    id: str
    heading: str
    description: str = ""
    subsections: list["OutlineSection"] = Field(default_factory=list)


class Outline(_Record):
    keyword: str
    sections: list[OutlineSection] = Field(default_factory=list)


# ── Gap analysis ──────────────────────────────────────────────────────────────

class ContentGap(_Record):
    topic: str = ""
    description: str = ""
    importance: Literal["high", "medium", "low"] = "medium"
    suggested_angle: str = ""


class GapAnalysisResult(_Record):
    gaps: list[ContentGap] = Field(default_factory=list)
    unique_angles: list[str] = Field(default_factory=list)
    competitor_weaknesses: list[str] = Field(default_factory=list)


# ── Whole-workflow output ─────────────────────────────────────────────────────

class DeepResearchState(_Record):
    """Topic result, per-section contexts and the single renumbered source list."""

    topic_research: ResearchResult
    gap_analysis: GapAnalysisResult = Field(default_factory=GapAnalysisResult)
    section_research: dict[str, SectionResearchContext] = Field(default_factory=dict)
    all_sources: list[Source] = Field(default_factory=list)
    citation_map: dict[str, int] = Field(default_factory=dict)


# ── Pipeline State (research state machine) ───────────────────────────────────

class ResearchState(TypedDict):
    """
    The record threaded through the research state machine. Every node
    returns a partial update; LangGraph merges it using the reducers below.
    """

    query: str
    understanding: str
    sub_queries: Optional[list[SubQuery]]

    # ── Searching ──────────────────────────────────────────────────────────────
    search_queries: list[str]
    current_search_index: int
    search_failures: int                              # failed queries in the current pass
    sources: Annotated[dict[str, Source], merge_sources]  # raw sources keyed by URL

    # ── Analysis / synthesis ───────────────────────────────────────────────────
    processed_sources: Optional[list[Source]]
    answer_sources: list[Source]                      # exactly what the answer cites, in order
    final_answer: str
    extracted_facts: list[ExtractedFact]
    follow_up_questions: list[str]

    # ── Control ────────────────────────────────────────────────────────────────
    phase: ResearchPhase
    error: Optional[str]
    error_kind: Optional[ErrorKind]
    retry_count: int
    max_retries: int


# ── Workflow State (topic + section fan-out) ──────────────────────────────────

class WorkflowState(TypedDict, total=False):
    keyword: str
    outline: Optional[Outline]
    options: Any                                      # ResearchOptions
    competitor_pages: list[Page]
    topic_research: ResearchResult
    gap_analysis: GapAnalysisResult
    section_research: Annotated[dict, merge_dicts]    # {section_id: SectionResearchContext}
    result: DeepResearchState


__all__ = [
    "FactType",
    "ResearchPhase",
    "merge_dicts",
    "merge_sources",
    "Source",
    "ProcessedSource",
    "ExtractedFact",
    "SubQuery",
    "ResearchResult",
    "SectionResearchContext",
    "Page",
    "SearchResult",
    "OutlineSection",
    "Outline",
    "ContentGap",
    "GapAnalysisResult",
    "DeepResearchState",
    "ResearchState",
    "WorkflowState",
]
