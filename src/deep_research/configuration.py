import os
from dataclasses import dataclass, field
from typing import Literal, Optional

from langchain_core.runnables import RunnableConfig
from pydantic import BaseModel

ResearchDepth = Literal["shallow", "standard", "deep"]
ResearchSource = Literal["internet", "knowledge_base", "both"]


# ── Depth presets ─────────────────────────────────────────────────────────────
# searches per research phase, pages per search, retry budget

DEPTH_PRESETS: dict[str, dict[str, int]] = {
    "shallow": {"search_queries": 1, "sources_per_search": 4, "max_retries": 1},
    "standard": {"search_queries": 3, "sources_per_search": 6, "max_retries": 2},
    "deep": {"search_queries": 5, "sources_per_search": 8, "max_retries": 3},
}


def get_depth_config(depth: str) -> dict[str, int]:
    return DEPTH_PRESETS.get(depth, DEPTH_PRESETS["standard"])


def section_depth(depth: str) -> ResearchDepth:
    """Sections run one tier shallower than the topic-level research."""
    return "standard" if depth == "deep" else "shallow"


@dataclass(kw_only=True)
class ResearchConfiguration:
    """Runtime configuration injected via thread config (RunnableConfig['configurable'])."""

    model_name: str = field(
        default_factory=lambda: os.getenv("DEEP_RESEARCH_MODEL", "gpt-4o-mini")
    )
    temperature: float = 0.0
    depth: ResearchDepth = "standard"
    max_retries: Optional[int] = None  # None → depth preset
    recursion_limit: int = 35

    # Searching
    min_content_length: int = 100
    min_answer_confidence: float = 0.3
    scrape_timeout: float = field(
        default_factory=lambda: float(os.getenv("DEEP_RESEARCH_SCRAPE_TIMEOUT", "15"))
    )

    # Context processing
    summarize_sources: bool = True
    summary_concurrency: int = 5
    context_window_size: int = 500
    min_chars_per_source: int = 2000
    max_chars_per_source: int = 15000
    max_synthesis_sources: int = 10

    # Section research
    section_concurrency: int = 3
    max_facts_per_section: int = 5
    max_sources_per_section: int = 3

    @property
    def depth_preset(self) -> dict[str, int]:
        return get_depth_config(self.depth)

    @property
    def retry_budget(self) -> int:
        if self.max_retries is not None:
            return self.max_retries
        return self.depth_preset["max_retries"]

    @classmethod
    def from_runnable_config(
        cls, config: Optional[RunnableConfig] = None
    ) -> "ResearchConfiguration":
        configurable = (config or {}).get("configurable", {})
        return cls(
            **{k: v for k, v in configurable.items() if k in cls.__dataclass_fields__}
        )

    def as_configurable(self) -> dict:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


# ── Caller-facing options ─────────────────────────────────────────────────────

class ResearchOptions(BaseModel):
    """Per-request switches supplied by the batch caller."""

    enabled: bool = True
    depth: ResearchDepth = "standard"
    topic_level_research: bool = True
    section_level_research: bool = True
    include_citations: bool = True
    research_source: ResearchSource = "internet"


def merge_options(options: Optional[ResearchOptions | dict] = None) -> ResearchOptions:
    if options is None:
        return ResearchOptions()
    if isinstance(options, ResearchOptions):
        merged = options.model_copy()
    else:
        merged = ResearchOptions(**options)

    # Section research builds on the topic-level result
    if merged.section_level_research and not merged.topic_level_research:
        merged.topic_level_research = True
    return merged
