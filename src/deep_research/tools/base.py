"""
Collaborator bundle for the research pipeline.

Exports:
  ResearchServices            — completion, web search, vector store, knowledge base
  ResearchServices.from_env() — production wiring from environment variables
  ResearchServices.from_runnable_config() — resolve the bundle inside a graph node

Nodes never construct clients themselves; they read the bundle from
RunnableConfig['configurable']['services'] so tests can inject fakes and
every concurrent run can carry its own instances.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from langchain_core.runnables import RunnableConfig

from deep_research.configuration import ResearchConfiguration
from deep_research.tools.completion import CompletionService
from deep_research.tools.knowledge_base_tool import KnowledgeBaseService
from deep_research.tools.rag_tool import VectorStoreService
from deep_research.tools.web_search_tool import WebSearchService

SERVICES_KEY = "services"


@dataclass
class ResearchServices:
    completion: Any          # complete(messages) / complete_with_json(messages)
    web_search: Any          # search(query, *, limit, scrape_format)
    vector_store: Any        # is_enabled() / search(...) / index_*(...)
    knowledge_base: Any      # is_enabled() / search(query, *, limit, country)

    @classmethod
    def from_env(
        cls, configuration: Optional[ResearchConfiguration] = None
    ) -> "ResearchServices":
        cfg = configuration or ResearchConfiguration()
        return cls(
            completion=CompletionService(
                model_name=cfg.model_name, temperature=cfg.temperature
            ),
            web_search=WebSearchService(timeout=cfg.scrape_timeout),
            vector_store=VectorStoreService(),
            knowledge_base=KnowledgeBaseService(),
        )

    @classmethod
    def from_runnable_config(
        cls, config: Optional[RunnableConfig] = None
    ) -> "ResearchServices":
        configurable = (config or {}).get("configurable", {})
        services = configurable.get(SERVICES_KEY)
        if services is None:
            services = cls.from_env(ResearchConfiguration.from_runnable_config(config))
        return services
