from deep_research.tools.base import SERVICES_KEY, ResearchServices
from deep_research.tools.completion import (
    CompletionService,
    message_text,
    parse_json_response,
)
from deep_research.tools.knowledge_base_tool import KnowledgeBaseService
from deep_research.tools.rag_tool import VectorStoreService, embed_text
from deep_research.tools.web_search_tool import WebSearchService

__all__ = [
    # Collaborators
    "CompletionService",
    "WebSearchService",
    "VectorStoreService",
    "KnowledgeBaseService",
    # Bundle
    "ResearchServices",
    "SERVICES_KEY",
    # Helpers
    "embed_text",
    "message_text",
    "parse_json_response",
]
