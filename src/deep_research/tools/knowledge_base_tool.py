"""
Curated knowledge-base lookup.

Hybrid search (BGE-M3 vector similarity + full-text) over curated entries
via the `search_knowledge_base` Supabase RPC. Results carry citations
(source_url / source_title) and entity metadata such as country and field.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from deep_research.errors import VectorStoreError, describe_error
from deep_research.schemas import SearchResult
from deep_research.tools.rag_tool import call_rpc, embed_text, row_to_result

logger = logging.getLogger(__name__)


class KnowledgeBaseService:
    def __init__(self, enabled: Optional[bool] = None):
        if enabled is None:
            enabled = (
                os.getenv("KNOWLEDGE_BASE_ENABLED", "false").strip().lower() in ("1", "true", "yes")
                and bool(os.getenv("SUPABASE_URL"))
            )
        self._enabled = enabled

    def is_enabled(self) -> bool:
        return self._enabled

    async def search(
        self,
        query: str,
        *,
        limit: int = 5,
        country: Optional[str] = None,
    ) -> list[SearchResult]:
        if not self._enabled:
            return []
        params = {
            "query_embedding": None,
            "query_text": query,
            "match_count": min(limit, 20),
        }
        if country:
            params["filter_country"] = country
        try:
            params["query_embedding"] = await embed_text(query)
            rows = await call_rpc("search_knowledge_base", params)
        except Exception as exc:
            raise VectorStoreError("knowledge_base", describe_error(exc)) from exc
        logger.debug(f"Knowledge base returned {len(rows)} row(s) for {query!r}")
        return [row_to_result(row, default_type="knowledge") for row in rows]
