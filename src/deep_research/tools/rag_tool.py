"""
Vector-similarity service over previously researched content.

Stores page chunks, extracted facts and research answers with BGE-M3
embeddings in Supabase (pgvector) and queries them through the
`match_research_embeddings` RPC.

Embedding:
  - Model : BAAI/bge-m3  (1024 dims)
  - Client: OVH AI Endpoints HTTP API  (no local model — no download required)
  - URL   : OVH_EMBEDDING_ENDPOINT_URL  (defaults to OVH BGE-M3 endpoint)
  - Auth  : Bearer OVH_KEY

Supabase calls:
  - Sync supabase-py client called via asyncio.run_in_executor for async safety.

The service is optional: callers check is_enabled() and skip it when off.
"""

from __future__ import annotations

import asyncio
import logging
import os
from functools import lru_cache
from typing import Iterable, Optional

import aiohttp
from supabase import Client, create_client

from deep_research.errors import VectorStoreError, describe_error
from deep_research.schemas import ExtractedFact, SearchResult

logger = logging.getLogger(__name__)

_OVH_EMBEDDING_URL_DEFAULT = "https://bge-m3.endpoints.kepler.ai.cloud.ovh.net/api/text2vec"
_EMBEDDINGS_TABLE = "research_embeddings"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


# ── OVH Embedding API ─────────────────────────────────────────────────────────

def _get_ovh_token() -> str:
    """Return OVH auth token. OVH_KEY is the primary; falls back to OVH_AI_ENDPOINTS_ACCESS_TOKEN."""
    token = os.getenv("OVH_KEY") or os.getenv("OVH_AI_ENDPOINTS_ACCESS_TOKEN")
    if not token:
        raise EnvironmentError(
            "OVH auth token not found. Set OVH_KEY in your .env file."
        )
    return token


async def embed_text(text: str, session: Optional[aiohttp.ClientSession] = None) -> list[float]:
    """
    Call the OVH BGE-M3 embedding endpoint and return a 1024-dim dense vector.

    Response : [[float, ...]]  (HuggingFace inference API format — batch of one)
               or a bare [float, ...] vector.
    """
    url = os.getenv("OVH_EMBEDDING_ENDPOINT_URL", _OVH_EMBEDDING_URL_DEFAULT)
    headers = {
        "Authorization": f"Bearer {_get_ovh_token()}",
        "Content-Type": "application/json",
    }

    async def _post(s: aiohttp.ClientSession):
        async with s.post(url, headers=headers, json={"inputs": text}) as resp:
            resp.raise_for_status()
            return await resp.json()

    if session is not None:
        result = await _post(session)
    else:
        async with aiohttp.ClientSession() as own_session:
            result = await _post(own_session)

    if isinstance(result, list) and len(result) > 0 and isinstance(result[0], list):
        return result[0]
    return result


# ── Supabase client (cached sync, called via executor) ────────────────────────

@lru_cache(maxsize=1)
def get_supabase() -> Client:
    return create_client(
        os.getenv("SUPABASE_URL"),
        os.getenv("SUPABASE_SERVICE_KEY"),
    )


async def call_rpc(func_name: str, params: dict) -> list[dict]:
    """Execute a Supabase RPC call in a thread executor (non-blocking)."""
    client = get_supabase()
    loop = asyncio.get_event_loop()
    response = await loop.run_in_executor(
        None,
        lambda: client.rpc(func_name, params).execute(),
    )
    return response.data or []


def row_to_result(row: dict, default_type: str = "page_chunk") -> SearchResult:
    return SearchResult(
        id=str(row.get("id", "")),
        content=row.get("content", ""),
        content_type=row.get("content_type") or default_type,
        source_url=row.get("source_url"),
        source_title=row.get("source_title"),
        similarity=float(row.get("similarity") or row.get("score") or 0.0),
        metadata=row.get("metadata") or {},
    )


class VectorStoreService:
    def __init__(self, enabled: Optional[bool] = None):
        if enabled is None:
            enabled = _env_flag("VECTOR_STORE_ENABLED") and bool(os.getenv("SUPABASE_URL"))
        self._enabled = enabled

    def is_enabled(self) -> bool:
        return self._enabled

    async def search(
        self,
        query: str,
        *,
        limit: int = 10,
        content_types: Optional[list[str]] = None,
        similarity_threshold: float = 0.6,
    ) -> list[SearchResult]:
        if not self._enabled:
            return []
        try:
            embedding = await embed_text(query)
            rows = await call_rpc(
                "match_research_embeddings",
                {
                    "query_embedding": embedding,
                    "match_count": min(limit, 20),
                    "content_types": content_types or ["page_chunk", "fact"],
                    "similarity_threshold": similarity_threshold,
                },
            )
        except Exception as exc:
            raise VectorStoreError("search", describe_error(exc)) from exc
        return [row_to_result(row) for row in rows]

    async def _insert(self, rows: list[dict]) -> None:
        client = get_supabase()
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(
            None,
            lambda: client.table(_EMBEDDINGS_TABLE).insert(rows).execute(),
        )

    async def index_facts(self, facts: Iterable[ExtractedFact]) -> int:
        """Embed and store extracted facts. Returns the number of rows written."""
        if not self._enabled:
            return 0
        rows: list[dict] = []
        try:
            async with aiohttp.ClientSession() as session:
                for fact in facts:
                    rows.append({
                        "content": fact.fact,
                        "content_type": "fact",
                        "embedding": await embed_text(fact.fact, session),
                        "source_url": fact.source_urls[0] if fact.source_urls else None,
                        "metadata": {"factType": fact.type},
                    })
            if rows:
                await self._insert(rows)
        except Exception as exc:
            raise VectorStoreError("index_facts", describe_error(exc)) from exc
        return len(rows)

    async def index_research_answer(
        self, query: str, answer: str, source_url: Optional[str] = None
    ) -> None:
        if not self._enabled:
            return
        content = f"Question: {query}\n\nAnswer: {answer}"
        try:
            await self._insert([{
                "content": content,
                "content_type": "research_answer",
                "embedding": await embed_text(content),
                "source_url": source_url,
                "metadata": {"query": query},
            }])
        except Exception as exc:
            raise VectorStoreError("index_research_answer", describe_error(exc)) from exc
