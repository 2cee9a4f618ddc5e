"""
test_tools.py — Collaborator wrappers (completion, web search, vector store, knowledge base).

External clients are replaced with unittest.mock objects; nothing hits the network.
"""

import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from deep_research.errors import CompletionError, SearchError, VectorStoreError
from deep_research.tools import (
    CompletionService,
    KnowledgeBaseService,
    ResearchServices,
    VectorStoreService,
    WebSearchService,
    message_text,
    parse_json_response,
)
from deep_research.tools.base import SERVICES_KEY


# ── Completion ────────────────────────────────────────────────────────────────

def test_parse_json_response_strips_fences():
    assert parse_json_response('```json\n[{"a": 1}]\n```') == [{"a": 1}]
    assert parse_json_response('{"b": 2}') == {"b": 2}


def test_parse_json_response_raises_completion_error():
    with pytest.raises(CompletionError):
        parse_json_response("not json at all")


def test_message_text_flattens_content_blocks():
    blocks = [{"type": "text", "text": "Hello "}, {"type": "image"}, "world"]
    assert message_text(blocks) == "Hello world"
    assert message_text("plain") == "plain"


@pytest.mark.asyncio
async def test_completion_service_returns_stripped_text():
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=SimpleNamespace(content="  answer  "))
    service = CompletionService(model_name="m", llm=llm)

    assert await service.complete([{"role": "user", "content": "hi"}]) == "answer"


@pytest.mark.asyncio
async def test_completion_service_wraps_client_errors():
    llm = MagicMock()
    llm.ainvoke = AsyncMock(side_effect=RuntimeError("rate limited"))
    service = CompletionService(model_name="m", llm=llm)

    with pytest.raises(CompletionError, match="rate limited"):
        await service.complete([])


@pytest.mark.asyncio
async def test_complete_with_json():
    llm = MagicMock()
    llm.ainvoke = AsyncMock(return_value=SimpleNamespace(content='```json\n{"ok": true}\n```'))
    assert await CompletionService(llm=llm).complete_with_json([]) == {"ok": True}


# ── Web search ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_web_search_maps_results_to_pages():
    client = MagicMock()
    client.search.return_value = {
        "results": [
            {"url": "https://a.example", "title": "A", "raw_content": "# Full page", "content": "snippet"},
            {"url": "https://b.example", "title": "", "content": "snippet only"},
            {"title": "no url"},
        ]
    }
    service = WebSearchService(client=client)

    pages = await service.search("tax", limit=5)

    assert [(p.url, p.title, p.content) for p in pages] == [
        ("https://a.example", "A", "# Full page"),
        ("https://b.example", None, "snippet only"),
    ]
    kwargs = client.search.call_args.kwargs
    assert kwargs["max_results"] == 5
    assert kwargs["include_raw_content"] == "markdown"


@pytest.mark.asyncio
async def test_web_search_wraps_errors():
    client = MagicMock()
    client.search.side_effect = RuntimeError("quota exceeded")

    with pytest.raises(SearchError, match="quota exceeded"):
        await WebSearchService(client=client).search("tax")


@pytest.mark.asyncio
async def test_web_search_times_out():
    client = MagicMock()
    client.search.side_effect = lambda **kwargs: time.sleep(0.2) or {"results": []}

    with pytest.raises(SearchError, match="timed out"):
        await WebSearchService(client=client, timeout=0.05).search("tax")


# ── Vector store / knowledge base ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_disabled_stores_return_nothing():
    assert await VectorStoreService(enabled=False).search("q") == []
    assert await VectorStoreService(enabled=False).index_facts([]) == 0
    assert await KnowledgeBaseService(enabled=False).search("q") == []


def test_stores_disabled_without_env(monkeypatch):
    monkeypatch.delenv("VECTOR_STORE_ENABLED", raising=False)
    monkeypatch.delenv("KNOWLEDGE_BASE_ENABLED", raising=False)
    assert VectorStoreService().is_enabled() is False
    assert KnowledgeBaseService().is_enabled() is False


@pytest.mark.asyncio
async def test_vector_search_maps_rows():
    rows = [{"id": 7, "content": "fact", "content_type": "fact", "source_url": "https://f.example",
             "similarity": 0.81, "metadata": {"factType": "statistic"}}]
    with patch("deep_research.tools.rag_tool.embed_text", new_callable=AsyncMock) as mock_embed, \
         patch("deep_research.tools.rag_tool.call_rpc", new_callable=AsyncMock) as mock_rpc:
        mock_embed.return_value = [0.1] * 4
        mock_rpc.return_value = rows
        results = await VectorStoreService(enabled=True).search("q", content_types=["fact"])

    assert results[0].id == "7"
    assert results[0].similarity == 0.81
    assert mock_rpc.call_args.args[0] == "match_research_embeddings"
    assert mock_rpc.call_args.args[1]["content_types"] == ["fact"]


@pytest.mark.asyncio
async def test_vector_search_wraps_errors():
    with patch("deep_research.tools.rag_tool.embed_text", new_callable=AsyncMock) as mock_embed:
        mock_embed.side_effect = RuntimeError("embedding endpoint down")
        with pytest.raises(VectorStoreError):
            await VectorStoreService(enabled=True).search("q")


@pytest.mark.asyncio
async def test_knowledge_base_passes_country_filter():
    with patch("deep_research.tools.knowledge_base_tool.embed_text", new_callable=AsyncMock) as mock_embed, \
         patch("deep_research.tools.knowledge_base_tool.call_rpc", new_callable=AsyncMock) as mock_rpc:
        mock_embed.return_value = [0.2] * 4
        mock_rpc.return_value = [{"content": "Curated", "source_url": "https://kb.example"}]
        [result] = await KnowledgeBaseService(enabled=True).search("q", country="SE")

    assert result.content_type == "knowledge"
    assert mock_rpc.call_args.args[0] == "search_knowledge_base"
    assert mock_rpc.call_args.args[1]["filter_country"] == "SE"


# ── Services bundle ───────────────────────────────────────────────────────────

def test_services_resolved_from_runnable_config(services):
    config = {"configurable": {SERVICES_KEY: services}}
    assert ResearchServices.from_runnable_config(config) is services
