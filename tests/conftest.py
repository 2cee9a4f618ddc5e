"""
conftest.py — Shared pytest fixtures for the deep research pipeline tests.

Every collaborator is an in-memory fake injected through ResearchServices, so
no test touches OpenAI, Tavily, OVH or Supabase.
"""

import asyncio
import random
import re

import pytest

from deep_research.configuration import ResearchConfiguration
from deep_research.errors import CompletionError, SearchError
from deep_research.schemas import Page
from deep_research.tools.base import ResearchServices

_QUERY_LINE = re.compile(r'Query: "(.*?)"')
_QUESTION_LINE = re.compile(r'Question: "(.*?)"')
_NUMBERED = re.compile(r"^\[(\d+)\]", re.MULTILINE)


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


class FakeCompletion:
    """
    Answers each pipeline prompt with a deterministic, query-derived reply.

    `fail` names prompt kinds that raise CompletionError:
    understand, sub_queries, finding, summary, answer, facts, follow_ups, gaps,
    recommendations, subtopics.
    """

    def __init__(self, *, fail=(), sub_queries=None, facts=None, gaps=None, delay=0.0):
        self.fail = set(fail)
        self.sub_queries = sub_queries
        self.facts = facts
        self.gaps = gaps
        self.delay = delay
        self.calls: list[str] = []

    @staticmethod
    def kind(messages) -> str:
        system = messages[0]["content"]
        if "Analyze this search query" in system:
            return "understand"
        if "Extract the individual factual questions" in system:
            return "sub_queries"
        if "Extract ONE key finding" in system:
            return "finding"
        if "extract the most relevant information from a webpage" in system:
            return "summary"
        if "Answer the user's question" in system:
            return "answer"
        if "Extract specific facts" in system:
            return "facts"
        if "follow-up questions" in system:
            return "follow_ups"
        if "specific recommendations" in system:
            return "recommendations"
        if "headings from competitor articles" in system:
            return "subtopics"
        if "content gaps" in system:
            return "gaps"
        return "unknown"

    async def _enter(self, messages) -> tuple[str, str]:
        kind = self.kind(messages)
        self.calls.append(kind)
        if self.delay:
            await asyncio.sleep(random.uniform(0, self.delay))
        if kind in self.fail:
            raise CompletionError(f"{kind} unavailable")
        return kind, messages[-1]["content"]

    async def complete(self, messages) -> str:
        kind, user = await self._enter(messages)
        if kind == "understand":
            return "The user wants to learn about the topic."
        if kind == "finding":
            return "Key finding from the page."
        if kind == "summary":
            return user.split("\n", 1)[-1][:300]
        if kind == "answer":
            question = _QUESTION_LINE.search(user).group(1)
            cited = " ".join(f"[{n}]" for n in _NUMBERED.findall(user))
            return f"Answer about {question}, drawn from the numbered sources. {cited}".strip()
        if kind == "follow_ups":
            return "1. What changed recently?\n- Who regulates it?\n* How is it enforced?\nWhat next?"
        return ""

    async def complete_with_json(self, messages):
        kind, user = await self._enter(messages)
        if kind == "sub_queries":
            if self.sub_queries is not None:
                return self.sub_queries
            query = _QUERY_LINE.search(user).group(1)
            return [{"question": query, "searchQuery": query}]
        if kind == "facts":
            if self.facts is not None:
                return self.facts
            query = _QUERY_LINE.search(user).group(1)
            return [
                {"fact": f"{query} :: statistic", "sourceIds": [1], "type": "statistic"},
                {"fact": f"{query} :: quote", "sourceIds": [1, 99], "type": "quote"},
            ]
        if kind == "gaps":
            return self.gaps if self.gaps is not None else {
                "gaps": [], "uniqueAngles": [], "competitorWeaknesses": []
            }
        if kind == "recommendations":
            return ["Compare licence fees", "Add a tax table"]
        if kind == "subtopics":
            return [line for line in user.splitlines()[1:] if line][:8]
        return []


class FakeWebSearch:
    """Returns `pages` for every query, or query-derived pages when none are given."""

    def __init__(self, pages=None, *, fail=False, delay=0.0):
        self.pages = pages
        self.fail = fail
        self.delay = delay
        self.calls: list[str] = []

    async def search(self, query, *, limit=5, scrape_format="markdown"):
        self.calls.append(query)
        if self.delay:
            await asyncio.sleep(random.uniform(0, self.delay))
        if self.fail:
            raise SearchError(query, "service unavailable")
        if self.pages is not None:
            return list(self.pages)[:limit]
        slug = _slug(query)
        return [
            Page(
                url=f"https://example.com/{slug}/{i}",
                title=f"{query} page {i}",
                content=f"{query}. " * 10,
            )
            for i in range(1, 3)
        ][:limit]


class FakeVectorStore:
    def __init__(self, *, enabled=False, results=None, fact_results=None, fail=False):
        self.enabled = enabled
        self.results = results or []
        self.fact_results = fact_results or []
        self.fail = fail
        self.indexed_facts: list = []
        self.indexed_answers: list[tuple] = []

    def is_enabled(self):
        return self.enabled

    async def search(self, query, *, limit=10, content_types=None, similarity_threshold=0.6):
        if self.fail:
            raise RuntimeError("vector store down")
        if content_types == ["fact"]:
            return list(self.fact_results)
        return list(self.results)

    async def index_facts(self, facts):
        self.indexed_facts.extend(facts)
        return len(facts)

    async def index_research_answer(self, query, answer, source_url=None):
        self.indexed_answers.append((query, answer, source_url))


class FakeKnowledgeBase:
    def __init__(self, *, enabled=False, results=None, fail=False):
        self.enabled = enabled
        self.results = results or []
        self.fail = fail

    def is_enabled(self):
        return self.enabled

    async def search(self, query, *, limit=5, country=None):
        if self.fail:
            raise RuntimeError("knowledge base down")
        return list(self.results)[:limit]


@pytest.fixture
def fake_completion():
    return FakeCompletion()


@pytest.fixture
def fake_search():
    return FakeWebSearch()


@pytest.fixture
def services(fake_completion, fake_search):
    return ResearchServices(
        completion=fake_completion,
        web_search=fake_search,
        vector_store=FakeVectorStore(),
        knowledge_base=FakeKnowledgeBase(),
    )


@pytest.fixture
def configuration():
    return ResearchConfiguration(model_name="test-model", summarize_sources=False)


@pytest.fixture
def node_config(services, configuration):
    """RunnableConfig for calling node functions directly."""
    configurable = configuration.as_configurable()
    configurable["services"] = services
    return {"configurable": configurable}
