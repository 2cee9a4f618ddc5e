"""
synthesizer.py — Cited answer, fact extraction and follow-up questions.

synthesize_node: top-ranked processed sources → markdown answer citing [1..N].
                 The exact list it numbered is stored as answer_sources.
extract_node:    facts + follow-ups, both best-effort; always completes.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from langchain_core.runnables import RunnableConfig
from pydantic import ValidationError

from deep_research.configuration import ResearchConfiguration
from deep_research.errors import ErrorKind, describe_error
from deep_research.prompts import (
    ANSWER_PROMPT,
    FACT_EXTRACTION_PROMPT,
    FOLLOW_UP_PROMPT,
    date_context,
)
from deep_research.schemas import ExtractedFact, ResearchState, Source
from deep_research.tools.base import ResearchServices

logger = logging.getLogger(__name__)

ANSWER_SOURCE_CHARS = 3000
FACT_SOURCE_CHARS = 500
FOLLOW_UP_ANSWER_CHARS = 1000
MAX_FOLLOW_UPS = 3

_LIST_MARKER = re.compile(r"^(?:[-*•]+|\d+[.)])\s*")


# ── Completion helpers ────────────────────────────────────────────────────────

def format_numbered_sources(sources: Sequence[Source]) -> str:
    blocks = []
    for i, source in enumerate(sources, start=1):
        if not source.content:
            blocks.append(f"[{i}] {source.title}\n[No content available]")
        else:
            blocks.append(f"[{i}] {source.title}\n{source.content[:ANSWER_SOURCE_CHARS]}")
    return "\n\n".join(blocks)


async def generate_answer(completion, query: str, sources: Sequence[Source]) -> str:
    """Raises CompletionError; the synthesize node turns that into an error state."""
    messages = [
        {"role": "system", "content": ANSWER_PROMPT.format(date_context=date_context())},
        {
            "role": "user",
            "content": f'Question: "{query}"\n\nBased on these sources:\n{format_numbered_sources(sources)}',
        },
    ]
    return await completion.complete(messages)


async def extract_facts(
    completion, query: str, sources: Sequence[Source], answer: str
) -> list[ExtractedFact]:
    """
    Facts grounded in the answer, citing sources by their 1-based position.

    Items that fail validation are skipped and ids outside 1..N are dropped.
    Each fact also records the URLs behind its ids. Returns [] on failure.
    """
    listing = "\n".join(
        f"[{i}] {s.title}: {s.summary or (s.content or '')[:FACT_SOURCE_CHARS]}"
        for i, s in enumerate(sources, start=1)
    )
    messages = [
        {"role": "system", "content": FACT_EXTRACTION_PROMPT},
        {"role": "user", "content": f'Query: "{query}"\n\nAnswer: {answer}\n\nSources: {listing}'},
    ]
    try:
        raw = await completion.complete_with_json(messages)
    except Exception as exc:
        logger.warning(f"Fact extraction failed: {describe_error(exc)}")
        return []
    if not isinstance(raw, list):
        return []

    facts: list[ExtractedFact] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        if isinstance(item.get("type"), str):
            item = {**item, "type": item["type"].strip().lower()}
        try:
            fact = ExtractedFact.model_validate(item)
        except ValidationError:
            continue
        if not fact.fact.strip():
            continue
        ids = [i for i in dict.fromkeys(fact.source_ids) if 1 <= i <= len(sources)]
        facts.append(fact.model_copy(update={
            "source_ids": ids,
            "source_urls": [sources[i - 1].url for i in ids],
        }))
    return facts


async def generate_follow_up_questions(completion, query: str, answer: str) -> list[str]:
    messages = [
        {"role": "system", "content": FOLLOW_UP_PROMPT},
        {"role": "user", "content": f'Query: "{query}"\n\nAnswer: {answer[:FOLLOW_UP_ANSWER_CHARS]}'},
    ]
    try:
        text = await completion.complete(messages)
    except Exception as exc:
        logger.warning(f"Follow-up generation failed: {describe_error(exc)}")
        return []

    questions = []
    for line in text.splitlines():
        question = _LIST_MARKER.sub("", line.strip()).strip()
        if question and len(question) < 100:
            questions.append(question)
    return questions[:MAX_FOLLOW_UPS]


# ── Nodes ─────────────────────────────────────────────────────────────────────

def ranked_sources(state: ResearchState) -> list[Source]:
    """Processed sources when analysis ran, else raw sources by quality."""
    processed = state.get("processed_sources")
    if processed is not None:
        return list(processed)
    raw = list((state.get("sources") or {}).values())
    return sorted(raw, key=lambda s: s.quality, reverse=True)


async def synthesize_node(state: ResearchState, config: RunnableConfig) -> dict:
    cfg = ResearchConfiguration.from_runnable_config(config)
    services = ResearchServices.from_runnable_config(config)
    answer_sources = ranked_sources(state)[: cfg.max_synthesis_sources]
    logger.debug(f"Synthesizing answer from {len(answer_sources)} source(s)")

    try:
        answer = await generate_answer(services.completion, state["query"], answer_sources)
    except Exception as exc:
        logger.error(f"Failed to generate answer: {describe_error(exc)}")
        return {
            "error": describe_error(exc),
            "error_kind": ErrorKind.LLM,
            "phase": "error",
        }

    return {
        "final_answer": answer,
        "answer_sources": answer_sources,
        "phase": "extracting",
    }


async def extract_node(state: ResearchState, config: RunnableConfig) -> dict:
    services = ResearchServices.from_runnable_config(config)
    answer = state.get("final_answer") or ""
    sources = state.get("answer_sources") or []
    logger.debug("Extracting facts")

    facts = await extract_facts(services.completion, state["query"], sources, answer)
    follow_ups = await generate_follow_up_questions(services.completion, state["query"], answer)

    return {
        "extracted_facts": facts,
        "follow_up_questions": follow_ups,
        "phase": "complete",
    }
