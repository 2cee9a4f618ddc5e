"""
context_processor.py — Relevance scoring and compression of retrieved pages.

Each source goes through one of two strategies, picked by select_strategy():

  keyword_window — score by query-term coverage/density, keep ±N-char windows
                   around every term occurrence (snapped to sentence breaks)
  llm_summary    — ask the completion service for a focused extract sized to
                   the corpus, score the extract heuristically

A failed summary falls back to keyword_window for that source only. Sources
with no content score 0 and are dropped. Output is sorted by relevance.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Literal, Sequence

from deep_research.configuration import ResearchConfiguration
from deep_research.errors import CompletionError, describe_error
from deep_research.prompts import SOURCE_SUMMARY_PROMPT
from deep_research.schemas import ProcessedSource, Source

logger = logging.getLogger(__name__)

Strategy = Literal["empty", "keyword_window", "llm_summary"]

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "can", "what", "when",
    "where", "how", "why", "who",
})

HIGH_RELEVANCE_PHRASES = (
    "specifically mentions",
    "directly addresses",
    "provides detailed",
    "explains how",
    "data shows",
    "research indicates",
)

LOW_RELEVANCE_PHRASES = (
    "not directly related",
    "no specific information",
    "doesn't mention",
    "no relevant content",
    "unrelated to",
)

MAX_SUMMARY_INPUT_CHARS = 15000


# ── Keyword extraction ────────────────────────────────────────────────────────

def extract_keywords(query: str, search_queries: Sequence[str] = ()) -> list[str]:
    """Stop-word-filtered tokens plus quoted phrases, de-duplicated in order."""
    all_text = " ".join([query, *search_queries]).lower()
    words = [
        word for word in re.split(r"\W+", all_text)
        if len(word) > 2 and word not in STOP_WORDS
    ]
    phrases = [p.strip() for p in re.findall(r'"([^"]+)"', all_text) if p.strip()]
    return list(dict.fromkeys([*words, *phrases]))


def keyword_stem(keyword: str) -> str:
    """
    Prefix used to match inflected forms of a single word.

    "swedish" and "sweden" share "swed"; "rates" matches "rate". Phrases,
    numbers and words of four letters or fewer match exactly.
    """
    if len(keyword) <= 4 or not keyword.isalpha():
        return keyword
    return keyword[: max(4, len(keyword) - 3)]


def contains_keyword(lowered: str, keyword: str) -> bool:
    return keyword_stem(keyword.lower()) in lowered


def find_keyword_positions(content: str, keywords: Sequence[str]) -> tuple[list[str], list[int]]:
    """Return (keywords found, every occurrence offset of their stems)."""
    lowered = content.lower()
    found: list[str] = []
    positions: list[int] = []
    for keyword in keywords:
        stem = keyword_stem(keyword)
        position = lowered.find(stem)
        if position != -1:
            found.append(keyword)
        while position != -1:
            positions.append(position)
            position = lowered.find(stem, position + 1)
    return found, positions


def calculate_relevance_score(
    unique_keywords_found: int,
    total_keyword_matches: int,
    total_keywords: int,
    content_length: int,
) -> float:
    # coverage weighs more than density; density saturates at 10 hits / 1000 chars
    coverage = unique_keywords_found / total_keywords if total_keywords else 0.0
    density = (total_keyword_matches / content_length) * 1000 if content_length else 0.0
    return coverage * 0.7 + min(density / 10, 1.0) * 0.3


# ── Excerpt windows ───────────────────────────────────────────────────────────

def _merge_spans(spans: list[tuple[int, int]]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for start, end in sorted(spans):
        if merged and start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], end))
        else:
            merged.append((start, end))
    return merged


def snap_to_boundaries(content: str, start: int, end: int) -> tuple[int, int]:
    """Widen [start, end) outward to the nearest sentence or line break."""
    prev_period = content.rfind(".", 0, start + 1)
    prev_newline = content.rfind("\n", 0, start + 1)
    start = max(prev_period + 1, prev_newline + 1, 0)

    next_period = content.find(".", end)
    next_newline = content.find("\n", end)
    if next_period != -1 or next_newline != -1:
        end = min(
            next_period + 1 if next_period != -1 else len(content),
            next_newline if next_newline != -1 else len(content),
        )
    return start, end


def extract_relevant_sections(
    content: str,
    positions: Sequence[int],
    window_size: int = 500,
    min_chars: int = 2000,
) -> list[str]:
    if not positions:
        return [content[:min_chars]]

    windows = _merge_spans([
        (max(0, p - window_size), min(len(content), p + window_size))
        for p in positions
    ])
    snapped = _merge_spans([snap_to_boundaries(content, s, e) for s, e in windows])

    sections = []
    for start, end in snapped:
        section = content[start:end].strip()
        if section:
            sections.append(section)
    return sections


# ── Summary sizing and scoring ────────────────────────────────────────────────

def calculate_summary_length(source_count: int) -> int:
    if source_count <= 5:
        return 4000
    if source_count <= 10:
        return 3000
    if source_count <= 20:
        return 2000
    if source_count <= 30:
        return 1500
    return 1000


def score_summary(summary: str, keywords: Sequence[str]) -> float:
    lowered = summary.lower()
    if any(phrase in lowered for phrase in LOW_RELEVANCE_PHRASES):
        return 0.1

    base = min(len(summary) / 2000, 1.0)
    if any(phrase in lowered for phrase in HIGH_RELEVANCE_PHRASES):
        base = min(base + 0.3, 1.0)

    if keywords:
        keyword_score = sum(1 for k in keywords if contains_keyword(lowered, k)) / len(keywords)
    else:
        keyword_score = 0.5
    return base * 0.6 + keyword_score * 0.4


def select_strategy(source: Source, *, summarize: bool, min_content_length: int) -> Strategy:
    if not source.content:
        return "empty"
    if not summarize or len(source.content) < min_content_length:
        return "keyword_window"
    return "llm_summary"


def _processed(source: Source, **updates) -> ProcessedSource:
    data = {name: getattr(source, name) for name in Source.model_fields}
    data.update(updates)
    return ProcessedSource(**data)


class ContextProcessor:
    """Scores and compresses sources ahead of synthesis."""

    def __init__(
        self,
        completion=None,
        *,
        summarize: bool = True,
        min_content_length: int = 100,
        window_size: int = 500,
        min_chars_per_source: int = 2000,
        max_chars_per_source: int = 15000,
        concurrency: int = 5,
    ):
        self.completion = completion
        self.summarize = summarize and completion is not None
        self.min_content_length = min_content_length
        self.window_size = window_size
        self.min_chars_per_source = min_chars_per_source
        self.max_chars_per_source = max_chars_per_source
        self.concurrency = max(1, concurrency)

    @classmethod
    def from_configuration(cls, completion, cfg: ResearchConfiguration) -> "ContextProcessor":
        return cls(
            completion,
            summarize=cfg.summarize_sources,
            min_content_length=cfg.min_content_length,
            window_size=cfg.context_window_size,
            min_chars_per_source=cfg.min_chars_per_source,
            max_chars_per_source=cfg.max_chars_per_source,
            concurrency=cfg.summary_concurrency,
        )

    async def process_sources(
        self,
        query: str,
        sources: Sequence[Source],
        search_queries: Sequence[str] = (),
    ) -> list[ProcessedSource]:
        """Compress every source and return those with score > 0, best first."""
        logger.debug(f"Processing {len(sources)} source(s)")
        target_length = calculate_summary_length(len(sources))
        keywords = extract_keywords(query, search_queries)
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(source: Source) -> ProcessedSource:
            async with semaphore:
                return await self.process_source(
                    source, query, search_queries, keywords, target_length
                )

        processed = await asyncio.gather(*(_bounded(s) for s in sources))

        valid = [p for p in processed if p.relevance_score > 0]
        valid.sort(key=lambda p: p.relevance_score, reverse=True)
        logger.debug(f"{len(valid)} source(s) kept after relevance filtering")
        return valid

    async def process_source(
        self,
        source: Source,
        query: str,
        search_queries: Sequence[str],
        keywords: Sequence[str],
        target_length: int,
    ) -> ProcessedSource:
        strategy = select_strategy(
            source, summarize=self.summarize, min_content_length=self.min_content_length
        )
        if strategy == "empty":
            return _processed(source, relevance_score=0.0)
        if strategy == "keyword_window":
            return self.keyword_window(source, keywords)

        try:
            return await self.summarize_source(
                source, query, search_queries, keywords, target_length
            )
        except Exception as exc:
            logger.warning(f"Failed to summarize {source.url}: {describe_error(exc)}")
            return self.keyword_window(source, keywords)

    def keyword_window(self, source: Source, keywords: Sequence[str]) -> ProcessedSource:
        content = source.content or ""
        if not content:
            return _processed(source, relevance_score=0.0)

        found, positions = find_keyword_positions(content, keywords)
        score = calculate_relevance_score(
            len(found), len(positions), len(keywords), len(content)
        )
        sections = extract_relevant_sections(
            content, positions, self.window_size, self.min_chars_per_source
        )
        return _processed(
            source,
            content="\n\n".join(sections)[: self.max_chars_per_source],
            relevance_score=min(score, 1.0),
            extracted_sections=sections,
            keywords=found,
        )

    async def summarize_source(
        self,
        source: Source,
        query: str,
        search_queries: Sequence[str],
        keywords: Sequence[str],
        target_length: int,
    ) -> ProcessedSource:
        content = source.content or ""
        truncated = content[:MAX_SUMMARY_INPUT_CHARS]
        if len(content) > MAX_SUMMARY_INPUT_CHARS:
            truncated += "\n[... content truncated]"

        messages = [
            {
                "role": "system",
                "content": SOURCE_SUMMARY_PROMPT.format(
                    query=query,
                    search_queries=", ".join(search_queries),
                    title=source.title,
                    url=source.url,
                    target_length=target_length,
                ),
            },
            {"role": "user", "content": f"Content to analyze:\n{truncated}"},
        ]
        summary = (await self.completion.complete(messages)).strip()
        if not summary:
            raise CompletionError("Empty summary")

        return _processed(
            source,
            content=summary,
            relevance_score=score_summary(summary, keywords),
            extracted_sections=[summary],
            keywords=list(keywords),
            summarized=True,
        )

