"""
gap_analyzer.py — Competitor content gap analysis.

Runs alongside topic-level research. Best effort: no competitor pages, an
unreachable completion service or malformed JSON all give an empty result.
Recommendations and trending subtopics follow the same rule and give [].
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from deep_research.errors import describe_error
from deep_research.prompts import (
    GAP_ANALYSIS_PROMPT,
    RECOMMENDATIONS_PROMPT,
    TRENDING_SUBTOPICS_PROMPT,
)
from deep_research.schemas import ContentGap, GapAnalysisResult, Page

logger = logging.getLogger(__name__)

MAX_COMPETITORS = 5
COMPETITOR_CHARS = 2000
IMPORTANCE_LEVELS = ("high", "medium", "low")
MAX_HEADINGS = 50

_HEADING = re.compile(r"^#+\s+(.+)$", re.MULTILINE)


def _strings(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if str(item).strip()]


def normalize_gap(raw: dict) -> ContentGap:
    importance = str(raw.get("importance") or "").strip().lower()
    return ContentGap(
        topic=str(raw.get("topic") or ""),
        description=str(raw.get("description") or ""),
        importance=importance if importance in IMPORTANCE_LEVELS else "medium",
        suggested_angle=str(raw.get("suggestedAngle") or raw.get("suggested_angle") or ""),
    )


class GapAnalyzer:
    def __init__(self, completion):
        self.completion = completion

    async def analyze_gaps(self, keyword: str, competitor_pages: Sequence[Page]) -> GapAnalysisResult:
        logger.info(f"Analyzing content gaps for {keyword!r} ({len(competitor_pages)} competitor page(s))")
        if not competitor_pages:
            return GapAnalysisResult()

        summaries = "\n\n---\n\n".join(
            f"[Competitor {i}: {page.title or page.url}]\n{page.content[:COMPETITOR_CHARS]}"
            for i, page in enumerate(competitor_pages[:MAX_COMPETITORS], start=1)
        )
        messages = [
            {"role": "system", "content": GAP_ANALYSIS_PROMPT.format(keyword=keyword)},
            {"role": "user", "content": f'Keyword: "{keyword}"\n\nCompetitor Content:\n{summaries}'},
        ]

        try:
            raw = await self.completion.complete_with_json(messages)
            if not isinstance(raw, dict):
                raise ValueError("Gap analysis did not return a JSON object")
            result = GapAnalysisResult(
                gaps=[normalize_gap(g) for g in raw.get("gaps") or [] if isinstance(g, dict)],
                unique_angles=_strings(raw.get("uniqueAngles")),
                competitor_weaknesses=_strings(raw.get("competitorWeaknesses")),
            )
        except Exception as exc:
            logger.error(f"Gap analysis failed: {describe_error(exc)}")
            return GapAnalysisResult()

        logger.info(
            f"Gap analysis complete: {len(result.gaps)} gap(s), "
            f"{len(result.unique_angles)} angle(s), {len(result.competitor_weaknesses)} weakness(es)"
        )
        return result

    async def _string_list(self, system: str, user: str, label: str) -> list[str]:
        messages = [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ]
        try:
            raw = await self.completion.complete_with_json(messages)
        except Exception as exc:
            logger.warning(f"Failed to generate {label}: {describe_error(exc)}")
            return []
        return _strings(raw)

    async def generate_recommendations(
        self, keyword: str, gaps: Sequence[ContentGap], unique_angles: Sequence[str]
    ) -> list[str]:
        if not gaps and not unique_angles:
            return []
        gap_lines = "\n".join(f"- {g.topic}: {g.description}" for g in gaps)
        angle_lines = "\n".join(f"- {angle}" for angle in unique_angles)
        return await self._string_list(
            RECOMMENDATIONS_PROMPT.format(keyword=keyword),
            f"Gaps:\n{gap_lines}\n\nUnique Angles:\n{angle_lines}",
            "recommendations",
        )

    async def identify_trending_subtopics(
        self, keyword: str, competitor_pages: Sequence[Page]
    ) -> list[str]:
        """Subtopics recurring across the headings of up to five competitor pages."""
        headings = [
            heading.strip()
            for page in competitor_pages[:MAX_COMPETITORS]
            for heading in _HEADING.findall(page.content or "")
        ]
        if not headings:
            return []
        return await self._string_list(
            TRENDING_SUBTOPICS_PROMPT.format(keyword=keyword),
            "Headings from competitors:\n" + "\n".join(headings[:MAX_HEADINGS]),
            "trending subtopics",
        )
