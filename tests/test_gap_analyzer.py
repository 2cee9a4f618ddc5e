"""
test_gap_analyzer.py — Competitor gap analysis (best effort).
"""

import pytest

from deep_research.gap_analyzer import GapAnalyzer
from deep_research.schemas import ContentGap, Page

from conftest import FakeCompletion

PAGES = [Page(url=f"https://c{i}.example", title=f"C{i}", content="x" * 5000) for i in range(7)]


@pytest.mark.asyncio
async def test_no_competitors_skips_completion():
    completion = FakeCompletion()
    result = await GapAnalyzer(completion).analyze_gaps("casino", [])
    assert result.gaps == []
    assert completion.calls == []


@pytest.mark.asyncio
async def test_gaps_are_normalised():
    completion = FakeCompletion(gaps={
        "gaps": [
            {"topic": "Fees", "description": "Not covered", "importance": "HIGH", "suggestedAngle": "Compare"},
            {"topic": "Odds", "importance": "critical"},
            "garbage",
        ],
        "uniqueAngles": ["Local angle"],
        "competitorWeaknesses": ["Outdated"],
    })

    result = await GapAnalyzer(completion).analyze_gaps("casino", PAGES)

    assert [(g.topic, g.importance) for g in result.gaps] == [("Fees", "high"), ("Odds", "medium")]
    assert result.gaps[0].suggested_angle == "Compare"
    assert result.gaps[1].description == ""
    assert result.unique_angles == ["Local angle"]
    assert result.competitor_weaknesses == ["Outdated"]


@pytest.mark.asyncio
async def test_prompt_is_bounded_to_five_competitors():
    seen = {}

    class RecordingCompletion:
        async def complete_with_json(self, messages):
            seen["user"] = messages[-1]["content"]
            return {}

    await GapAnalyzer(RecordingCompletion()).analyze_gaps("casino", PAGES)

    assert "[Competitor 5: C4]" in seen["user"]
    assert "Competitor 6" not in seen["user"]
    assert "x" * 2001 not in seen["user"]


@pytest.mark.asyncio
@pytest.mark.parametrize("completion", [FakeCompletion(fail={"gaps"}), FakeCompletion(gaps=["not", "a", "dict"])])
async def test_failures_give_empty_result(completion):
    result = await GapAnalyzer(completion).analyze_gaps("casino", PAGES)
    assert result.gaps == []
    assert result.unique_angles == []


@pytest.mark.asyncio
async def test_recommendations_from_gaps_and_angles():
    completion = FakeCompletion()
    gaps = [ContentGap(topic="Fees", description="Not covered")]

    recommendations = await GapAnalyzer(completion).generate_recommendations(
        "casino", gaps, ["Local angle"]
    )

    assert recommendations == ["Compare licence fees", "Add a tax table"]
    assert completion.calls == ["recommendations"]


@pytest.mark.asyncio
async def test_recommendations_need_gaps_or_angles():
    completion = FakeCompletion()
    assert await GapAnalyzer(completion).generate_recommendations("casino", [], []) == []
    assert completion.calls == []


@pytest.mark.asyncio
async def test_recommendations_failure_gives_empty_list():
    completion = FakeCompletion(fail={"recommendations"})
    gaps = [ContentGap(topic="Fees")]
    assert await GapAnalyzer(completion).generate_recommendations("casino", gaps, []) == []


@pytest.mark.asyncio
async def test_trending_subtopics_come_from_competitor_headings():
    pages = [
        Page(url="https://c1.example", content="# Guide\nintro\n## Licensing\nbody"),
        Page(url="https://c2.example", content="text only\n### Taxes\n"),
    ]

    subtopics = await GapAnalyzer(FakeCompletion()).identify_trending_subtopics("casino", pages)

    assert subtopics == ["Guide", "Licensing", "Taxes"]


@pytest.mark.asyncio
async def test_trending_subtopics_need_headings():
    completion = FakeCompletion()
    assert await GapAnalyzer(completion).identify_trending_subtopics("casino", PAGES) == []
    assert await GapAnalyzer(completion).identify_trending_subtopics("casino", []) == []
    assert completion.calls == []
