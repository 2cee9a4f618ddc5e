# All system prompts for the deep research pipeline.
# Node files must import from here; no inline prompt strings are allowed elsewhere.
#
# Prompts that mention dates are formatted with {date_context} (see date_context()).

from datetime import datetime, timezone


def date_context() -> str:
    today = datetime.now(timezone.utc).strftime("%A, %B %d, %Y")
    return f"Today's date is {today}."


# ── Understanding ─────────────────────────────────────────────────────────────

UNDERSTAND_QUERY_PROMPT = """{date_context}

Analyze this search query and explain what information is being sought.
Keep it concise - 1-2 sentences about what the user wants to learn."""


# ── Query Planner ─────────────────────────────────────────────────────────────

SUB_QUERY_PROMPT = """Extract the individual factual questions from this query. Each question should be something that can be definitively answered.

Example:
"Who founded Anthropic and when" ->
[
  {"question": "Who founded Anthropic?", "searchQuery": "Anthropic founders"},
  {"question": "When was Anthropic founded?", "searchQuery": "Anthropic founded date year"}
]

RESPONSE FORMAT: Your entire response must begin with [ and end with ]. No markdown, no explanation."""


# ── Searching: per-page finding ───────────────────────────────────────────────

PAGE_FINDING_PROMPT = """{date_context}

Extract ONE key finding from this content that's SPECIFICALLY relevant to the search query.
Return just ONE sentence with a specific finding. Include numbers, dates, or specific details when available.
Keep it under 100 characters."""


# ── Context processing: focused source extract ────────────────────────────────

SOURCE_SUMMARY_PROMPT = """You are a research assistant helping to extract the most relevant information from a webpage.

User's question: "{query}"
Related search queries: {search_queries}

Source title: {title}
Source URL: {url}

Instructions:
1. Extract ONLY the information that directly relates to the user's question and search queries
2. Focus on specific facts, data, quotes, and concrete details
3. Preserve important numbers, dates, names, and technical details
4. Maintain the original meaning and context
5. If the content has little relevance to the query, just note that briefly
6. Target length: approximately {target_length} characters

Provide a focused summary that would help answer the user's question:"""


# ── Synthesis ─────────────────────────────────────────────────────────────────

ANSWER_PROMPT = """{date_context}

Answer the user's question based on the provided sources.
Provide a clear, comprehensive answer with citations [1], [2], etc.
Cite a source only by the number it is listed under.
Use markdown formatting for better readability."""


# ── Extraction ────────────────────────────────────────────────────────────────

FACT_EXTRACTION_PROMPT = """Extract specific facts from the answer and sources that can be cited.

For each fact, identify:
1. The fact itself (a specific statement, statistic, quote, or definition)
2. Which source(s) it came from (by number)
3. The type: statistic, quote, definition, or claim

Example format:
[
  {"fact": "The fact statement", "sourceIds": [1, 2], "type": "statistic"}
]

RESPONSE FORMAT: Your entire response must begin with [ and end with ]. No markdown, no explanation."""

FOLLOW_UP_PROMPT = """Based on this search query and answer, generate 3 relevant follow-up questions.

Return only the questions, one per line, no numbering or bullets.
Each question should explore a different aspect or dig deeper."""


# ── Gap analysis ──────────────────────────────────────────────────────────────

GAP_ANALYSIS_PROMPT = """You are an expert content strategist analyzing competitor content to find content gaps and opportunities.

Analyze the competitor content for the keyword "{keyword}" and identify:

1. CONTENT GAPS - Topics or questions that competitors DON'T cover well:
   - What information is missing or incomplete?
   - What questions might readers have that aren't answered?
   - What subtopics are overlooked?

2. UNIQUE ANGLES - Fresh perspectives or approaches that could differentiate content.

3. COMPETITOR WEAKNESSES - What competitors do poorly (outdated information,
   shallow coverage, poor organization, missing examples).

Return your analysis as JSON:
{{
  "gaps": [
    {{
      "topic": "Topic name",
      "description": "Why this is a gap",
      "importance": "high" | "medium" | "low",
      "suggestedAngle": "How to address this gap"
    }}
  ],
  "uniqueAngles": ["Angle 1", "Angle 2"],
  "competitorWeaknesses": ["Weakness 1", "Weakness 2"]
}}

RESPONSE FORMAT: Your entire response must begin with {{ and end with }}. No markdown, no explanation."""


RECOMMENDATIONS_PROMPT = """Based on the identified gaps and unique angles, provide 5-7 specific recommendations for an article about "{keyword}".

Each recommendation should be actionable and specific.

Return a JSON array of strings.

RESPONSE FORMAT: Your entire response must begin with [ and end with ]. No markdown, no explanation."""


TRENDING_SUBTOPICS_PROMPT = """Analyze these headings from competitor articles about "{keyword}" and identify the subtopics that appear most frequently.

Return the top 5-8 subtopics that a comprehensive article should definitely cover, as a JSON array of strings.

RESPONSE FORMAT: Your entire response must begin with [ and end with ]. No markdown, no explanation."""
