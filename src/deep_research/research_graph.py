"""
research_graph.py — Compiled research state machine.

Graph flow:
  START
    → understand            (what is being asked)
    → plan                  (sub-queries → search queue; skips to analyze if all answered)
    → search ⟲              (one queued query per visit)
    → analyze               (context processor; always continues)
    → synthesize            (cited answer)
    → extract               (facts + follow-ups, best effort)
    → complete
    → END

Any node that sets phase="error" routes to handle_error, which either sends
the run back (search → search, otherwise → understand) or on to complete.

Compiled without a checkpointer: each run owns its state and nothing is
resumed. Exported as `research_graph`.
"""

from langgraph.graph import END, START, StateGraph

from deep_research.nodes.analyzer import analyze_node
from deep_research.nodes.error_handler import complete_node, handle_error_node
from deep_research.nodes.planner import plan_node, understand_node
from deep_research.nodes.searcher import search_node
from deep_research.nodes.synthesizer import extract_node, synthesize_node
from deep_research.schemas import ResearchState


# ── Routing ───────────────────────────────────────────────────────────────────

def _on_error(next_node: str):
    def route(state: ResearchState) -> str:
        return "handle_error" if state.get("phase") == "error" else next_node
    route.__name__ = f"route_to_{next_node}"
    return route


def route_search(state: ResearchState) -> str:
    """After plan and after every search visit."""
    phase = state.get("phase")
    if phase == "error":
        return "handle_error"
    return "search" if phase == "searching" else "analyze"


def route_after_error(state: ResearchState) -> str:
    phase = state.get("phase")
    if phase == "searching":
        return "search"
    if phase == "understanding":
        return "understand"
    return "complete"


# ── Build graph ───────────────────────────────────────────────────────────────

def build_research_graph():
    builder = StateGraph(ResearchState)

    builder.add_node("understand", understand_node)
    builder.add_node("plan", plan_node)
    builder.add_node("search", search_node)
    builder.add_node("analyze", analyze_node)
    builder.add_node("synthesize", synthesize_node)
    builder.add_node("extract", extract_node)
    builder.add_node("handle_error", handle_error_node)
    builder.add_node("complete", complete_node)

    builder.add_edge(START, "understand")
    builder.add_conditional_edges("understand", _on_error("plan"), ["plan", "handle_error"])
    builder.add_conditional_edges("plan", route_search, ["search", "analyze", "handle_error"])
    builder.add_conditional_edges("search", route_search, ["search", "analyze", "handle_error"])
    # analyze never fails
    builder.add_edge("analyze", "synthesize")
    builder.add_conditional_edges("synthesize", _on_error("extract"), ["extract", "handle_error"])
    builder.add_edge("extract", "complete")
    builder.add_conditional_edges(
        "handle_error", route_after_error, ["search", "understand", "complete"]
    )
    builder.add_edge("complete", END)

    return builder.compile()


research_graph = build_research_graph()
