"""
test_configuration.py — Depth presets, runtime configuration and caller options.
"""

import pytest
from pydantic import ValidationError

from deep_research.configuration import (
    DEPTH_PRESETS,
    ResearchConfiguration,
    ResearchOptions,
    get_depth_config,
    merge_options,
    section_depth,
)
from deep_research.errors import SearchError, describe_error


def test_depth_presets():
    assert DEPTH_PRESETS["shallow"] == {"search_queries": 1, "sources_per_search": 4, "max_retries": 1}
    assert DEPTH_PRESETS["standard"]["max_retries"] == 2
    assert DEPTH_PRESETS["deep"]["search_queries"] == 5


def test_unknown_depth_falls_back_to_standard():
    assert get_depth_config("bogus") == DEPTH_PRESETS["standard"]


@pytest.mark.parametrize(
    "depth, expected",
    [("deep", "standard"), ("standard", "shallow"), ("shallow", "shallow")],
)
def test_section_depth_is_one_tier_shallower(depth, expected):
    assert section_depth(depth) == expected


def test_retry_budget_defaults_to_preset():
    assert ResearchConfiguration(depth="deep").retry_budget == 3
    assert ResearchConfiguration(depth="deep", max_retries=0).retry_budget == 0


def test_from_runnable_config_ignores_unknown_keys():
    cfg = ResearchConfiguration.from_runnable_config({
        "configurable": {"depth": "shallow", "thread_id": "t1", "services": object()}
    })
    assert cfg.depth == "shallow"
    assert cfg.recursion_limit == 35


def test_from_runnable_config_without_config():
    assert ResearchConfiguration.from_runnable_config(None).depth == "standard"


def test_as_configurable_round_trips():
    cfg = ResearchConfiguration(depth="deep", section_concurrency=5)
    again = ResearchConfiguration.from_runnable_config({"configurable": cfg.as_configurable()})
    assert again == cfg


def test_model_name_from_env(monkeypatch):
    monkeypatch.setenv("DEEP_RESEARCH_MODEL", "gpt-test")
    assert ResearchConfiguration().model_name == "gpt-test"


def test_merge_options_defaults():
    options = merge_options(None)
    assert options.enabled is True
    assert options.depth == "standard"
    assert options.include_citations is True
    assert options.research_source == "internet"


def test_merge_options_research_source():
    assert merge_options({"research_source": "both"}).research_source == "both"
    with pytest.raises(ValidationError):
        merge_options({"research_source": "library"})


def test_merge_options_section_research_forces_topic_research():
    options = merge_options({"topic_level_research": False, "section_level_research": True})
    assert options.topic_level_research is True


def test_merge_options_does_not_mutate_input():
    original = ResearchOptions(topic_level_research=False)
    merged = merge_options(original)
    assert merged.topic_level_research is True
    assert original.topic_level_research is False


def test_search_error_message():
    exc = SearchError("tax rates", "timeout")
    assert exc.query == "tax rates"
    assert "tax rates" in describe_error(exc)


def test_describe_error_falls_back_to_class_name():
    assert describe_error(RuntimeError()) == "RuntimeError"
