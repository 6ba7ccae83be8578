"""Tests for Handlebars prompt rendering: compilation, the last helper,
scene context building and the default scene prompt."""

import pytest

from nearfield.content import DEMO_BRIEFS
from nearfield.prompts import DEFAULT_SCENE_PROMPT, PromptError, build_scene_context, render_prompt

SCENE_B_BRIEF = DEMO_BRIEFS["demo-story:scene-b"]


# ── render_prompt ────────────────────────────────────────────


def test_render_simple_variable():
    assert render_prompt("Scene {{scene}}!", {"scene": "scene-a"}) == "Scene scene-a!"


def test_render_if_conditional():
    tpl = "{{#if must_converge}}end{{else}}go on{{/if}}"
    assert render_prompt(tpl, {"must_converge": True}) == "end"
    assert render_prompt(tpl, {"must_converge": False}) == "go on"


def test_render_missing_variable():
    assert render_prompt("Says: {{intent_text}}", {}) == "Says: "


def test_render_invalid_template():
    with pytest.raises(PromptError):
        render_prompt("{{> missing_partial}}", {})


def test_triple_stash_keeps_quotes():
    assert render_prompt("{{{line}}}", {"line": '"Get lost!"'}) == '"Get lost!"'


# ── helpers: last ────────────────────────────────────────────


def test_last_n():
    tpl = "{{#last items 2}}{{this}} {{/last}}"
    assert render_prompt(tpl, {"items": ["a", "b", "c", "d"]}) == "c d "


def test_last_more_than_length():
    tpl = "{{#last items 10}}{{this}} {{/last}}"
    assert render_prompt(tpl, {"items": ["a", "b"]}) == "a b "


def test_last_with_objects():
    tpl = "{{#last history 1}}{{actor}}{{/last}}"
    history = [{"actor": "System"}, {"actor": "Xiao Xue"}]
    assert render_prompt(tpl, {"history": history}) == "Xiao Xue"


# ── build_scene_context ──────────────────────────────────────


def test_build_scene_context_basic():
    ctx = build_scene_context("demo-story", SCENE_B_BRIEF, "LOAD_SCENE", [])

    assert ctx["story_id"] == "demo-story"
    assert ctx["scene"]["title"] == "Bar interior"
    assert ctx["scene"]["is_story_terminal"] is True
    assert ctx["scene"]["next_scene_id"] is None
    assert ctx["action_key"] == "LOAD_SCENE"
    assert ctx["history"] == []
    assert ctx["must_converge"] is False
    assert "intent_text" not in ctx
    assert "policy" not in ctx


def test_build_scene_context_with_turn():
    policy = {**SCENE_B_BRIEF["policy"], "current_turn": 2}
    ctx = build_scene_context(
        "demo-story", SCENE_B_BRIEF, "INTERACT_turn_2", [],
        intent_text="It's okay, I'm not with them.", policy=policy,
    )
    assert ctx["intent_text"] == "It's okay, I'm not with them."
    assert ctx["policy"]["current_turn"] == 2
    assert ctx["policy"]["max_turns"] == 5


def test_build_scene_context_entities_text():
    brief = {"title": "T", "setting": "S", "entities": ["Fat Tang", "Xiao Xue"]}
    ctx = build_scene_context("demo-story", brief, "LOAD_SCENE", [])
    assert ctx["scene"]["entities_text"] == "Fat Tang, Xiao Xue"


def test_build_scene_context_missing_fields_default():
    ctx = build_scene_context("demo-story", {}, "PASS", [])
    assert ctx["scene"]["title"] == ""
    assert ctx["scene"]["entities"] == []
    assert ctx["scene"]["is_story_terminal"] is False


# ── DEFAULT_SCENE_PROMPT ─────────────────────────────────────


def test_default_prompt_includes_brief_and_history():
    history = [{"type": "Narrative", "actor": "System", "content": "She is shaking."}]
    ctx = build_scene_context("demo-story", SCENE_B_BRIEF, "INTERACT_turn_1", history,
                              intent_text="Talk to me.",
                              policy={**SCENE_B_BRIEF["policy"], "current_turn": 1})
    prompt = render_prompt(DEFAULT_SCENE_PROMPT, ctx)

    assert "Bar interior" in prompt
    assert "[Narrative:System] She is shaking." in prompt
    assert "Player action: INTERACT_turn_1" in prompt
    assert "Player says: Talk to me." in prompt
    assert "turn 1 of 5" in prompt
    assert "Get Xiao Xue to tell the truth about the goods" in prompt
    assert "final turn" not in prompt


def test_default_prompt_demands_convergence_on_last_turn():
    ctx = build_scene_context("demo-story", SCENE_B_BRIEF, "INTERACT_turn_5", [],
                              policy={**SCENE_B_BRIEF["policy"], "current_turn": 5},
                              must_converge=True)
    prompt = render_prompt(DEFAULT_SCENE_PROMPT, ctx)
    assert "final turn" in prompt
    assert "is_story_over to true" in prompt


def test_default_prompt_names_next_scene():
    brief = DEMO_BRIEFS["demo-story:scene-a"]
    ctx = build_scene_context("demo-story", brief, "INTERACT_turn_3", [],
                              policy={**brief["policy"], "current_turn": 3}, must_converge=True)
    prompt = render_prompt(DEFAULT_SCENE_PROMPT, ctx)
    assert 'next_scene_id to "scene-b"' in prompt
