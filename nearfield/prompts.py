"""Handlebars prompt rendering for the generative scene provider."""

from collections.abc import Callable
from typing import Any

import pybars


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} — iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
}


DEFAULT_SCENE_PROMPT = """You are the narrator of an interactive story.
Story: {{story_id}} / Scene: {{{scene.title}}}
Setting: {{{scene.setting}}}
{{#if scene.entities}}Characters present: {{{scene.entities_text}}}
{{/if}}{{#if policy}}Interaction budget: turn {{policy.current_turn}} of {{policy.max_turns}}.
{{#if policy.goal}}Scene goal: {{{policy.goal}}}
{{/if}}{{#if policy.constraints}}Constraints: {{{policy.constraints}}}
{{/if}}{{/if}}
Scene so far:
{{#last history 20}}[{{type}}:{{actor}}] {{{content}}}
{{/last}}
Player action: {{action_key}}
{{#if intent_text}}Player says: {{{intent_text}}}
{{/if}}{{#if must_converge}}This is the final turn of the budget. End the scene now: set is_scene_over to true{{#if scene.next_scene_id}} and next_scene_id to "{{scene.next_scene_id}}"{{/if}}{{#if scene.is_story_terminal}} and is_story_over to true{{/if}}.
{{/if}}
Return ONLY a JSON object with the fields:
  new_events: [{"unit_id", "type" (Narrative|InteractionTurn|InterventionPoint), "actor", "content"}]
  entity_updates: [{"entity_id", ...changed attributes}]
  scene_status: {"is_scene_over", "next_scene_id", "is_story_over", "new_clue"}
  next_action_type: PLAYING_NARRATIVE | AWAITING_INTERACTION | AWAITING_INTERVENTION | SCENE_ENDED
Start new_events with {"type": "InteractionTurn", "actor": "Player", "content": ""} when the player spoke.
"""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


def build_scene_context(
    story_id: str,
    brief: dict[str, Any],
    action_key: str,
    history: list[dict[str, Any]],
    intent_text: str | None = None,
    policy: dict[str, Any] | None = None,
    must_converge: bool = False,
) -> dict[str, Any]:
    """Assemble template variables for one generation request.

    `brief` is the scene brief (title, setting, entities, next_scene_id,
    is_story_terminal); `history` is the list of events the engine has
    committed in this traversal, oldest first.
    """
    ctx: dict[str, Any] = {
        "story_id": story_id,
        "scene": {
            "title": brief.get("title", ""),
            "setting": brief.get("setting", ""),
            "entities": list(brief.get("entities", [])),
            "entities_text": ", ".join(brief.get("entities", [])),
            "next_scene_id": brief.get("next_scene_id"),
            "is_story_terminal": bool(brief.get("is_story_terminal", False)),
        },
        "action_key": action_key,
        "history": history,
        "must_converge": must_converge,
    }
    if intent_text:
        ctx["intent_text"] = intent_text
    if policy is not None:
        ctx["policy"] = policy
    return ctx
