"""Generative provider — asks an LLM to write each batch.

Each scene is described by a brief instead of authored batches:

    {
      "title": "Bar entrance",
      "setting": "Neon-lit doorway of the Digger bar, late at night.",
      "entities": ["Fat Tang", "Xiao Xue"],
      "policy": {"max_turns": 3, "goal": "...", "constraints": "..."},
      "next_scene_id": "scene-b",
      "is_story_terminal": false,
    }

The prompt carries the brief, the action key and the events the engine has
committed so far in this traversal, all taken from the ResolveContext; the
provider itself keeps no per-session state. The reply must be a JSON object
shaped like an AdvanceResult. The engine still validates the batch (turn
budget, clue rules), so the provider only has to be well-formed, not correct.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError

from nearfield.errors import ProviderError
from nearfield.llm import LLM, LLMError
from nearfield.models import AdvanceResult, NarrativeUnit
from nearfield.prompts import DEFAULT_SCENE_PROMPT, PromptError, build_scene_context, render_prompt

from .base import ResolveContext, parse_action_key, scene_ref

logger = logging.getLogger(__name__)


def _extract_json(reply: str) -> dict[str, Any]:
    """Pull the JSON object out of a completion, tolerating code fences and chatter."""
    start = reply.find("{")
    end = reply.rfind("}")
    if start == -1 or end <= start:
        raise ProviderError("LLM reply contains no JSON object")
    try:
        data = json.loads(reply[start:end + 1])
    except json.JSONDecodeError as e:
        raise ProviderError(f"LLM returned invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProviderError(f"LLM reply must be a JSON object, got {type(data).__name__}")
    return data


def _history_entries(events: tuple[NarrativeUnit, ...]) -> list[dict[str, Any]]:
    return [{"type": u.type, "actor": u.actor, "content": u.content} for u in events]


class GenerativeSceneProvider:
    """Args:
        llm:      any callable matching the nearfield.llm.LLM protocol.
        briefs:   maps "<story_id>:<scene_id>" to a scene brief (see module doc).
        template: Handlebars prompt template; defaults to DEFAULT_SCENE_PROMPT.
    """

    def __init__(self, llm: LLM, briefs: dict[str, dict[str, Any]], template: str = DEFAULT_SCENE_PROMPT) -> None:
        self._llm = llm
        self._briefs = briefs
        self._template = template

    async def has_scene(self, story_id: str, scene_id: str) -> bool:
        return scene_ref(story_id, scene_id) in self._briefs

    async def resolve(
        self, story_id: str, scene_id: str, action_key: str, context: ResolveContext | None = None
    ) -> AdvanceResult | None:
        key = parse_action_key(action_key)
        ref = scene_ref(story_id, scene_id)
        brief = self._briefs.get(ref)
        if brief is None:
            logger.warning("No scene brief for %s", ref)
            return None
        context = context or ResolveContext()

        policy = None
        must_converge = False
        if brief.get("policy"):
            max_turns = int(brief["policy"]["max_turns"])
            if key.turn is not None:
                turn = key.turn
            elif key.is_default:
                turn = min(context.current_turn + 1, max_turns)
            else:
                turn = context.current_turn
            policy = {**brief["policy"], "current_turn": min(turn, max_turns)}
            must_converge = key.action == "INTERACT" and turn >= max_turns

        intent_text = context.intent_text if key.action == "INTERACT" else None
        history = [] if key.action == "LOAD_SCENE" else _history_entries(context.history)
        try:
            prompt = render_prompt(
                self._template,
                build_scene_context(
                    story_id, brief, action_key, history,
                    intent_text=intent_text, policy=policy, must_converge=must_converge,
                ),
            )
        except PromptError as e:
            raise ProviderError(str(e)) from e

        try:
            reply = await self._llm("scene", prompt)
        except LLMError as e:
            raise ProviderError(str(e)) from e

        data = _extract_json(reply)
        data.setdefault("story_id", story_id)
        data.setdefault("current_scene_id", scene_id)
        try:
            batch = AdvanceResult.model_validate(data)
        except ValidationError as e:
            raise ProviderError(f"LLM reply is not a valid batch: {e.error_count()} error(s)") from e

        logger.debug(
            "Generated %s [%s] -> %s (%d events)", ref, context.session_id, action_key, len(batch.new_events)
        )
        return batch
