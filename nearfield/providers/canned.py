"""Canned provider — authored batches looked up by (story, scene, action key).

Scene script layout:

    {
      "LOAD_SCENE": <batch>,
      "PASS": <batch>,
      "INTERACT": {"turn_1": <batch>, ..., "default": <batch>},
      "REQUEST_NARRATIVE": {"batch_1": <batch>, ...},
    }

Every batch is validated into an AdvanceResult when the provider is built, so
broken content fails at startup rather than mid-scene.
"""

from __future__ import annotations

import logging
from typing import Any

from nearfield.models import AdvanceResult

from .base import ResolveContext, parse_action_key, scene_ref

logger = logging.getLogger(__name__)

_TABLE_ACTIONS = ("INTERACT", "REQUEST_NARRATIVE")
_SINGLE_ACTIONS = ("LOAD_SCENE", "PASS")

SceneTable = dict[str, "AdvanceResult | dict[str, AdvanceResult]"]


def _compile_script(ref: str, script: dict[str, Any]) -> SceneTable:
    compiled: SceneTable = {}
    for action, value in script.items():
        if action in _SINGLE_ACTIONS:
            compiled[action] = AdvanceResult.model_validate(value)
        elif action in _TABLE_ACTIONS:
            table: dict[str, AdvanceResult] = {}
            for slot, batch in value.items():
                key = f"{action}_{slot}"
                try:
                    parse_action_key(key)
                except ValueError as e:
                    raise ValueError(f"Bad slot {slot!r} under {action} in scene script {ref}") from e
                table[slot] = AdvanceResult.model_validate(batch)
            compiled[action] = table
        else:
            raise ValueError(f"Unknown action {action!r} in scene script {ref}")
    return compiled


class CannedSceneProvider:
    """Args:
        scripts: maps "<story_id>:<scene_id>" to a scene script (see module doc).
    """

    def __init__(self, scripts: dict[str, dict[str, Any]]) -> None:
        self._scenes = {ref: _compile_script(ref, script) for ref, script in scripts.items()}

    async def has_scene(self, story_id: str, scene_id: str) -> bool:
        return scene_ref(story_id, scene_id) in self._scenes

    async def resolve(
        self, story_id: str, scene_id: str, action_key: str, context: ResolveContext | None = None
    ) -> AdvanceResult | None:
        key = parse_action_key(action_key)
        ref = scene_ref(story_id, scene_id)
        scene = self._scenes.get(ref)
        if scene is None:
            logger.warning("Scene not found: %s", ref)
            return None
        entry = scene.get(key.action)
        if entry is not None and key.slot is not None:
            entry = entry.get(key.slot)
        if entry is None:
            logger.debug("No batch for %s in %s", action_key, ref)
            return None
        logger.debug("Resolved %s -> %s (%d events)", ref, action_key, len(entry.new_events))
        # Callers get their own copy; the table stays pristine.
        return entry.model_copy(deep=True)
