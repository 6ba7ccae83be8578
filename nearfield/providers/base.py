"""Provider protocol and the action-key grammar shared by engine and providers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from nearfield.models import ActionType, AdvanceResult, NarrativeUnit

DEFAULT_SESSION = "default"

LOAD_SCENE_KEY = "LOAD_SCENE"
PASS_KEY = "PASS"
INTERACT_DEFAULT_KEY = "INTERACT_default"

_KEY_RE = re.compile(
    r"^(?:(LOAD_SCENE|PASS)|INTERACT_(?:turn_(\d+)|(default))|REQUEST_NARRATIVE_batch_(\d+))$"
)


@dataclass(frozen=True)
class ResolveContext:
    """What the engine has committed for the traversal asking for a batch.

    `history` holds the events already shown in this traversal, player turns
    filled in; `current_turn` is the engine's turn counter before the step.
    """

    session_id: str = DEFAULT_SESSION
    intent_text: str | None = None
    current_turn: int = 0
    history: tuple[NarrativeUnit, ...] = ()


class SceneDataProvider(Protocol):
    async def has_scene(self, story_id: str, scene_id: str) -> bool: ...

    async def resolve(
        self, story_id: str, scene_id: str, action_key: str, context: ResolveContext | None = None
    ) -> AdvanceResult | None: ...


def scene_ref(story_id: str, scene_id: str) -> str:
    """Registry key used by both providers: "<story>:<scene>"."""
    return f"{story_id}:{scene_id}"


def interact_key(turn: int) -> str:
    if turn < 1:
        raise ValueError(f"Turn numbers start at 1, got {turn}")
    return f"INTERACT_turn_{turn}"


def narrative_key(batch: int) -> str:
    if batch < 1:
        raise ValueError(f"Narrative batches start at 1, got {batch}")
    return f"REQUEST_NARRATIVE_batch_{batch}"


@dataclass(frozen=True)
class ActionKey:
    """Parsed form of an action key string."""

    action: ActionType
    turn: int | None = None
    batch: int | None = None
    is_default: bool = False

    @property
    def slot(self) -> str | None:
        """Sub-key inside the action's table: "turn_3", "default", "batch_1" or None."""
        if self.is_default:
            return "default"
        if self.turn is not None:
            return f"turn_{self.turn}"
        if self.batch is not None:
            return f"batch_{self.batch}"
        return None


def parse_action_key(key: str) -> ActionKey:
    match = _KEY_RE.match(key)
    if not match:
        raise ValueError(f"Malformed action key: {key!r}")
    simple, turn, default, batch = match.groups()
    if simple:
        return ActionKey(action=simple)
    if turn is not None:
        return ActionKey(action="INTERACT", turn=int(turn))
    if default:
        return ActionKey(action="INTERACT", is_default=True)
    return ActionKey(action="REQUEST_NARRATIVE", batch=int(batch))
