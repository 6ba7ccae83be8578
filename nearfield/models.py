"""Core protocol models.

Every value that crosses the engine boundary (provider batches, advance
results, clues handed to the inbox) is one of these types. Pydantic validates
them wherever they enter: canned scripts at provider construction, generative
replies when parsed, HTTP bodies in the routes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, model_validator

UnitType = Literal["Narrative", "InteractionTurn", "InterventionPoint"]

ActionType = Literal["LOAD_SCENE", "INTERACT", "PASS", "REQUEST_NARRATIVE"]

NextActionType = Literal[
    "PLAYING_NARRATIVE",
    "AWAITING_INTERACTION",
    "AWAITING_INTERVENTION",
    "SCENE_ENDED",
]

ClueStatus = Literal["untracked", "tracking", "completed"]

PLAYER_ACTOR = "Player"


class InteractionPolicy(BaseModel):
    """The convergence policy introduced at an intervention point."""

    max_turns: PositiveInt
    goal: str | None = None
    constraints: str | None = None


class PolicyProgress(BaseModel):
    """Turn budget as reported in scene_status.interaction_policy."""

    max_turns: PositiveInt
    current_turn: int = Field(default=0, ge=0)


class NarrativeUnit(BaseModel):
    """One atomic event in a batch. Batch order is playback order."""

    model_config = ConfigDict(frozen=True)

    unit_id: str
    type: UnitType
    actor: str  # speaker name, "Player" or "System"
    content: str = ""  # empty on a Player turn until the intent text is filled in
    hint: str | None = None
    policy: InteractionPolicy | None = None

    @model_validator(mode="after")
    def _intervention_fields_only_on_intervention_points(self) -> NarrativeUnit:
        if self.type != "InterventionPoint" and (self.hint is not None or self.policy is not None):
            raise ValueError(f"hint/policy are only allowed on InterventionPoint units ({self.unit_id})")
        return self


class EntityDelta(BaseModel):
    """Partial attribute overwrite for one entity.

    Named attributes (composure, status, ...) are carried as extra fields;
    whatever is present overwrites, whatever is absent is left alone.
    """

    model_config = ConfigDict(extra="allow")

    entity_id: str

    def attributes(self) -> dict:
        return dict(self.model_extra or {})


class Clue(BaseModel):
    """A discoverable clue minted by a scene transition."""

    clue_id: str
    title: str
    summary: str
    status: ClueStatus = "untracked"
    story_id: str
    related_clues: list[str] = Field(default_factory=list)
    related_scenes: list[str] = Field(default_factory=list)


class SceneStatus(BaseModel):
    is_scene_over: bool = False
    next_scene_id: str | None = None
    is_story_over: bool = False
    new_clue: Clue | None = None
    interaction_policy: PolicyProgress | None = None


class AdvanceResult(BaseModel):
    """Output of one protocol step, and the shape of every provider batch."""

    story_id: str
    current_scene_id: str
    new_events: list[NarrativeUnit] = Field(default_factory=list)
    entity_updates: list[EntityDelta] = Field(default_factory=list)
    scene_status: SceneStatus = Field(default_factory=SceneStatus)
    next_action_type: NextActionType
