"""Errors raised by a single advance() step.

All of them are local to the call that raised them: the traversal's ledger
and policy tracker are only replaced once a step has fully succeeded.
"""


class NearFieldError(Exception):
    """Base class. `code` is the stable identifier surfaced over HTTP."""

    code = "near_field_error"


class SceneNotFound(NearFieldError):
    """The provider has no content for the (story, scene) pair."""

    code = "scene_not_found"

    def __init__(self, story_id: str, scene_id: str) -> None:
        super().__init__(f"Scene not found: {story_id}:{scene_id}")
        self.story_id = story_id
        self.scene_id = scene_id


class ActionKeyNotFound(NearFieldError):
    """The provider has the scene but no batch for the action key (and no fallback)."""

    code = "action_key_not_found"

    def __init__(self, story_id: str, scene_id: str, action_key: str) -> None:
        super().__init__(f"No content for {action_key} in scene {story_id}:{scene_id}")
        self.story_id = story_id
        self.scene_id = scene_id
        self.action_key = action_key


class PolicyExhausted(NearFieldError):
    """An INTERACT went past the turn budget and the provider offers no terminal fallback."""

    code = "policy_exhausted"


class ProviderTimeout(NearFieldError):
    """The provider did not answer in time. Nothing was applied; safe to retry."""

    code = "provider_timeout"


class ProviderError(NearFieldError):
    """The provider failed or returned a batch the engine cannot use."""

    code = "provider_error"


class InvalidAction(NearFieldError):
    """The action is not valid in the traversal's current state."""

    code = "invalid_action"
