"""Scene Data Provider — where the engine gets its event batches.

The engine asks for one batch per step, addressed by (story_id, scene_id,
action_key):

    "LOAD_SCENE"                   entering the scene
    "PASS"                         declining the intervention point
    "INTERACT_turn_<n>"            the n-th accepted player turn
    "INTERACT_default"             fallback for turns with no dedicated batch
    "REQUEST_NARRATIVE_batch_<n>"  the n-th continuation after PLAYING_NARRATIVE

Two implementations are provided:

    CannedSceneProvider      — static lookup table of authored batches.
    GenerativeSceneProvider  — renders a prompt and asks an LLM for the batch.

Along with the key the engine passes a ResolveContext: the session, the
player's text, the turn counter and the events committed so far. Providers
keep no traversal state of their own.

The engine is written once against the SceneDataProvider protocol; which
implementation it gets is decided by configuration (see nearfield.config).
"""

# Re-export the public surface so `from nearfield.providers import ...` works.

from .base import (  # noqa: F401
    DEFAULT_SESSION,
    INTERACT_DEFAULT_KEY,
    LOAD_SCENE_KEY,
    PASS_KEY,
    ActionKey,
    ResolveContext,
    SceneDataProvider,
    interact_key,
    narrative_key,
    parse_action_key,
    scene_ref,
)

from .canned import CannedSceneProvider  # noqa: F401

from .generative import GenerativeSceneProvider  # noqa: F401
