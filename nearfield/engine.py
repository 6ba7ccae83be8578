"""Advance Engine — the near-field state machine.

One call to advance() is one protocol step:
  1. Look up (or, for LOAD_SCENE, create) the traversal for (story, scene, session).
  2. Work out the action key from the traversal state and the action.
  3. Ask the provider for that batch (with a timeout).
  4. Start/advance the interaction policy, validate forced convergence,
     fall back to "INTERACT_default" where the budget requires it.
  5. Merge entity deltas, normalise scene_status, derive next_action_type.
  6. Commit the traversal (ledger, policy, event history), hand any minted
     clue to the clue sink.

Steps 2–5 run on a fork of the traversal; nothing is committed unless the
whole step succeeds, so a timeout, cancellation or error leaves the
traversal exactly as it was. Providers only ever see committed history,
through the ResolveContext built in _resolve().

State transitions (state = last next_action_type, UNINITIALIZED before LOAD):

    any state              LOAD_SCENE         fresh traversal, provider's LOAD batch
    PLAYING_NARRATIVE      REQUEST_NARRATIVE  next scheduled narrative batch
    AWAITING_INTERVENTION  INTERACT           turn + 1, INTERACT_turn_<n>
    AWAITING_INTERACTION   INTERACT           turn + 1, INTERACT_turn_<n>
    PLAYING_NARRATIVE      INTERACT           player cuts in; same as above
    AWAITING_INTERVENTION  PASS               PASS batch, scene forced over
    PLAYING_NARRATIVE      PASS               same as above
    SCENE_ENDED            INTERACT           only after budget exhaustion: INTERACT_default
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Literal, TypeVar

from nearfield.clues import ClueSink
from nearfield.errors import (
    ActionKeyNotFound,
    InvalidAction,
    PolicyExhausted,
    ProviderError,
    ProviderTimeout,
    SceneNotFound,
)
from nearfield.ledger import EntityLedger
from nearfield.models import (
    PLAYER_ACTOR,
    ActionType,
    AdvanceResult,
    NarrativeUnit,
    NextActionType,
    PolicyProgress,
)
from nearfield.policy import InteractionPolicyTracker
from nearfield.providers import (
    DEFAULT_SESSION,
    INTERACT_DEFAULT_KEY,
    LOAD_SCENE_KEY,
    PASS_KEY,
    ResolveContext,
    SceneDataProvider,
    interact_key,
    narrative_key,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Marks "use the tracker's own progress" in _finish.
_UNSET = object()

TraversalState = Literal[
    "UNINITIALIZED",
    "PLAYING_NARRATIVE",
    "AWAITING_INTERACTION",
    "AWAITING_INTERVENTION",
    "SCENE_ENDED",
]

_INTERACT_STATES = ("AWAITING_INTERACTION", "AWAITING_INTERVENTION", "PLAYING_NARRATIVE")
_PASS_STATES = ("AWAITING_INTERVENTION", "PLAYING_NARRATIVE")


@dataclass(frozen=True)
class TraversalKey:
    story_id: str
    scene_id: str
    session_id: str = DEFAULT_SESSION


@dataclass
class Traversal:
    """Transient state of one scene traversal. Read-only outside the engine."""

    key: TraversalKey
    state: TraversalState = "UNINITIALIZED"
    ledger: EntityLedger = field(default_factory=EntityLedger)
    tracker: InteractionPolicyTracker = field(default_factory=InteractionPolicyTracker)
    narrative_batches: int = 0
    budget_exhausted: bool = False
    final_policy: PolicyProgress | None = None
    next_scene_id: str | None = None
    is_story_over: bool = False
    history: list[NarrativeUnit] = field(default_factory=list)

    def fork(self) -> Traversal:
        return Traversal(
            key=self.key,
            state=self.state,
            ledger=self.ledger.copy(),
            tracker=self.tracker.copy(),
            narrative_batches=self.narrative_batches,
            budget_exhausted=self.budget_exhausted,
            final_policy=self.final_policy,
            next_scene_id=self.next_scene_id,
            is_story_over=self.is_story_over,
            history=list(self.history),
        )


def _ends_scene(batch: AdvanceResult) -> bool:
    return batch.scene_status.is_scene_over or batch.next_action_type == "SCENE_ENDED"


def _turns_taken(t: Traversal) -> int:
    if t.tracker.active:
        return t.tracker.current_turn
    return t.final_policy.current_turn if t.final_policy else 0


def _fill_player_turns(events: list[NarrativeUnit], intent_text: str | None) -> list[NarrativeUnit]:
    """Player turns arrive with empty content; give them the player's text."""
    if not intent_text:
        return list(events)
    return [
        e.model_copy(update={"content": intent_text})
        if e.type == "InteractionTurn" and e.actor == PLAYER_ACTOR and not e.content
        else e
        for e in events
    ]


class AdvanceEngine:
    """Args:
        provider:         the scene data provider (canned or generative).
        clue_sink:        receives each minted clue once; None drops them.
        provider_timeout: seconds allowed for each provider call.
    """

    def __init__(
        self,
        provider: SceneDataProvider,
        clue_sink: ClueSink | None = None,
        provider_timeout: float = 30.0,
    ) -> None:
        self._provider = provider
        self._clue_sink = clue_sink
        self._timeout = provider_timeout
        self._traversals: dict[TraversalKey, Traversal] = {}
        self._locks: dict[TraversalKey, asyncio.Lock] = {}
        self._lock_users: dict[TraversalKey, int] = {}
        self._finished_stories: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def advance(
        self,
        story_id: str,
        scene_id: str,
        action: ActionType,
        turn_input: str | None = None,
        session_id: str = DEFAULT_SESSION,
    ) -> AdvanceResult:
        """Run one protocol step and return its result."""
        key = TraversalKey(story_id, scene_id, session_id)
        async with self._exclusive(key):
            if action == "LOAD_SCENE":
                if (story_id, session_id) in self._finished_stories:
                    raise InvalidAction(f"Story {story_id} is over for session {session_id}")
                draft = Traversal(key=key)
                result = await self._load_scene(draft)
            else:
                current = self._traversals.get(key)
                if current is None:
                    raise InvalidAction(f"{action} before LOAD_SCENE for {story_id}:{scene_id}")
                draft = current.fork()
                if action == "INTERACT":
                    result = await self._interact(draft, turn_input)
                elif action == "PASS":
                    result = await self._pass(draft)
                elif action == "REQUEST_NARRATIVE":
                    result = await self._request_narrative(draft)
                else:
                    raise InvalidAction(f"Unknown action {action!r}")

            self._traversals[key] = draft
            if action == "LOAD_SCENE":
                self._evict_ended(key)
            logger.debug(
                "advance %s:%s [%s] %s -> %s (%d events)",
                story_id, scene_id, session_id, action, result.next_action_type, len(result.new_events),
            )
            self._emit(result, session_id)
            return result

    @asynccontextmanager
    async def _exclusive(self, key: TraversalKey) -> AsyncIterator[None]:
        """Serialise steps on one traversal key.

        The lock is forgotten once nobody holds or waits on it and the key has
        no traversal, so failed loads and discarded traversals leave nothing behind.
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                if key not in self._traversals:
                    self._locks.pop(key, None)

    def _evict_ended(self, loaded: TraversalKey) -> None:
        """Drop ended, idle traversals of other scenes once the session loads a new one."""
        for key, t in list(self._traversals.items()):
            if (
                key != loaded
                and key.story_id == loaded.story_id
                and key.session_id == loaded.session_id
                and t.state == "SCENE_ENDED"
                and key not in self._lock_users
            ):
                logger.debug("Evicting ended traversal %s:%s [%s]", key.story_id, key.scene_id, key.session_id)
                del self._traversals[key]
                self._locks.pop(key, None)

    def traversal(
        self, story_id: str, scene_id: str, session_id: str = DEFAULT_SESSION
    ) -> Traversal | None:
        return self._traversals.get(TraversalKey(story_id, scene_id, session_id))

    async def end_traversal(self, story_id: str, scene_id: str, session_id: str = DEFAULT_SESSION) -> bool:
        """Discard a traversal once any step running on it has finished.

        Returns whether there was a traversal to discard.
        """
        key = TraversalKey(story_id, scene_id, session_id)
        async with self._exclusive(key):
            return self._traversals.pop(key, None) is not None

    def is_story_over(self, story_id: str, session_id: str = DEFAULT_SESSION) -> bool:
        return (story_id, session_id) in self._finished_stories

    async def reset_story(self, story_id: str, session_id: str = DEFAULT_SESSION) -> None:
        """Forget every traversal of the story for this session so it can be replayed."""
        for key in [k for k in self._traversals if k.story_id == story_id and k.session_id == session_id]:
            await self.end_traversal(key.story_id, key.scene_id, key.session_id)
        self._finished_stories.discard((story_id, session_id))

    # ------------------------------------------------------------------
    # Action handlers (operate on a forked traversal)
    # ------------------------------------------------------------------

    async def _load_scene(self, t: Traversal) -> AdvanceResult:
        if not await self._call(self._provider.has_scene(t.key.story_id, t.key.scene_id)):
            raise SceneNotFound(t.key.story_id, t.key.scene_id)
        batch = await self._require(t, LOAD_SCENE_KEY)
        logger.info("Entering scene %s:%s", t.key.story_id, t.key.scene_id)
        self._introduce_policy(t, batch)
        return self._finish(t, batch)

    async def _request_narrative(self, t: Traversal) -> AdvanceResult:
        if t.state != "PLAYING_NARRATIVE":
            raise InvalidAction(f"REQUEST_NARRATIVE is not valid in state {t.state}")
        t.narrative_batches += 1
        batch = await self._require(t, narrative_key(t.narrative_batches))
        self._introduce_policy(t, batch)
        return self._finish(t, batch)

    async def _pass(self, t: Traversal) -> AdvanceResult:
        if t.state not in _PASS_STATES:
            raise InvalidAction(f"PASS is not valid in state {t.state}")
        batch = await self._require(t, PASS_KEY)
        t.tracker.clear()
        return self._finish(t, batch, force_end=True)

    async def _interact(self, t: Traversal, intent_text: str | None) -> AdvanceResult:
        if not intent_text:
            logger.warning("INTERACT without turn input on %s:%s", t.key.story_id, t.key.scene_id)
        if t.state == "SCENE_ENDED":
            if not t.budget_exhausted:
                raise InvalidAction("INTERACT after the scene has ended")
            return await self._exhausted(t, intent_text)
        if t.state not in _INTERACT_STATES:
            raise InvalidAction(f"INTERACT is not valid in state {t.state}")
        if t.tracker.is_converged():
            return await self._exhausted(t, intent_text)

        turn = t.tracker.current_turn + 1
        turn_key = interact_key(turn)
        batch = await self._resolve(t, turn_key, intent_text)
        used_default = False
        if batch is None:
            batch = await self._resolve(t, INTERACT_DEFAULT_KEY, intent_text)
            if batch is None:
                raise ActionKeyNotFound(t.key.story_id, t.key.scene_id, turn_key)
            logger.debug("%s missing, using %s", turn_key, INTERACT_DEFAULT_KEY)
            used_default = True

        self._introduce_policy(t, batch)
        if not t.tracker.active:
            raise ProviderError(f"{turn_key} batch did not establish an interaction policy")
        t.tracker.advance()

        if t.tracker.is_converged() and not _ends_scene(batch):
            logger.warning(
                "Provider did not converge at turn %d/%d for %s:%s",
                t.tracker.current_turn, t.tracker.max_turns, t.key.story_id, t.key.scene_id,
            )
            fallback = None if used_default else await self._resolve(t, INTERACT_DEFAULT_KEY, intent_text)
            if fallback is None or not _ends_scene(fallback):
                raise PolicyExhausted(
                    f"Turn budget of {t.tracker.max_turns} reached without the scene ending "
                    f"and no terminal fallback for {t.key.story_id}:{t.key.scene_id}"
                )
            batch = fallback

        return self._finish(t, batch, intent_text=intent_text)

    async def _exhausted(self, t: Traversal, intent_text: str | None) -> AdvanceResult:
        """INTERACT past the budget: only a terminal default batch may answer it."""
        progress = t.final_policy or t.tracker.progress()
        batch = await self._resolve(t, INTERACT_DEFAULT_KEY, intent_text)
        if batch is None or not _ends_scene(batch):
            budget = progress.max_turns if progress else "?"
            raise PolicyExhausted(
                f"Turn budget of {budget} exhausted for {t.key.story_id}:{t.key.scene_id} "
                "and no terminal fallback"
            )
        logger.info("Budget exhausted on %s:%s, answered with %s", t.key.story_id, t.key.scene_id, INTERACT_DEFAULT_KEY)
        return self._finish(t, batch, intent_text=intent_text, policy=progress)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeout(f"Scene provider did not answer within {self._timeout}s") from e

    async def _resolve(self, t: Traversal, action_key: str, intent_text: str | None = None) -> AdvanceResult | None:
        context = ResolveContext(
            session_id=t.key.session_id,
            intent_text=intent_text,
            current_turn=_turns_taken(t),
            history=tuple(t.history),
        )
        batch = await self._call(
            self._provider.resolve(t.key.story_id, t.key.scene_id, action_key, context)
        )
        if batch is None and not await self._call(self._provider.has_scene(t.key.story_id, t.key.scene_id)):
            raise SceneNotFound(t.key.story_id, t.key.scene_id)
        return batch

    async def _require(self, t: Traversal, action_key: str) -> AdvanceResult:
        batch = await self._resolve(t, action_key)
        if batch is None:
            raise ActionKeyNotFound(t.key.story_id, t.key.scene_id, action_key)
        return batch

    def _introduce_policy(self, t: Traversal, batch: AdvanceResult) -> None:
        """Start the tracker the first time a batch carries a policy."""
        if t.tracker.active:
            return
        for unit in batch.new_events:
            if unit.type == "InterventionPoint" and unit.policy is not None:
                t.tracker.start(unit.policy.max_turns, unit.policy.goal, unit.policy.constraints)
                logger.debug("Policy started at %s: max_turns=%d", unit.unit_id, unit.policy.max_turns)
                return
        declared = batch.scene_status.interaction_policy
        if declared is not None:
            t.tracker.start(declared.max_turns)
            logger.debug("Policy started from scene_status: max_turns=%d", declared.max_turns)

    def _finish(
        self,
        t: Traversal,
        batch: AdvanceResult,
        intent_text: str | None = None,
        force_end: bool = False,
        policy: PolicyProgress | None | object = _UNSET,
    ) -> AdvanceResult:
        """Normalise the batch into the step result and move the traversal to its next state."""
        status = batch.scene_status.model_copy(deep=True)
        next_action: NextActionType = batch.next_action_type

        if force_end:
            status.is_scene_over = True
        if status.is_story_over and not status.is_scene_over:
            logger.warning("Batch ends the story without ending the scene; ending the scene")
            status.is_scene_over = True
        if next_action == "SCENE_ENDED" and not status.is_scene_over:
            logger.warning("Batch declares SCENE_ENDED without is_scene_over; ending the scene")
            status.is_scene_over = True
        if status.is_scene_over:
            next_action = "SCENE_ENDED"
        if status.is_story_over:
            status.next_scene_id = None

        progress = t.tracker.progress() if policy is _UNSET else policy
        declared = status.interaction_policy
        if declared is not None and progress is not None and declared.current_turn != progress.current_turn:
            logger.warning(
                "Provider declared turn %d, engine counted %d", declared.current_turn, progress.current_turn
            )
        status.interaction_policy = progress

        clue = status.new_clue
        if clue is not None:
            if not status.is_scene_over:
                logger.warning("Clue %s minted outside a scene transition; dropped", clue.clue_id)
                clue = None
            elif clue.status != "untracked" or clue.story_id != t.key.story_id:
                logger.warning("Clue %s normalised to untracked/%s", clue.clue_id, t.key.story_id)
                clue = clue.model_copy(update={"status": "untracked", "story_id": t.key.story_id})
        status.new_clue = clue

        events = _fill_player_turns(batch.new_events, intent_text)
        t.history.extend(events)
        t.ledger.apply_all(batch.entity_updates)
        t.state = next_action
        if status.is_scene_over:
            t.budget_exhausted = t.budget_exhausted or t.tracker.is_converged()
            t.final_policy = progress
            t.tracker.clear()
            t.next_scene_id = status.next_scene_id
            t.is_story_over = status.is_story_over

        return AdvanceResult(
            story_id=t.key.story_id,
            current_scene_id=t.key.scene_id,
            new_events=events,
            entity_updates=[d.model_copy() for d in batch.entity_updates],
            scene_status=status,
            next_action_type=next_action,
        )

    def _emit(self, result: AdvanceResult, session_id: str) -> None:
        status = result.scene_status
        if status.is_scene_over:
            logger.info(
                "Scene %s:%s ended (next=%s, story_over=%s)",
                result.story_id, result.current_scene_id, status.next_scene_id, status.is_story_over,
            )
        if status.is_story_over:
            self._finished_stories.add((result.story_id, session_id))
        if status.new_clue is not None and self._clue_sink is not None:
            logger.info("Clue minted: %s", status.new_clue.clue_id)
            self._clue_sink.receive(status.new_clue)
