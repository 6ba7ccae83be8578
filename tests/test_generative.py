"""Tests for nearfield.providers.generative — LLM-backed batches."""

import json
from unittest.mock import AsyncMock

import pytest

from nearfield.content import DEMO_BRIEFS
from nearfield.engine import AdvanceEngine
from nearfield.errors import PolicyExhausted, ProviderError
from nearfield.llm import LLMError
from nearfield.models import NarrativeUnit
from nearfield.providers import GenerativeSceneProvider, ResolveContext


def _reply(events: list[dict], next_action: str = "AWAITING_INTERACTION", **status) -> str:
    return json.dumps({
        "new_events": events,
        "entity_updates": [],
        "scene_status": status,
        "next_action_type": next_action,
    })


NARRATION = {"unit_id": "G001", "type": "Narrative", "actor": "System", "content": "Rain on neon."}
PLAYER = {"unit_id": "G002_P", "type": "InteractionTurn", "actor": "Player", "content": ""}
XIAO_XUE = {"unit_id": "G002_N", "type": "InteractionTurn", "actor": "Xiao Xue", "content": "\"Go away.\""}


@pytest.fixture
def llm() -> AsyncMock:
    return AsyncMock(return_value=_reply([NARRATION], "PLAYING_NARRATIVE"))


@pytest.fixture
def provider(llm: AsyncMock) -> GenerativeSceneProvider:
    return GenerativeSceneProvider(llm, DEMO_BRIEFS)


def _prompt(llm: AsyncMock) -> str:
    stage, prompt = llm.call_args[0]
    assert stage == "scene"
    return prompt


class TestResolve:
    async def test_has_scene_follows_briefs(self, provider: GenerativeSceneProvider) -> None:
        assert await provider.has_scene("demo-story", "scene-b")
        assert not await provider.has_scene("demo-story", "scene-z")

    async def test_unknown_scene_returns_none_without_calling_llm(
        self, provider: GenerativeSceneProvider, llm: AsyncMock,
    ) -> None:
        assert await provider.resolve("demo-story", "scene-z", "LOAD_SCENE") is None
        llm.assert_not_called()

    async def test_load_scene_batch(self, provider: GenerativeSceneProvider, llm: AsyncMock) -> None:
        batch = await provider.resolve("demo-story", "scene-a", "LOAD_SCENE")
        assert batch.story_id == "demo-story"
        assert batch.current_scene_id == "scene-a"
        assert [u.unit_id for u in batch.new_events] == ["G001"]
        assert batch.next_action_type == "PLAYING_NARRATIVE"
        assert "Bar entrance" in _prompt(llm)

    async def test_reply_wrapped_in_chatter(self, provider: GenerativeSceneProvider, llm: AsyncMock) -> None:
        llm.return_value = "Sure! Here it is:\n```json\n" + _reply([NARRATION]) + "\n```"
        batch = await provider.resolve("demo-story", "scene-a", "LOAD_SCENE")
        assert batch.new_events[0].content == "Rain on neon."

    async def test_interact_sends_intent_and_budget(
        self, provider: GenerativeSceneProvider, llm: AsyncMock,
    ) -> None:
        llm.return_value = _reply([PLAYER, XIAO_XUE])
        await provider.resolve(
            "demo-story", "scene-b", "INTERACT_turn_2", ResolveContext(intent_text="I can help you.", current_turn=1),
        )
        prompt = _prompt(llm)
        assert "Player says: I can help you." in prompt
        assert "turn 2 of 5" in prompt
        assert "final turn" not in prompt

    async def test_last_turn_demands_convergence(
        self, provider: GenerativeSceneProvider, llm: AsyncMock,
    ) -> None:
        llm.return_value = _reply([PLAYER, XIAO_XUE], "SCENE_ENDED", is_scene_over=True, is_story_over=True)
        await provider.resolve(
            "demo-story", "scene-b", "INTERACT_turn_5", ResolveContext(intent_text="Trust me.", current_turn=4),
        )
        assert "final turn" in _prompt(llm)

    async def test_default_key_counts_as_last_turn(
        self, provider: GenerativeSceneProvider, llm: AsyncMock,
    ) -> None:
        llm.return_value = _reply([PLAYER], "SCENE_ENDED", is_scene_over=True)
        await provider.resolve(
            "demo-story", "scene-a", "INTERACT_default", ResolveContext(intent_text="One more thing.", current_turn=3),
        )
        prompt = _prompt(llm)
        assert "turn 3 of 3" in prompt
        assert "final turn" in prompt

    async def test_intent_ignored_outside_interact(
        self, provider: GenerativeSceneProvider, llm: AsyncMock,
    ) -> None:
        await provider.resolve("demo-story", "scene-a", "PASS", ResolveContext(intent_text="should not appear"))
        assert "should not appear" not in _prompt(llm)


class TestContext:
    async def test_history_in_prompt(self, provider: GenerativeSceneProvider, llm: AsyncMock) -> None:
        history = (
            NarrativeUnit(unit_id="G001", type="Narrative", actor="System", content="Rain on neon."),
            NarrativeUnit(unit_id="G002_P", type="InteractionTurn", actor="Player", content="Hey."),
        )
        await provider.resolve("demo-story", "scene-a", "REQUEST_NARRATIVE_batch_1", ResolveContext(history=history))
        prompt = _prompt(llm)
        assert "[Narrative:System] Rain on neon." in prompt
        assert "[InteractionTurn:Player] Hey." in prompt

    async def test_load_scene_ignores_history(self, provider: GenerativeSceneProvider, llm: AsyncMock) -> None:
        stale = (NarrativeUnit(unit_id="OLD", type="Narrative", actor="System", content="Last visit."),)
        await provider.resolve("demo-story", "scene-a", "LOAD_SCENE", ResolveContext(history=stale))
        assert "Last visit." not in _prompt(llm)

    async def test_narrative_batch_reports_current_turn(
        self, provider: GenerativeSceneProvider, llm: AsyncMock,
    ) -> None:
        await provider.resolve("demo-story", "scene-b", "REQUEST_NARRATIVE_batch_1", ResolveContext(current_turn=3))
        prompt = _prompt(llm)
        assert "turn 3 of 5" in prompt
        assert "final turn" not in prompt

    async def test_default_key_before_last_turn(self, provider: GenerativeSceneProvider, llm: AsyncMock) -> None:
        await provider.resolve("demo-story", "scene-b", "INTERACT_default", ResolveContext(current_turn=1))
        prompt = _prompt(llm)
        assert "turn 2 of 5" in prompt
        assert "final turn" not in prompt


# ---------------------------------------------------------------------------
# Driven by the engine: history is whatever the traversal committed
# ---------------------------------------------------------------------------

GATE_BRIEFS = {
    "t:s": {
        "title": "Checkpoint",
        "setting": "A barrier across a wet street.",
        "entities": ["Guard"],
        "policy": {"max_turns": 1, "goal": "Get past the guard"},
    },
}

HALT = {
    "unit_id": "halt", "type": "InterventionPoint", "actor": "Guard", "content": "Halt!",
    "hint": "Talk or leave", "policy": {"max_turns": 1},
}
STALLING = {"unit_id": "stall", "type": "InteractionTurn", "actor": "Guard", "content": "UNCOMMITTED"}


def _line(unit_id: str, content: str) -> dict:
    return {"unit_id": unit_id, "type": "Narrative", "actor": "System", "content": content}


class TestEngineHistory:
    async def test_sessions_see_only_their_own_history(self) -> None:
        llm = AsyncMock(side_effect=[
            _reply([_line("A1", "SESSION_ONE_ONLY")], "AWAITING_INTERACTION"),
            _reply([_line("B1", "SESSION_TWO_ONLY")], "AWAITING_INTERACTION"),
            _reply([PLAYER, XIAO_XUE], interaction_policy={"max_turns": 5, "current_turn": 1}),
        ])
        engine = AdvanceEngine(GenerativeSceneProvider(llm, DEMO_BRIEFS))
        await engine.advance("demo-story", "scene-b", "LOAD_SCENE", session_id="one")
        await engine.advance("demo-story", "scene-b", "LOAD_SCENE", session_id="two")
        await engine.advance("demo-story", "scene-b", "INTERACT", turn_input="Hello?", session_id="one")

        prompt = _prompt(llm)
        assert "SESSION_ONE_ONLY" in prompt
        assert "SESSION_TWO_ONLY" not in prompt
        assert [u.unit_id for u in engine.traversal("demo-story", "scene-b", "two").history] == ["B1"]

    async def test_committed_player_text_reaches_next_prompt(self) -> None:
        llm = AsyncMock(side_effect=[
            _reply([_line("A1", "Rain on neon.")], "AWAITING_INTERACTION"),
            _reply([PLAYER, XIAO_XUE], "PLAYING_NARRATIVE", interaction_policy={"max_turns": 5, "current_turn": 1}),
            _reply([_line("A2", "She looks away.")], "AWAITING_INTERACTION"),
        ])
        engine = AdvanceEngine(GenerativeSceneProvider(llm, DEMO_BRIEFS))
        await engine.advance("demo-story", "scene-b", "LOAD_SCENE")
        await engine.advance("demo-story", "scene-b", "INTERACT", turn_input="I can help you.")
        await engine.advance("demo-story", "scene-b", "REQUEST_NARRATIVE")

        prompt = _prompt(llm)
        assert "[InteractionTurn:Player] I can help you." in prompt
        assert "turn 1 of 5" in prompt
        assert "turn 0 of" not in prompt

    async def test_aborted_step_leaves_no_history(self) -> None:
        llm = AsyncMock(side_effect=[
            _reply([HALT], "AWAITING_INTERVENTION"),
            _reply([PLAYER, STALLING], "AWAITING_INTERACTION"),
            _reply([PLAYER, STALLING], "AWAITING_INTERACTION"),
        ])
        engine = AdvanceEngine(GenerativeSceneProvider(llm, GATE_BRIEFS))
        await engine.advance("t", "s", "LOAD_SCENE")
        with pytest.raises(PolicyExhausted):
            await engine.advance("t", "s", "INTERACT", turn_input="Let me through.")
        assert llm.await_count == 3
        assert [u.unit_id for u in engine.traversal("t", "s").history] == ["halt"]

        llm.side_effect = None
        llm.return_value = _reply([PLAYER, _line("open", "The barrier lifts.")], "SCENE_ENDED", is_scene_over=True)
        result = await engine.advance("t", "s", "INTERACT", turn_input="Please.")
        assert result.scene_status.is_scene_over
        prompt = _prompt(llm)
        assert "[InterventionPoint:Guard] Halt!" in prompt
        assert "UNCOMMITTED" not in prompt
        assert "Let me through." not in prompt

    async def test_failed_reply_leaves_history_alone(self) -> None:
        llm = AsyncMock(side_effect=[_reply([NARRATION], "PLAYING_NARRATIVE"), "garbage"])
        engine = AdvanceEngine(GenerativeSceneProvider(llm, DEMO_BRIEFS))
        await engine.advance("demo-story", "scene-a", "LOAD_SCENE")
        with pytest.raises(ProviderError):
            await engine.advance("demo-story", "scene-a", "REQUEST_NARRATIVE")
        assert [u.unit_id for u in engine.traversal("demo-story", "scene-a").history] == ["G001"]


class TestFailures:
    async def test_llm_error_becomes_provider_error(
        self, provider: GenerativeSceneProvider, llm: AsyncMock,
    ) -> None:
        llm.side_effect = LLMError("Cannot connect to LLM backend at http://localhost:5001")
        with pytest.raises(ProviderError, match="Cannot connect"):
            await provider.resolve("demo-story", "scene-a", "LOAD_SCENE")

    @pytest.mark.parametrize("reply", ["no json here", "{not: valid}", "[1, 2] {"])
    async def test_unparseable_reply(self, provider: GenerativeSceneProvider, llm: AsyncMock, reply: str) -> None:
        llm.return_value = reply
        with pytest.raises(ProviderError):
            await provider.resolve("demo-story", "scene-a", "LOAD_SCENE")

    async def test_reply_that_is_not_a_batch(self, provider: GenerativeSceneProvider, llm: AsyncMock) -> None:
        llm.return_value = json.dumps({"new_events": [], "next_action_type": "DANCING"})
        with pytest.raises(ProviderError, match="not a valid batch"):
            await provider.resolve("demo-story", "scene-a", "LOAD_SCENE")

