"""Interaction Policy Tracker — the turn budget of the active interaction.

A tracker is inactive until start() is called with the policy carried by an
intervention point (or by the first interaction batch). From then on each
accepted INTERACT calls advance() once; reaching max_turns is the forced
convergence point. clear() returns it to "no active policy" on scene exit.
"""

from __future__ import annotations

from nearfield.errors import PolicyExhausted
from nearfield.models import InteractionPolicy, PolicyProgress


class InteractionPolicyTracker:
    def __init__(self) -> None:
        self._policy: InteractionPolicy | None = None
        self._current_turn = 0

    @property
    def active(self) -> bool:
        return self._policy is not None

    @property
    def policy(self) -> InteractionPolicy | None:
        return self._policy

    @property
    def current_turn(self) -> int:
        return self._current_turn

    @property
    def max_turns(self) -> int | None:
        return self._policy.max_turns if self._policy else None

    def start(self, max_turns: int, goal: str | None = None, constraints: str | None = None) -> None:
        if self._policy is not None:
            raise RuntimeError("Interaction policy already started for this scene")
        self._policy = InteractionPolicy(max_turns=max_turns, goal=goal, constraints=constraints)
        self._current_turn = 0

    def advance(self) -> int:
        """Count one accepted turn and return the new turn number."""
        if self._policy is None:
            raise RuntimeError("No active interaction policy")
        if self._current_turn >= self._policy.max_turns:
            raise PolicyExhausted(
                f"Turn budget exhausted ({self._current_turn}/{self._policy.max_turns})"
            )
        self._current_turn += 1
        return self._current_turn

    def is_converged(self) -> bool:
        return self._policy is not None and self._current_turn == self._policy.max_turns

    def clear(self) -> None:
        self._policy = None
        self._current_turn = 0

    def progress(self) -> PolicyProgress | None:
        if self._policy is None:
            return None
        return PolicyProgress(max_turns=self._policy.max_turns, current_turn=self._current_turn)

    def copy(self) -> InteractionPolicyTracker:
        clone = InteractionPolicyTracker()
        clone._policy = self._policy
        clone._current_turn = self._current_turn
        return clone
