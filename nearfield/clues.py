"""Clue inbox — the collaborator that takes ownership of minted clues.

The engine hands each minted clue over once, with status "untracked". From
then on the inbox owns it: the player (through the API) moves it to
"tracking" and later "completed". The engine never touches it again.
"""

from __future__ import annotations

import logging
from typing import Protocol

from nearfield.models import Clue, ClueStatus

logger = logging.getLogger(__name__)

_TRANSITIONS: dict[ClueStatus, tuple[ClueStatus, ...]] = {
    "untracked": ("tracking",),
    "tracking": ("completed",),
    "completed": (),
}


class ClueSink(Protocol):
    def receive(self, clue: Clue) -> None: ...


class ClueInbox:
    """In-memory clue inbox keyed by clue_id, in arrival order."""

    def __init__(self) -> None:
        self._clues: dict[str, Clue] = {}

    def receive(self, clue: Clue) -> None:
        if clue.clue_id in self._clues:
            logger.debug("Clue %s already in inbox, ignored", clue.clue_id)
            return
        self._clues[clue.clue_id] = clue.model_copy(deep=True)
        logger.info("Clue received: %s (story=%s)", clue.clue_id, clue.story_id)

    def get(self, clue_id: str) -> Clue | None:
        return self._clues.get(clue_id)

    def list(self, story_id: str | None = None) -> list[Clue]:
        return [c for c in self._clues.values() if story_id is None or c.story_id == story_id]

    def set_status(self, clue_id: str, status: ClueStatus) -> Clue:
        """Move a clue forward. Raises KeyError if unknown, ValueError if the move is not allowed."""
        clue = self._clues.get(clue_id)
        if clue is None:
            raise KeyError(clue_id)
        if status == clue.status:
            return clue
        if status not in _TRANSITIONS[clue.status]:
            raise ValueError(f"Cannot move clue {clue_id} from {clue.status} to {status}")
        updated = clue.model_copy(update={"status": status})
        self._clues[clue_id] = updated
        return updated
