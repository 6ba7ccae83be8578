"""Entity State Ledger — latest known attributes per entity, for one traversal."""

from __future__ import annotations

import copy
from collections.abc import Iterable
from typing import Any

from nearfield.models import EntityDelta


class EntityLedger:
    def __init__(self, entities: dict[str, dict[str, Any]] | None = None) -> None:
        self._entities: dict[str, dict[str, Any]] = copy.deepcopy(entities) if entities else {}

    def apply(self, delta: EntityDelta) -> None:
        """Upsert the delta's attributes. Last write wins per attribute."""
        self._entities.setdefault(delta.entity_id, {}).update(delta.attributes())

    def apply_all(self, deltas: Iterable[EntityDelta]) -> None:
        for delta in deltas:
            self.apply(delta)

    def snapshot(self, entity_id: str) -> dict[str, Any] | None:
        """Copy of the entity's attributes, or None if it was never referenced."""
        attrs = self._entities.get(entity_id)
        return dict(attrs) if attrs is not None else None

    def snapshot_all(self) -> dict[str, dict[str, Any]]:
        return {eid: dict(attrs) for eid, attrs in self._entities.items()}

    def copy(self) -> EntityLedger:
        return EntityLedger(self._entities)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._entities

    def __len__(self) -> int:
        return len(self._entities)
