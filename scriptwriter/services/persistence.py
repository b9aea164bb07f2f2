"""
Scenelet persistence contract and an in-memory implementation.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List

from ..models import CreateSceneletInput, SceneletRecord
from .errors import PersistenceError


class SceneletPersistence(ABC):
    """Storage for the scenelets of story trees."""

    @abstractmethod
    async def create_scenelet(self, scenelet: CreateSceneletInput) -> SceneletRecord:
        """Create a scenelet and return the stored record (with its id)."""
        pass

    @abstractmethod
    async def mark_scenelet_as_branch_point(self, scenelet_id: str, choice_prompt: str) -> None:
        pass

    @abstractmethod
    async def mark_scenelet_as_terminal(self, scenelet_id: str) -> None:
        pass

    @abstractmethod
    async def has_scenelets_for_story(self, story_id: str) -> bool:
        pass

    @abstractmethod
    async def list_scenelets_by_story(self, story_id: str) -> List[SceneletRecord]:
        """All scenelets of a story, in creation order."""
        pass


class InMemorySceneletPersistence(SceneletPersistence):
    """Process-local persistence with sequential `scenelet-N` ids."""

    def __init__(self):
        self._counter = 0
        self._scenelets: Dict[str, SceneletRecord] = {}

    async def create_scenelet(self, scenelet: CreateSceneletInput) -> SceneletRecord:
        self._counter += 1
        record = SceneletRecord(
            id=f"scenelet-{self._counter}",
            story_id=scenelet.story_id,
            parent_id=scenelet.parent_id,
            choice_label_from_parent=scenelet.choice_label_from_parent,
            content=scenelet.content.to_payload(),
            created_at=datetime.now(timezone.utc),
        )
        self._scenelets[record.id] = record
        return record.model_copy(deep=True)

    async def mark_scenelet_as_branch_point(self, scenelet_id: str, choice_prompt: str) -> None:
        record = self._get(scenelet_id)
        record.is_branch_point = True
        record.choice_prompt = choice_prompt

    async def mark_scenelet_as_terminal(self, scenelet_id: str) -> None:
        self._get(scenelet_id).is_terminal_node = True

    async def has_scenelets_for_story(self, story_id: str) -> bool:
        return any(record.story_id == story_id for record in self._scenelets.values())

    async def list_scenelets_by_story(self, story_id: str) -> List[SceneletRecord]:
        return [
            record.model_copy(deep=True)
            for record in self._scenelets.values()
            if record.story_id == story_id
        ]

    def _get(self, scenelet_id: str) -> SceneletRecord:
        record = self._scenelets.get(scenelet_id)
        if record is None:
            raise PersistenceError(f"Scenelet {scenelet_id} missing in memory.")
        return record
