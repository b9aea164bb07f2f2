"""
Adjacency index over persisted scenelet records.
Shared by the resume planner and the story tree snapshot.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..models import SceneletRecord
from .errors import StoryIntegrityError

logger = logging.getLogger("scriptwriter.tree_index")


@dataclass
class SceneletTreeIndex:
    """Records of one story keyed by id, with children ordered by creation time."""
    story_id: str
    root: SceneletRecord
    records: Dict[str, SceneletRecord] = field(default_factory=dict)
    children: Dict[str, List[SceneletRecord]] = field(default_factory=dict)

    def children_of(self, scenelet_id: str) -> List[SceneletRecord]:
        return self.children.get(scenelet_id, [])


def index_scenelet_tree(story_id: str, records: List[SceneletRecord]) -> SceneletTreeIndex:
    """
    Partition records by parent and verify they form a single tree.

    Raises:
        StoryIntegrityError: on duplicate ids, zero or several roots, or
            records whose parent is missing from the set.
    """
    by_id: Dict[str, SceneletRecord] = {}
    children: Dict[str, List[SceneletRecord]] = {}
    roots: List[SceneletRecord] = []

    for record in records:
        if not record.id or not record.id.strip():
            raise StoryIntegrityError("Scenelet records must include a non-empty id.", story_id)
        if record.id in by_id:
            raise StoryIntegrityError(
                f"Duplicate scenelet id detected in story {story_id}: {record.id}.", story_id
            )
        by_id[record.id] = record

        if record.parent_id is None:
            roots.append(record)
        else:
            children.setdefault(record.parent_id, []).append(record)

    if not roots:
        raise StoryIntegrityError(f"Story {story_id} is missing a root scenelet.", story_id)

    if len(roots) > 1:
        root_ids = ", ".join(root.id for root in roots)
        raise StoryIntegrityError(
            f"Story {story_id} has multiple root scenelets ({root_ids}).", story_id
        )

    for parent_id, siblings in children.items():
        if parent_id not in by_id:
            raise StoryIntegrityError(
                f"Scenelet {parent_id} referenced as parent but missing from story {story_id}.",
                story_id,
            )
        siblings.sort(key=lambda record: _timestamp(record.created_at))

    return SceneletTreeIndex(story_id=story_id, root=roots[0], records=by_id, children=children)


def check_all_reachable(index: SceneletTreeIndex, visited: set) -> None:
    """Raise if any record was not reached from the root (orphans or cycles)."""
    if len(visited) == len(index.records):
        return
    orphans = sorted(set(index.records) - visited)
    raise StoryIntegrityError(
        f"Story {index.story_id} contains orphaned scenelets: {', '.join(orphans)}.",
        index.story_id,
    )


def _timestamp(value: Optional[datetime]) -> float:
    if value is None:
        return 0.0
    try:
        return value.timestamp()
    except (OverflowError, OSError, ValueError):
        logger.debug(f"[_timestamp] Unusable created_at {value!r}, ordering first")
        return 0.0
