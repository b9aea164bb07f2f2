"""
Story tree snapshot.

Flattens a persisted story tree into depth-first entries: a digest per
scenelet, followed by a branching-point digest after every branch node.
Persistence ids are replaced with sequential `scenelet-N` ids so the
snapshot reads the same for any storage backend.
"""

from typing import Dict, List, Optional, Tuple

from ..models import (
    BranchChoice,
    BranchingPointDigest,
    SceneletDigest,
    SceneletRecord,
    SceneletRole,
    StoryTreeEntry,
    StoryTreeSnapshot,
)
from .errors import StoryIntegrityError
from .scenelets import normalize_scenelet_content
from .tree_index import SceneletTreeIndex, check_all_reachable, index_scenelet_tree


def build_story_tree_snapshot(
    records: List[SceneletRecord], story_id: Optional[str] = None
) -> StoryTreeSnapshot:
    """
    Assemble a depth-first snapshot of one story's scenelets.

    Records of other stories are ignored; without `story_id` the story of
    the first record is used.
    """
    if story_id is None and records:
        story_id = records[0].story_id
    records = [record for record in records if record.story_id == story_id]
    if not records:
        raise StoryIntegrityError("Story tree requires at least one scenelet.", story_id or "")

    index = index_scenelet_tree(story_id, records)
    assigned_ids = _assign_ids(index)
    check_all_reachable(index, set(assigned_ids))

    entries: List[StoryTreeEntry] = []
    branching_counter = 0
    stack: List[Tuple[SceneletRecord, Optional[SceneletRecord]]] = [(index.root, None)]

    while stack:
        node, parent = stack.pop()
        children = index.children_of(node.id)
        content = normalize_scenelet_content(node.content, node.id)

        digest = SceneletDigest(
            id=assigned_ids[node.id],
            parent_id=assigned_ids[parent.id] if parent else None,
            role=_role(node, parent),
            description=content.description,
            dialogue=content.dialogue,
            shot_suggestions=content.shot_suggestions,
        )
        if parent is not None and parent.is_branch_point:
            digest.choice_label = _choice_label(node, parent, story_id)
        entries.append(StoryTreeEntry(kind="scenelet", data=digest))

        if node.is_branch_point:
            choice_prompt = (node.choice_prompt or "").strip()
            if not choice_prompt:
                raise StoryIntegrityError(
                    f"Branch point scenelet {node.id} is missing a choice prompt.", story_id
                )
            if not children:
                raise StoryIntegrityError(
                    f"Branch point scenelet {node.id} must include at least one child scenelet.",
                    story_id,
                )
            branching_counter += 1
            entries.append(
                StoryTreeEntry(
                    kind="branching-point",
                    data=BranchingPointDigest(
                        id=f"branching-point-{branching_counter}",
                        source_scenelet_id=assigned_ids[node.id],
                        choice_prompt=choice_prompt,
                        choices=[
                            BranchChoice(
                                label=_choice_label(child, node, story_id),
                                leads_to=assigned_ids[child.id],
                            )
                            for child in children
                        ],
                    ),
                )
            )

        for child in reversed(children):
            stack.append((child, node))

    return StoryTreeSnapshot(entries=entries)


def _assign_ids(index: SceneletTreeIndex) -> Dict[str, str]:
    """Number scenelets in depth-first pre-order."""
    assigned: Dict[str, str] = {}
    stack = [index.root]
    while stack:
        node = stack.pop()
        if node.id in assigned:
            raise StoryIntegrityError(
                f"Cycle detected in story tree at scenelet {node.id}.", index.story_id
            )
        assigned[node.id] = f"scenelet-{len(assigned) + 1}"
        stack.extend(reversed(index.children_of(node.id)))
    return assigned


def _role(node: SceneletRecord, parent: Optional[SceneletRecord]) -> SceneletRole:
    if parent is None:
        return SceneletRole.ROOT
    if node.is_terminal_node:
        return SceneletRole.TERMINAL
    if parent.is_branch_point:
        return SceneletRole.BRANCH
    return SceneletRole.LINEAR


def _choice_label(child: SceneletRecord, parent: SceneletRecord, story_id: str) -> str:
    label = (child.choice_label_from_parent or "").strip()
    if not label:
        raise StoryIntegrityError(
            f"Scenelet {child.id} is missing a choice label from branch parent {parent.id}.",
            story_id,
        )
    return label
