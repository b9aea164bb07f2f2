"""
Resume planning for interrupted story generation.

Given every persisted scenelet of a story, reconstruct the generation
tasks still needed to finish the tree. Pure function, no I/O.
"""

import logging
from typing import List, Tuple

from ..models import GenerationTask, ResumeState, SceneletRecord, ScriptwriterScenelet
from .errors import InteractiveStoryError, InterruptedBranchError, StoryIntegrityError
from .scenelets import clone_scenelet, normalize_scenelet_content
from .tree_index import check_all_reachable, index_scenelet_tree

logger = logging.getLogger("scriptwriter.resume_planner")


def build_resume_plan(story_id: str, scenelets: List[SceneletRecord]) -> ResumeState:
    """
    Compute pending generation tasks from a full snapshot of a story.

    An empty snapshot yields a single root task (null parent, empty path).
    A tree whose every leaf is terminal yields no tasks.

    Raises:
        StoryIntegrityError: when the records cannot be resumed safely
            (multiple roots, branch point without children, ...).
        InterruptedBranchError: when a branch write stopped after some of
            its choice children were stored.
        SceneletValidationError: when stored content is malformed.
    """
    story_id = (story_id or "").strip()
    if not story_id:
        raise InteractiveStoryError("Story id must not be empty when planning resume.")

    records = [record for record in scenelets if record.story_id == story_id]
    if not records:
        logger.debug(f"[build_resume_plan] Story {story_id} has no scenelets, planning root task")
        return ResumeState(pending_tasks=[GenerationTask(story_id=story_id)])

    index = index_scenelet_tree(story_id, records)
    pending: List[GenerationTask] = []
    visited = set()

    # Explicit work stack of (record, path context ending at that record).
    stack: List[Tuple[SceneletRecord, List[ScriptwriterScenelet]]] = []
    root_content = normalize_scenelet_content(index.root.content, index.root.id)
    stack.append((index.root, [root_content]))

    while stack:
        record, path_context = stack.pop()
        if record.id in visited:
            raise StoryIntegrityError(
                f"Cycle detected in story tree at scenelet {record.id}.", story_id
            )
        visited.add(record.id)
        children = index.children_of(record.id)

        if record.is_terminal_node:
            if children:
                raise StoryIntegrityError(
                    f"Terminal scenelet {record.id} cannot have child scenelets.", story_id
                )
            continue

        if record.is_branch_point:
            _check_branch_point(record, children, story_id)
        else:
            _check_not_interrupted_branch(record, children, story_id)
            if len(children) > 1:
                raise StoryIntegrityError(
                    f"Scenelet {record.id} has {len(children)} children but is not marked as a branch point.",
                    story_id,
                )

        if not children:
            pending.append(
                GenerationTask(
                    story_id=story_id,
                    parent_scenelet_id=record.id,
                    path_context=[clone_scenelet(scenelet) for scenelet in path_context],
                )
            )
            continue

        # Reversed so the first child is walked first.
        for child in reversed(children):
            child_content = normalize_scenelet_content(child.content, child.id)
            stack.append((child, path_context + [child_content]))

    check_all_reachable(index, visited)

    logger.debug(
        f"[build_resume_plan] Story {story_id}: {len(records)} scenelets, {len(pending)} pending tasks"
    )
    return ResumeState(pending_tasks=pending)


def _check_not_interrupted_branch(
    record: SceneletRecord, children: List[SceneletRecord], story_id: str
) -> None:
    """Labelled children under an unmarked parent are a branch whose write stopped part way."""
    labelled = [child.id for child in children if (child.choice_label_from_parent or "").strip()]
    if not labelled:
        return
    raise InterruptedBranchError(
        f"Scenelet {record.id} has choice children ({', '.join(labelled)}) but is not marked as a "
        f"branch point; the branch write was interrupted. Delete those children to regenerate it.",
        story_id,
        parent_scenelet_id=record.id,
        child_ids=labelled,
    )


def _check_branch_point(record: SceneletRecord, children: List[SceneletRecord], story_id: str) -> None:
    if not (record.choice_prompt or "").strip():
        raise StoryIntegrityError(
            f"Branch scenelet {record.id} is missing a choice prompt.", story_id
        )

    if not children:
        raise StoryIntegrityError(
            f"Branch scenelet {record.id} is marked as branch point but missing child scenelets.",
            story_id,
        )

    if len(children) < 2:
        raise StoryIntegrityError(
            f"Branch scenelet {record.id} must have at least two child scenelets.", story_id
        )

    for child in children:
        if not (child.choice_label_from_parent or "").strip():
            raise StoryIntegrityError(
                f"Branch scenelet {record.id} has a child without a choice label ({child.id}).",
                story_id,
            )
