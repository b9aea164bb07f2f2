"""
Unit tests for the story tree snapshot.
"""

import json

import pytest

from scriptwriter.core import StoryIntegrityError, build_story_tree_snapshot
from scriptwriter.models import BranchingPointDigest, SceneletDigest, SceneletRole
from story_fixtures import make_record


def _branching_story():
    return [
        make_record("db-root", order=0, description="Root"),
        make_record("db-hall", parent_id="db-root", order=1, description="Hall",
                    is_branch_point=True, choice_prompt="Which door?"),
        make_record("db-blue", parent_id="db-hall", order=3, choice_label="Blue door",
                    description="Blue", is_terminal_node=True),
        make_record("db-red", parent_id="db-hall", order=2, choice_label="Red door", description="Red"),
        make_record("db-red-2", parent_id="db-red", order=4, description="Red two", is_terminal_node=True),
    ]


class TestStoryTreeSnapshot:
    """Tests for build_story_tree_snapshot."""

    def test_depth_first_entries_with_sequential_ids(self):
        """Test entry order, id assignment and roles."""
        snapshot = build_story_tree_snapshot(_branching_story())

        kinds = [entry.kind for entry in snapshot.entries]
        assert kinds == ["scenelet", "scenelet", "branching-point", "scenelet", "scenelet", "scenelet"]

        scenelets = [entry.data for entry in snapshot.entries if entry.kind == "scenelet"]
        assert all(isinstance(s, SceneletDigest) for s in scenelets)
        assert [(s.id, s.description, s.role) for s in scenelets] == [
            ("scenelet-1", "Root", SceneletRole.ROOT),
            ("scenelet-2", "Hall", SceneletRole.LINEAR),
            ("scenelet-3", "Red", SceneletRole.BRANCH),
            ("scenelet-4", "Red two", SceneletRole.TERMINAL),
            ("scenelet-5", "Blue", SceneletRole.TERMINAL),
        ]
        assert scenelets[2].choice_label == "Red door"
        assert scenelets[2].parent_id == "scenelet-2"
        assert scenelets[0].parent_id is None

    def test_branching_point_digest(self):
        """Test the branching point emitted after a branch scenelet."""
        snapshot = build_story_tree_snapshot(_branching_story())

        branching = snapshot.entries[2].data
        assert isinstance(branching, BranchingPointDigest)
        assert branching.id == "branching-point-1"
        assert branching.source_scenelet_id == "scenelet-2"
        assert branching.choice_prompt == "Which door?"
        assert [(c.label, c.leads_to) for c in branching.choices] == [
            ("Red door", "scenelet-3"),
            ("Blue door", "scenelet-5"),
        ]

    def test_to_text_is_json(self):
        """Test the text rendering parses back as JSON without null fields."""
        text = build_story_tree_snapshot(_branching_story()).to_text()
        data = json.loads(text)

        assert data["entries"][0]["kind"] == "scenelet"
        assert "parent_id" not in data["entries"][0]["data"]
        assert "choice_label" not in data["entries"][1]["data"]

    def test_empty_records_rejected(self):
        """Test that a snapshot needs at least one scenelet."""
        with pytest.raises(StoryIntegrityError):
            build_story_tree_snapshot([])

    def test_branch_child_without_label_rejected(self):
        """Test that branch children must carry choice labels."""
        records = _branching_story()
        records[3].choice_label_from_parent = None
        with pytest.raises(StoryIntegrityError, match="missing a choice label"):
            build_story_tree_snapshot(records)

    def test_branch_without_children_rejected(self):
        """Test that a branch point with no children is rejected."""
        records = [make_record("root", is_branch_point=True, choice_prompt="Pick")]
        with pytest.raises(StoryIntegrityError, match="at least one child"):
            build_story_tree_snapshot(records)

    def test_records_of_other_stories_ignored(self):
        """Test that mixed-story input snapshots only the requested story."""
        records = _branching_story() + [make_record("other-root", story_id="story-2")]

        snapshot = build_story_tree_snapshot(records, "story-1")

        scenelets = [entry.data for entry in snapshot.entries if entry.kind == "scenelet"]
        assert len(scenelets) == 5
        assert scenelets[0].description == "Root"

    def test_story_of_first_record_used_by_default(self):
        """Test that without a story id, records of later stories do not add roots."""
        records = [make_record("other-root", story_id="story-2", description="Other")] + _branching_story()

        snapshot = build_story_tree_snapshot(records)

        assert len(snapshot.entries) == 1
        assert snapshot.entries[0].data.description == "Other"

    def test_unknown_story_rejected(self):
        """Test that a story id with no records is rejected."""
        with pytest.raises(StoryIntegrityError) as exc_info:
            build_story_tree_snapshot(_branching_story(), "story-9")
        assert exc_info.value.story_id == "story-9"
