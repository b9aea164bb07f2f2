"""
Unit tests for the interactive story generation engine.

Tests cover:
- Fresh, linear, branching and concluding generation steps
- Write ordering for branch points
- Failure collection, stop_on_error and the path length cap
- Resume from persisted state and explicit resume states
- Bounded concurrency
"""

import asyncio
from typing import List, Tuple
from unittest.mock import AsyncMock

import pytest

from scriptwriter.config import GenerationSettings
from scriptwriter.core import (
    InteractiveStoryError,
    InteractiveStoryGenerator,
    InteractiveStoryParsingError,
    InterruptedBranchError,
    build_resume_plan,
    generate_interactive_story_tree,
)
from scriptwriter.models import (
    CreateSceneletInput,
    GenerationTask,
    ResumeState,
    ScriptwriterScenelet,
)
from scriptwriter.services import (
    FixtureJsonClient,
    InMemorySceneletPersistence,
    JsonModelClient,
    ModelRateLimitError,
    PersistenceError,
)
from story_fixtures import branch_response, concluding_response, linear_response

STORY_ID = "story-1"
SYSTEM_PROMPT = "You are a test scriptwriter."


class RecordingPersistence(InMemorySceneletPersistence):
    """In-memory persistence that logs write order."""

    def __init__(self):
        super().__init__()
        self.log: List[Tuple[str, str]] = []

    async def create_scenelet(self, scenelet):
        record = await super().create_scenelet(scenelet)
        self.log.append(("create", record.id))
        return record

    async def mark_scenelet_as_branch_point(self, scenelet_id, choice_prompt):
        await super().mark_scenelet_as_branch_point(scenelet_id, choice_prompt)
        self.log.append(("branch", scenelet_id))

    async def mark_scenelet_as_terminal(self, scenelet_id):
        await super().mark_scenelet_as_terminal(scenelet_id)
        self.log.append(("terminal", scenelet_id))


class FailingInsertPersistence(InMemorySceneletPersistence):
    """In-memory persistence whose n-th create_scenelet call raises."""

    def __init__(self, fail_on: int):
        super().__init__()
        self.fail_on = fail_on
        self.inserts = 0

    async def create_scenelet(self, scenelet):
        self.inserts += 1
        if self.inserts == self.fail_on:
            raise PersistenceError("insert rejected")
        return await super().create_scenelet(scenelet)


class ConcurrencyTrackingClient(JsonModelClient):
    """Concludes every path while tracking how many calls overlap."""

    def __init__(self):
        self.active = 0
        self.max_active = 0
        self.calls = 0

    async def generate_json(self, system_instruction, user_content, timeout_ms=None):
        self.calls += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        await asyncio.sleep(0.01)
        self.active -= 1
        return concluding_response(f"Ending {self.calls}")


async def seed_root(persistence, description="Opening"):
    return await persistence.create_scenelet(
        CreateSceneletInput(
            story_id=STORY_ID,
            content=ScriptwriterScenelet(description=description, shot_suggestions=["Wide"]),
        )
    )


def make_generator(client, persistence, **settings):
    settings.setdefault("timeout_ms", 1000)
    return InteractiveStoryGenerator(
        client,
        persistence,
        system_prompt=SYSTEM_PROMPT,
        settings=GenerationSettings(**settings),
    )


class TestFreshGeneration:
    """Tests for generating a story from nothing."""

    @pytest.mark.asyncio
    async def test_root_linear_response_persists_root_and_enqueues_it(self, story_constitution):
        """Test that the first response becomes the root and is continued."""
        persistence = InMemorySceneletPersistence()
        client = FixtureJsonClient([linear_response("The lamp turns on by itself")])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        records = await persistence.list_scenelets_by_story(STORY_ID)
        assert len(records) == 1
        assert records[0].parent_id is None
        assert records[0].content["description"] == "The lamp turns on by itself"
        assert report.resume_mode is False
        assert report.created_scenelets == 1
        assert report.completed_tasks == 1
        # The root was enqueued; its continuation hit the exhausted fixture.
        assert len(report.failures) == 1
        assert report.failures[0].parent_scenelet_id == records[0].id
        assert report.failures[0].error_type == "ModelApiError"

    @pytest.mark.asyncio
    async def test_model_called_with_prompt_and_timeout(self, story_constitution):
        """Test the request sent for the root task."""
        client = AsyncMock(spec=JsonModelClient)
        client.generate_json.return_value = concluding_response("It was only a dream")
        persistence = InMemorySceneletPersistence()

        report = await make_generator(client, persistence, timeout_ms=4321).generate(
            STORY_ID, story_constitution
        )

        assert report.succeeded
        client.generate_json.assert_awaited_once()
        args, kwargs = client.generate_json.call_args
        assert args[0] == SYSTEM_PROMPT
        assert story_constitution in args[1]
        assert "Now start with the first scenelet of the story." in args[1]
        assert kwargs["timeout_ms"] == 4321

    @pytest.mark.asyncio
    async def test_full_tree_is_generated_depth_first(self, story_constitution):
        """Test a complete run: root, branch, then each choice to its end."""
        persistence = RecordingPersistence()
        client = FixtureJsonClient([
            linear_response("Root"),
            branch_response("Answer the signal?", ["Answer", "Ignore"]),
            linear_response("Answer one"),
            concluding_response("Answer end"),
            concluding_response("Ignore end"),
        ])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert report.succeeded
        assert report.created_scenelets == 6
        assert report.completed_tasks == 5
        assert client.remaining == 0

        by_description = {
            record.content["description"]: record
            for record in await persistence.list_scenelets_by_story(STORY_ID)
        }
        answer = by_description["Choice Answer"]
        ignore = by_description["Choice Ignore"]
        assert by_description["Answer one"].parent_id == answer.id
        assert by_description["Answer end"].parent_id == by_description["Answer one"].id
        assert by_description["Ignore end"].parent_id == ignore.id
        assert by_description["Answer end"].is_terminal_node
        assert by_description["Ignore end"].is_terminal_node
        assert answer.choice_label_from_parent == "Answer"

    @pytest.mark.asyncio
    async def test_convenience_function(self, story_constitution):
        """Test generate_interactive_story_tree wires a generator."""
        persistence = InMemorySceneletPersistence()
        client = FixtureJsonClient([concluding_response("Short story")])

        report = await generate_interactive_story_tree(
            STORY_ID,
            story_constitution,
            client,
            persistence,
            settings=GenerationSettings(timeout_ms=1000),
        )

        assert report.succeeded
        assert report.created_scenelets == 1


class TestGenerationSteps:
    """Tests for single steps applied to an existing scenelet."""

    @pytest.mark.asyncio
    async def test_branch_response_creates_children_then_marks_parent(self, story_constitution):
        """Test that three choices create three children before the parent is marked."""
        persistence = RecordingPersistence()
        root = await seed_root(persistence)
        persistence.log.clear()
        client = FixtureJsonClient([
            branch_response("What now?", ["Dive", "Signal", "Run"]),
            concluding_response("Dive end"),
            concluding_response("Signal end"),
            concluding_response("Run end"),
        ])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert report.succeeded
        assert report.resume_mode is True
        assert [entry[0] for entry in persistence.log[:4]] == ["create", "create", "create", "branch"]
        assert persistence.log[3] == ("branch", root.id)

        records = await persistence.list_scenelets_by_story(STORY_ID)
        parent = next(r for r in records if r.id == root.id)
        assert parent.is_branch_point
        assert parent.choice_prompt == "What now?"
        children = [r for r in records if r.parent_id == root.id]
        assert [c.choice_label_from_parent for c in children] == ["Dive", "Signal", "Run"]
        assert not any(c.is_branch_point for c in children)
        # One continuation task per choice.
        assert report.completed_tasks == 4
        assert len(client.calls) == 4

    @pytest.mark.asyncio
    async def test_concluding_response_marks_new_child_terminal(self, story_constitution):
        """Test that a concluding scene ends the path with no further tasks."""
        persistence = RecordingPersistence()
        root = await seed_root(persistence)
        client = FixtureJsonClient([concluding_response("The end")])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert report.succeeded
        assert report.completed_tasks == 1
        assert len(client.calls) == 1
        records = await persistence.list_scenelets_by_story(STORY_ID)
        child = next(r for r in records if r.parent_id == root.id)
        assert child.is_terminal_node
        assert not next(r for r in records if r.id == root.id).is_terminal_node
        assert persistence.log[-1] == ("terminal", child.id)

    @pytest.mark.asyncio
    async def test_continuation_prompt_contains_path(self, story_constitution):
        """Test that continuing a scenelet sends its narrative path."""
        persistence = InMemorySceneletPersistence()
        await seed_root(persistence, description="The keeper wakes at midnight")
        client = FixtureJsonClient([concluding_response("The end")])

        await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert "## Current Narrative Path" in client.calls[0]
        assert "The keeper wakes at midnight" in client.calls[0]


class TestFailures:
    """Tests for task failures."""

    @pytest.mark.asyncio
    async def test_branch_with_one_choice_fails_without_writes(self, story_constitution):
        """Test that a malformed branch is reported and nothing is persisted."""
        persistence = RecordingPersistence()
        await seed_root(persistence)
        persistence.log.clear()
        client = FixtureJsonClient([branch_response("Choose", ["Only"])])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert not report.succeeded
        assert report.failures[0].error_type == "InteractiveStoryParsingError"
        assert report.completed_tasks == 0
        assert persistence.log == []

    @pytest.mark.asyncio
    async def test_root_branch_response_is_rejected(self, story_constitution):
        """Test that the root task cannot branch."""
        persistence = InMemorySceneletPersistence()
        client = FixtureJsonClient([branch_response("Choose", ["A", "B"])])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert report.failures[0].error_type == "SceneletValidationError"
        assert await persistence.has_scenelets_for_story(STORY_ID) is False

    @pytest.mark.asyncio
    async def test_stop_on_error_raises_first_failure(self, story_constitution):
        """Test that stop_on_error aborts the run with the task's error."""
        persistence = InMemorySceneletPersistence()
        await seed_root(persistence)
        client = FixtureJsonClient(["{not json"])

        with pytest.raises(InteractiveStoryParsingError):
            await make_generator(client, persistence, stop_on_error=True).generate(
                STORY_ID, story_constitution
            )

    @pytest.mark.asyncio
    async def test_failure_on_one_branch_does_not_block_others(self, story_constitution):
        """Test that failures are collected while other tasks keep running."""
        persistence = InMemorySceneletPersistence()
        client = FixtureJsonClient([
            linear_response("Root"),
            branch_response("Pick", ["A", "B"]),
            "",
            concluding_response("B end"),
        ])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert len(report.failures) == 1
        assert report.failures[0].error_type == "EmptyModelResponseError"
        descriptions = [r.content["description"] for r in await persistence.list_scenelets_by_story(STORY_ID)]
        assert "B end" in descriptions

    @pytest.mark.asyncio
    async def test_model_client_error_is_collected(self, story_constitution):
        """Test that exhausted retries surface as a task failure."""
        client = AsyncMock(spec=JsonModelClient)
        client.generate_json.side_effect = ModelRateLimitError("quota", retry_after_ms=1000)

        report = await make_generator(client, InMemorySceneletPersistence()).generate(
            STORY_ID, story_constitution
        )

        assert report.failures[0].error_type == "ModelRateLimitError"
        assert report.failures[0].parent_scenelet_id is None

    @pytest.mark.asyncio
    async def test_persistence_error_is_collected(self, story_constitution):
        """Test that a failed write fails only the task."""
        persistence = InMemorySceneletPersistence()
        persistence.create_scenelet = AsyncMock(side_effect=PersistenceError("db down"))
        client = FixtureJsonClient([linear_response("Root")])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert report.failures[0].error_type == "PersistenceError"
        assert report.failures[0].message == "db down"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fail_on,stored_choices", [(3, ["A"]), (4, ["A", "B"])])
    async def test_interrupted_branch_write_blocks_resume(self, story_constitution, fail_on, stored_choices):
        """Test that choices stored before a failed insert are never resumed as a linear path."""
        persistence = FailingInsertPersistence(fail_on=fail_on)
        root = await seed_root(persistence)
        client = FixtureJsonClient([branch_response("Which way?", ["A", "B", "C"])])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert report.failures[0].error_type == "PersistenceError"
        records = await persistence.list_scenelets_by_story(STORY_ID)
        children = [r for r in records if r.parent_id == root.id]
        assert [c.choice_label_from_parent for c in children] == stored_choices
        assert not next(r for r in records if r.id == root.id).is_branch_point

        with pytest.raises(InterruptedBranchError) as exc_info:
            build_resume_plan(STORY_ID, records)
        assert exc_info.value.parent_scenelet_id == root.id
        assert exc_info.value.child_ids == [c.id for c in children]

        with pytest.raises(InterruptedBranchError):
            await make_generator(FixtureJsonClient([]), persistence).generate(STORY_ID, story_constitution)

    @pytest.mark.asyncio
    async def test_path_length_cap(self, story_constitution):
        """Test that a path at the hard cap is not sent to the model."""
        persistence = InMemorySceneletPersistence()
        client = FixtureJsonClient([linear_response("Root"), linear_response("Never used")])

        report = await make_generator(client, persistence, max_path_length=1).generate(
            STORY_ID, story_constitution
        )

        assert len(client.calls) == 1
        assert report.failures[0].error_type == "PathLengthExceededError"

    @pytest.mark.asyncio
    async def test_path_length_cap_disabled(self, story_constitution):
        """Test that max_path_length=None never caps."""
        persistence = InMemorySceneletPersistence()
        client = FixtureJsonClient([linear_response("Root"), concluding_response("End")])

        report = await make_generator(client, persistence, max_path_length=None).generate(
            STORY_ID, story_constitution
        )

        assert report.succeeded
        assert len(client.calls) == 2


class TestResume:
    """Tests for resuming generation."""

    @pytest.mark.asyncio
    async def test_completed_story_returns_early(self, story_constitution):
        """Test that a fully concluded story makes no model calls."""
        persistence = InMemorySceneletPersistence()
        root = await seed_root(persistence)
        await persistence.mark_scenelet_as_terminal(root.id)
        client = AsyncMock(spec=JsonModelClient)

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert report.resume_mode is True
        assert report.completed_tasks == 0
        client.generate_json.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fresh_story_does_not_list_records(self, story_constitution):
        """Test that an empty story skips listing and starts at the root."""
        persistence = InMemorySceneletPersistence()
        persistence.list_scenelets_by_story = AsyncMock()
        client = FixtureJsonClient([concluding_response("End")])

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        persistence.list_scenelets_by_story.assert_not_awaited()
        assert report.succeeded

    @pytest.mark.asyncio
    async def test_explicit_resume_state(self, story_constitution):
        """Test that an explicit resume state is used instead of planning."""
        persistence = InMemorySceneletPersistence()
        root = await seed_root(persistence)
        persistence.list_scenelets_by_story = AsyncMock()
        client = FixtureJsonClient([concluding_response("End")])
        resume_state = ResumeState(pending_tasks=[
            GenerationTask(
                story_id=STORY_ID,
                parent_scenelet_id=root.id,
                path_context=[ScriptwriterScenelet(description="Opening", shot_suggestions=["Wide"])],
            )
        ])

        report = await make_generator(client, persistence).generate(
            STORY_ID, story_constitution, resume_state=resume_state
        )

        assert report.succeeded
        assert report.resume_mode is True
        persistence.list_scenelets_by_story.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_resume_state_for_other_story_rejected(self, story_constitution):
        """Test that resume tasks must target the story being generated."""
        resume_state = ResumeState(pending_tasks=[GenerationTask(story_id="story-2")])

        with pytest.raises(InteractiveStoryError, match="story-2"):
            await make_generator(AsyncMock(spec=JsonModelClient), InMemorySceneletPersistence()).generate(
                STORY_ID, story_constitution, resume_state=resume_state
            )


class TestArguments:
    """Tests for argument validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("story_id, constitution", [("", "Plot"), ("story-1", "   ")])
    async def test_blank_arguments_rejected(self, story_id, constitution):
        """Test that story id and constitution are required."""
        generator = make_generator(AsyncMock(spec=JsonModelClient), InMemorySceneletPersistence())
        with pytest.raises(InteractiveStoryError):
            await generator.generate(story_id, constitution)

    def test_blank_system_prompt_rejected(self):
        """Test that the injected system prompt must not be empty."""
        with pytest.raises(InteractiveStoryError):
            InteractiveStoryGenerator(
                AsyncMock(spec=JsonModelClient), InMemorySceneletPersistence(), system_prompt=" "
            )


class TestConcurrency:
    """Tests for bounded concurrency."""

    async def _seed_branch(self, persistence):
        root = await seed_root(persistence)
        for label in ("A", "B", "C"):
            await persistence.create_scenelet(
                CreateSceneletInput(
                    story_id=STORY_ID,
                    parent_id=root.id,
                    choice_label_from_parent=label,
                    content=ScriptwriterScenelet(description=f"Choice {label}", shot_suggestions=[]),
                )
            )
        await persistence.mark_scenelet_as_branch_point(root.id, "Pick one")

    @pytest.mark.asyncio
    async def test_sequential_by_default(self, story_constitution):
        """Test that the default runs one task at a time."""
        persistence = InMemorySceneletPersistence()
        await self._seed_branch(persistence)
        client = ConcurrencyTrackingClient()

        report = await make_generator(client, persistence).generate(STORY_ID, story_constitution)

        assert report.succeeded
        assert client.calls == 3
        assert client.max_active == 1

    @pytest.mark.asyncio
    async def test_parallel_tasks_bounded(self, story_constitution):
        """Test that max_concurrency bounds in-flight model calls."""
        persistence = InMemorySceneletPersistence()
        await self._seed_branch(persistence)
        client = ConcurrencyTrackingClient()

        report = await make_generator(client, persistence, max_concurrency=2).generate(
            STORY_ID, story_constitution
        )

        assert report.succeeded
        assert report.completed_tasks == 3
        assert client.max_active == 2

    @pytest.mark.asyncio
    async def test_unschedulable_tasks_raise_instead_of_succeeding(self, story_constitution):
        """Test that pending work with no concurrency slots is an error, not an empty success."""
        client = ConcurrencyTrackingClient()
        generator = make_generator(client, InMemorySceneletPersistence())
        generator.settings = GenerationSettings.model_construct(timeout_ms=1000, max_concurrency=0)

        with pytest.raises(InteractiveStoryError, match="cannot be scheduled"):
            await generator.generate(STORY_ID, story_constitution)
        assert client.calls == 0
