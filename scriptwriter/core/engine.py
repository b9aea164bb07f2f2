"""
Interactive story tree generation engine.

Expands one story's tree frontier until every path ends in a terminal
scenelet. Each task sends a single request to the model and decodes the
response fully in memory before anything is written, so a failed model call
or a malformed response leaves storage untouched. Interrupted runs are
continued from persisted state by the resume planner.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..config import GenerationSettings
from ..models import (
    BranchResponse,
    ConcludingResponse,
    CreateSceneletInput,
    GenerationReport,
    GenerationTask,
    LinearResponse,
    ResumeState,
    ScriptwriterResponse,
    ScriptwriterScenelet,
    TaskFailure,
)
from ..prompts import INTERACTIVE_SCRIPTWRITER_SYSTEM_PROMPT, build_scriptwriter_user_content
from ..services.errors import ModelClientError, PersistenceError
from ..services.model_client import JsonModelClient
from ..services.persistence import SceneletPersistence
from .errors import InteractiveStoryError, PathLengthExceededError, SceneletValidationError
from .response_parser import parse_scriptwriter_response
from .resume_planner import build_resume_plan
from .scenelets import clone_scenelet, normalize_scenelet_content

logger = logging.getLogger("scriptwriter.engine")

# Failures that end a single task without aborting the run.
TASK_ERRORS: Tuple[type, ...] = (InteractiveStoryError, ModelClientError, PersistenceError)


@dataclass
class _TaskOutcome:
    created_scenelets: int = 0
    continuations: List[GenerationTask] = field(default_factory=list)


class InteractiveStoryGenerator:
    """
    Drives generation of one story tree at a time.

    Collaborators are injected: the JSON model client (already wrapped with
    its retry policy), scenelet persistence, and the system prompt text.
    """

    def __init__(
        self,
        json_client: JsonModelClient,
        persistence: SceneletPersistence,
        system_prompt: str = INTERACTIVE_SCRIPTWRITER_SYSTEM_PROMPT,
        settings: Optional[GenerationSettings] = None,
    ):
        if not system_prompt or not system_prompt.strip():
            raise InteractiveStoryError("Interactive scriptwriter system prompt must not be empty.")
        self.json_client = json_client
        self.persistence = persistence
        self.system_prompt = system_prompt
        self.settings = settings or GenerationSettings()

    async def generate(
        self,
        story_id: str,
        story_constitution: str,
        resume_state: Optional[ResumeState] = None,
    ) -> GenerationReport:
        """
        Generate (or continue generating) the tree of one story.

        Without an explicit `resume_state` the pending tasks are planned
        from persisted scenelets; an empty story starts from its root.

        Raises:
            InteractiveStoryError: invalid arguments, or an integrity error
                while planning the resume.
            The first task failure, when `stop_on_error` is enabled.
        """
        story_id = (story_id or "").strip()
        if not story_id:
            raise InteractiveStoryError("Story id must be provided for interactive story generation.")
        if not story_constitution or not story_constitution.strip():
            raise InteractiveStoryError("Story constitution must be provided for interactive story generation.")

        if resume_state is not None:
            pending = self._validate_resume_state(story_id, resume_state)
            resume_mode = True
        else:
            pending, resume_mode = await self._plan(story_id)

        report = GenerationReport(story_id=story_id, resume_mode=resume_mode)

        if resume_mode and not pending:
            logger.info(f"[generate] Story {story_id} has no pending tasks, nothing to generate")
            return report

        logger.info(
            f"[generate] Story {story_id}: {len(pending)} pending tasks "
            f"(resume={resume_mode}, concurrency={self.settings.max_concurrency})"
        )

        await self._drive(story_constitution, pending, report)

        logger.info(
            f"[generate] Story {story_id} finished: {report.created_scenelets} scenelets created, "
            f"{report.completed_tasks} tasks completed, {len(report.failures)} failures"
        )
        return report

    async def _plan(self, story_id: str) -> Tuple[List[GenerationTask], bool]:
        if not await self.persistence.has_scenelets_for_story(story_id):
            return build_resume_plan(story_id, []).pending_tasks, False

        records = await self.persistence.list_scenelets_by_story(story_id)
        plan = build_resume_plan(story_id, records)
        return plan.pending_tasks, True

    def _validate_resume_state(self, story_id: str, resume_state: ResumeState) -> List[GenerationTask]:
        tasks = []
        for index, task in enumerate(resume_state.pending_tasks):
            if task.story_id != story_id:
                raise InteractiveStoryError(
                    f"Resume task {index} targets story {task.story_id}, expected {story_id}."
                )
            tasks.append(
                GenerationTask(
                    story_id=story_id,
                    parent_scenelet_id=task.parent_scenelet_id,
                    path_context=[
                        normalize_scenelet_content(scenelet, f"pending_tasks[{index}].path_context[{position}]")
                        for position, scenelet in enumerate(task.path_context)
                    ],
                )
            )
        return tasks

    async def _drive(
        self,
        story_constitution: str,
        pending: List[GenerationTask],
        report: GenerationReport,
    ) -> None:
        """Run the LIFO work queue with bounded concurrency."""
        # Reversed so the first planned task is popped first.
        stack: List[GenerationTask] = list(reversed(pending))
        in_flight: Dict[asyncio.Task, GenerationTask] = {}
        first_error: Optional[BaseException] = None

        try:
            while stack or in_flight:
                while stack and first_error is None and len(in_flight) < self.settings.max_concurrency:
                    task = stack.pop()
                    worker = asyncio.create_task(self._process_task(story_constitution, task))
                    in_flight[worker] = task

                if not in_flight:
                    if stack and first_error is None:
                        raise InteractiveStoryError(
                            f"{len(stack)} pending tasks for story {report.story_id} cannot be scheduled "
                            f"with max_concurrency={self.settings.max_concurrency}."
                        )
                    break

                done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
                for worker in done:
                    task = in_flight.pop(worker)
                    try:
                        outcome = worker.result()
                    except TASK_ERRORS as e:
                        report.failures.append(self._record_failure(task, e))
                        if self.settings.stop_on_error and first_error is None:
                            first_error = e
                        continue

                    report.completed_tasks += 1
                    report.created_scenelets += outcome.created_scenelets
                    for continuation in reversed(outcome.continuations):
                        stack.append(continuation)
        except BaseException:
            for worker in in_flight:
                worker.cancel()
            raise

        if first_error is not None:
            logger.warning(
                f"[_drive] Stopping story {report.story_id} after first failure, "
                f"{len(stack)} tasks left unscheduled"
            )
            raise first_error

    async def _process_task(self, story_constitution: str, task: GenerationTask) -> _TaskOutcome:
        is_root = task.parent_scenelet_id is None
        max_path_length = self.settings.max_path_length
        if max_path_length is not None and len(task.path_context) >= max_path_length:
            raise PathLengthExceededError(
                f"Path below scenelet {task.parent_scenelet_id} reached {len(task.path_context)} "
                f"scenelets without concluding (limit {max_path_length}).",
                path_length=len(task.path_context),
                max_path_length=max_path_length,
            )

        user_content = build_scriptwriter_user_content(
            story_constitution,
            task.path_context,
            is_root,
            self.settings.target_scenelets_per_path,
        )
        logger.debug(
            f"[_process_task] Request for story {task.story_id}, parent {task.parent_scenelet_id}:\n{user_content}"
        )

        raw = await self.json_client.generate_json(
            self.system_prompt,
            user_content,
            timeout_ms=self.settings.timeout_ms,
        )
        logger.debug(f"[_process_task] Response for parent {task.parent_scenelet_id}:\n{raw}")

        response = parse_scriptwriter_response(raw)
        return await self._persist(task, response)

    async def _persist(self, task: GenerationTask, response: ScriptwriterResponse) -> _TaskOutcome:
        outcome = _TaskOutcome()

        if isinstance(response, BranchResponse):
            if task.parent_scenelet_id is None:
                raise SceneletValidationError(
                    "Root scenelet cannot be a branch point; the story must open with a single scenelet.",
                    scenelet_id="root",
                    field="branch_point",
                )
            # Children first: a branch point must never be observed without them.
            for scenelet in response.next_scenelets:
                try:
                    record = await self._create(task, scenelet, scenelet.choice_label)
                except PersistenceError:
                    if outcome.created_scenelets:
                        created = ", ".join(c.parent_scenelet_id for c in outcome.continuations)
                        logger.error(
                            f"[_persist] Branch under scenelet {task.parent_scenelet_id} interrupted after "
                            f"{outcome.created_scenelets} of {len(response.next_scenelets)} choices ({created})"
                        )
                    raise
                outcome.created_scenelets += 1
                outcome.continuations.append(self._continuation(task, record.id, scenelet))
            await self.persistence.mark_scenelet_as_branch_point(
                task.parent_scenelet_id, response.choice_prompt
            )
            logger.info(
                f"[_persist] Scenelet {task.parent_scenelet_id} branches into "
                f"{len(response.next_scenelets)} choices"
            )

        elif isinstance(response, LinearResponse):
            record = await self._create(task, response.next_scenelet, None)
            outcome.created_scenelets += 1
            outcome.continuations.append(self._continuation(task, record.id, response.next_scenelet))

        elif isinstance(response, ConcludingResponse):
            record = await self._create(task, response.next_scenelet, None)
            outcome.created_scenelets += 1
            await self.persistence.mark_scenelet_as_terminal(record.id)
            logger.info(f"[_persist] Path concluded at scenelet {record.id}")

        return outcome

    async def _create(
        self,
        task: GenerationTask,
        scenelet: ScriptwriterScenelet,
        choice_label: Optional[str],
    ):
        return await self.persistence.create_scenelet(
            CreateSceneletInput(
                story_id=task.story_id,
                parent_id=task.parent_scenelet_id,
                choice_label_from_parent=choice_label,
                content=scenelet,
            )
        )

    @staticmethod
    def _continuation(task: GenerationTask, scenelet_id: str, scenelet: ScriptwriterScenelet) -> GenerationTask:
        return GenerationTask(
            story_id=task.story_id,
            parent_scenelet_id=scenelet_id,
            path_context=[clone_scenelet(item) for item in task.path_context] + [clone_scenelet(scenelet)],
        )

    @staticmethod
    def _record_failure(task: GenerationTask, error: BaseException) -> TaskFailure:
        logger.error(
            f"[_record_failure] Task for story {task.story_id}, parent {task.parent_scenelet_id} "
            f"failed: {type(error).__name__}: {error}"
        )
        return TaskFailure(
            story_id=task.story_id,
            parent_scenelet_id=task.parent_scenelet_id,
            error_type=type(error).__name__,
            message=str(error),
        )


async def generate_interactive_story_tree(
    story_id: str,
    story_constitution: str,
    json_client: JsonModelClient,
    persistence: SceneletPersistence,
    system_prompt: str = INTERACTIVE_SCRIPTWRITER_SYSTEM_PROMPT,
    settings: Optional[GenerationSettings] = None,
    resume_state: Optional[ResumeState] = None,
) -> GenerationReport:
    """Convenience wrapper around InteractiveStoryGenerator.generate."""
    generator = InteractiveStoryGenerator(json_client, persistence, system_prompt, settings)
    return await generator.generate(story_id, story_constitution, resume_state)
