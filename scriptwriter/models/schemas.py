"""
Pydantic data models for the interactive scriptwriter.
Scenelets are the narrative beats of a branching story tree; the response
models mirror the three shapes the scriptwriter model is allowed to return.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


# ============================================================================
# Scenelet Content
# ============================================================================

class DialogueLine(BaseModel):
    """A single spoken line within a scenelet."""
    character: str
    line: str


class ScriptwriterScenelet(BaseModel):
    """
    Narrative payload of one story beat.
    `choice_label` is only present when the scenelet is one of the choices
    offered by a branch point.
    """
    description: str
    dialogue: List[DialogueLine] = Field(default_factory=list)
    shot_suggestions: List[str] = Field(default_factory=list)
    choice_label: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the wire/storage shape, omitting an absent choice label."""
        return self.model_dump(exclude_none=True)


# ============================================================================
# Persistence Models
# ============================================================================

class SceneletRecord(BaseModel):
    """A persisted scenelet as returned by the persistence layer."""
    id: str
    story_id: str
    parent_id: Optional[str] = None
    choice_label_from_parent: Optional[str] = None
    choice_prompt: Optional[str] = None
    content: Any = None  # raw stored content, normalized before use
    is_branch_point: bool = False
    is_terminal_node: bool = False
    created_at: Optional[datetime] = None


class CreateSceneletInput(BaseModel):
    """Input for creating a scenelet in persistence."""
    story_id: str
    parent_id: Optional[str] = None
    choice_label_from_parent: Optional[str] = None
    content: ScriptwriterScenelet


# ============================================================================
# Generation Work
# ============================================================================

class GenerationTask(BaseModel):
    """
    One pending unit of generation work.
    A null `parent_scenelet_id` means the root scenelet is still to be written.
    `path_context` is ordered root-first and ends with the parent's content.
    """
    story_id: str
    parent_scenelet_id: Optional[str] = None
    path_context: List[ScriptwriterScenelet] = Field(default_factory=list)


class ResumeState(BaseModel):
    """Pending tasks needed to finish a partially generated tree."""
    pending_tasks: List[GenerationTask] = Field(default_factory=list)


# ============================================================================
# Scriptwriter Responses
# ============================================================================

class ResponseKind(str, Enum):
    """Discriminator for decoded scriptwriter responses."""
    BRANCH = "branch"
    LINEAR = "linear"
    CONCLUDING = "concluding"


class BranchResponse(BaseModel):
    """The reader faces a choice; every next scenelet carries a choice label."""
    kind: Literal[ResponseKind.BRANCH] = ResponseKind.BRANCH
    choice_prompt: str
    next_scenelets: List[ScriptwriterScenelet] = Field(..., min_length=2)


class LinearResponse(BaseModel):
    """The story continues with exactly one scenelet."""
    kind: Literal[ResponseKind.LINEAR] = ResponseKind.LINEAR
    next_scenelet: ScriptwriterScenelet


class ConcludingResponse(BaseModel):
    """The path ends with exactly one final scenelet."""
    kind: Literal[ResponseKind.CONCLUDING] = ResponseKind.CONCLUDING
    next_scenelet: ScriptwriterScenelet


ScriptwriterResponse = Union[BranchResponse, LinearResponse, ConcludingResponse]


# ============================================================================
# Generation Results
# ============================================================================

class TaskFailure(BaseModel):
    """A task that could not be completed during a generation run."""
    story_id: str
    parent_scenelet_id: Optional[str] = None
    error_type: str
    message: str


class GenerationReport(BaseModel):
    """Summary of one engine run over a story."""
    story_id: str
    resume_mode: bool = False
    created_scenelets: int = 0
    completed_tasks: int = 0
    failures: List[TaskFailure] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures


# ============================================================================
# Story Tree Snapshot
# ============================================================================

class SceneletRole(str, Enum):
    """Position of a scenelet within the story tree."""
    ROOT = "root"
    BRANCH = "branch"
    TERMINAL = "terminal"
    LINEAR = "linear"


class SceneletDigest(BaseModel):
    """Flattened scenelet entry of a story tree snapshot."""
    id: str
    parent_id: Optional[str] = None
    role: SceneletRole
    choice_label: Optional[str] = None
    description: str
    dialogue: List[DialogueLine] = Field(default_factory=list)
    shot_suggestions: List[str] = Field(default_factory=list)


class BranchChoice(BaseModel):
    """One labelled choice of a branching point."""
    label: str
    leads_to: str


class BranchingPointDigest(BaseModel):
    """Choice offered to the reader after a branch scenelet."""
    id: str
    source_scenelet_id: str
    choice_prompt: str
    choices: List[BranchChoice]


class StoryTreeEntry(BaseModel):
    """Either a scenelet or a branching point, in depth-first order."""
    kind: Literal["scenelet", "branching-point"]
    data: Union[SceneletDigest, BranchingPointDigest]


class StoryTreeSnapshot(BaseModel):
    """Depth-first rendering of a persisted story tree."""
    entries: List[StoryTreeEntry] = Field(default_factory=list)

    def to_text(self) -> str:
        """Render the snapshot as indented JSON text."""
        return self.model_dump_json(indent=2, exclude_none=True)


# ============================================================================
# Job Queue Models
# ============================================================================

class GenerationJob(BaseModel):
    """Payload for the Redis job queue."""
    job_id: str
    story_id: str
    story_constitution: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    retry_count: int = 0
    max_retries: int = 3
