"""
Scriptwriter Data Models Module
Pydantic schemas for scenelets, generation tasks and responses.
"""

from .schemas import (
    BranchChoice,
    BranchingPointDigest,
    # Responses
    BranchResponse,
    ConcludingResponse,
    CreateSceneletInput,
    # Scenelet Content
    DialogueLine,
    GenerationJob,
    GenerationReport,
    # Generation Work
    GenerationTask,
    LinearResponse,
    ResponseKind,
    ResumeState,
    SceneletDigest,
    # Persistence
    SceneletRecord,
    SceneletRole,
    ScriptwriterResponse,
    ScriptwriterScenelet,
    StoryTreeEntry,
    StoryTreeSnapshot,
    TaskFailure,
)

__all__ = [
    "DialogueLine",
    "ScriptwriterScenelet",
    "SceneletRecord",
    "CreateSceneletInput",
    "GenerationTask",
    "ResumeState",
    "ResponseKind",
    "BranchResponse",
    "LinearResponse",
    "ConcludingResponse",
    "ScriptwriterResponse",
    "TaskFailure",
    "GenerationReport",
    "SceneletRole",
    "SceneletDigest",
    "BranchChoice",
    "BranchingPointDigest",
    "StoryTreeEntry",
    "StoryTreeSnapshot",
    "GenerationJob",
]
