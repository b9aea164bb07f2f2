"""
Scriptwriter Core Module
Scenelet validation, response decoding, resume planning and the tree
generation engine.
"""

from .engine import InteractiveStoryGenerator, generate_interactive_story_tree
from .errors import (
    InteractiveStoryError,
    InteractiveStoryParsingError,
    InterruptedBranchError,
    PathLengthExceededError,
    SceneletValidationError,
    StoryIntegrityError,
)
from .response_parser import parse_scriptwriter_response
from .resume_planner import build_resume_plan
from .scenelets import clone_scenelet, normalize_scenelet_content
from .story_tree import build_story_tree_snapshot

__all__ = [
    "InteractiveStoryError",
    "SceneletValidationError",
    "InteractiveStoryParsingError",
    "StoryIntegrityError",
    "InterruptedBranchError",
    "PathLengthExceededError",
    "normalize_scenelet_content",
    "clone_scenelet",
    "parse_scriptwriter_response",
    "build_resume_plan",
    "build_story_tree_snapshot",
    "InteractiveStoryGenerator",
    "generate_interactive_story_tree",
]
