"""
Domain errors for interactive story generation.
"""

from typing import List, Optional


class InteractiveStoryError(Exception):
    """Base error for the interactive story engine."""
    pass


class SceneletValidationError(InteractiveStoryError):
    """Raised when scenelet content does not match the scenelet schema."""

    def __init__(self, message: str, scenelet_id: str, field: Optional[str] = None):
        super().__init__(message)
        self.scenelet_id = scenelet_id
        self.field = field


class InteractiveStoryParsingError(InteractiveStoryError):
    """Raised when a scriptwriter response is malformed or ambiguous."""

    def __init__(self, message: str, raw_response: str):
        super().__init__(message)
        self.raw_response = raw_response


class StoryIntegrityError(InteractiveStoryError):
    """Raised when persisted scenelets do not form a resumable tree."""

    def __init__(self, message: str, story_id: str):
        super().__init__(message)
        self.story_id = story_id


class PathLengthExceededError(InteractiveStoryError):
    """Raised when a narrative path reaches the configured hard length cap."""

    def __init__(self, message: str, path_length: int, max_path_length: int):
        super().__init__(message)
        self.path_length = path_length
        self.max_path_length = max_path_length


class InterruptedBranchError(StoryIntegrityError):
    """
    Raised when a scenelet has labelled choice children but was never
    marked as a branch point: the branch write stopped part way.
    """

    def __init__(self, message: str, story_id: str, parent_scenelet_id: str, child_ids: List[str]):
        super().__init__(message, story_id)
        self.parent_scenelet_id = parent_scenelet_id
        self.child_ids = child_ids
