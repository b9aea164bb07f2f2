"""
Scenelet validation and cloning.

Raw scenelet content arrives either from the model (decoded JSON) or from
storage (whatever the persistence layer kept). `normalize_scenelet_content`
turns it into a `ScriptwriterScenelet` or raises `SceneletValidationError`
naming the scenelet and the offending field path.
"""

from typing import Any, List, Optional

from ..models import DialogueLine, ScriptwriterScenelet
from .errors import SceneletValidationError


def normalize_scenelet_content(raw: Any, scenelet_id: str) -> ScriptwriterScenelet:
    """Validate raw scenelet content and return a normalized scenelet."""
    if isinstance(raw, ScriptwriterScenelet):
        raw = raw.to_payload()

    if not isinstance(raw, dict):
        raise SceneletValidationError(
            f"Scenelet {scenelet_id} content must be an object with script fields.",
            scenelet_id,
        )

    description = _expect_string(raw.get("description"), scenelet_id, "description")
    dialogue = _normalize_dialogue(raw.get("dialogue"), scenelet_id)
    shot_suggestions = _normalize_shot_suggestions(raw.get("shot_suggestions"), scenelet_id)

    return ScriptwriterScenelet(
        description=description,
        dialogue=dialogue,
        shot_suggestions=shot_suggestions,
        choice_label=_optional_label(raw.get("choice_label")),
    )


def clone_scenelet(scenelet: ScriptwriterScenelet) -> ScriptwriterScenelet:
    """Deep copy a scenelet; a blank choice label is dropped."""
    return ScriptwriterScenelet(
        description=scenelet.description,
        dialogue=[DialogueLine(character=d.character, line=d.line) for d in scenelet.dialogue],
        shot_suggestions=list(scenelet.shot_suggestions),
        choice_label=_optional_label(scenelet.choice_label),
    )


def _normalize_dialogue(value: Any, scenelet_id: str) -> List[DialogueLine]:
    if value is None:
        return []

    if not isinstance(value, list):
        raise SceneletValidationError(
            f"Scenelet {scenelet_id} dialogue must be an array of {{ character, line }} objects.",
            scenelet_id,
            "dialogue",
        )

    lines = []
    for index, entry in enumerate(value):
        if not isinstance(entry, dict):
            raise SceneletValidationError(
                f"Scenelet {scenelet_id} dialogue entry {index} must be an object.",
                scenelet_id,
                f"dialogue[{index}]",
            )
        character = _expect_string(entry.get("character"), scenelet_id, f"dialogue[{index}].character")
        line = _expect_string(entry.get("line"), scenelet_id, f"dialogue[{index}].line")
        lines.append(DialogueLine(character=character, line=line))
    return lines


def _normalize_shot_suggestions(value: Any, scenelet_id: str) -> List[str]:
    if not isinstance(value, list):
        raise SceneletValidationError(
            f"Scenelet {scenelet_id} shot_suggestions must be an array of strings.",
            scenelet_id,
            "shot_suggestions",
        )

    suggestions = []
    for index, entry in enumerate(value):
        if not isinstance(entry, str) or not entry.strip():
            raise SceneletValidationError(
                f"Scenelet {scenelet_id} shot_suggestions[{index}] must be a non-empty string.",
                scenelet_id,
                f"shot_suggestions[{index}]",
            )
        suggestions.append(entry.strip())
    return suggestions


def _expect_string(value: Any, scenelet_id: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise SceneletValidationError(
            f"Scenelet {scenelet_id} field {field} must be a non-empty string.",
            scenelet_id,
            field,
        )
    return value.strip()


def _optional_label(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None
