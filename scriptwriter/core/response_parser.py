"""
Decoding of interactive scriptwriter responses.

The model returns free-form JSON. It is decoded into exactly one of three
shapes, tried in a fixed order (branch, linear, concluding). Each decoder
claims the response only when both flags match its shape, then checks the
payload exhaustively.
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from ..models import (
    BranchResponse,
    ConcludingResponse,
    LinearResponse,
    ScriptwriterResponse,
    ScriptwriterScenelet,
)
from .errors import InteractiveStoryParsingError, SceneletValidationError
from .scenelets import normalize_scenelet_content

logger = logging.getLogger("scriptwriter.response_parser")


def parse_scriptwriter_response(raw: str) -> ScriptwriterResponse:
    """Parse raw model output into a branch, linear or concluding response."""
    record = _decode_object(raw)

    branch_point = record.get("branch_point")
    if not isinstance(branch_point, bool):
        raise InteractiveStoryParsingError(
            "Interactive scriptwriter response must include branch_point boolean.", raw
        )

    is_concluding = record.get("is_concluding_scene")
    if not isinstance(is_concluding, bool):
        raise InteractiveStoryParsingError(
            "Interactive scriptwriter response must include is_concluding_scene boolean.", raw
        )

    scenelets = _normalize_next_scenelets(record.get("next_scenelets"), raw)

    decoders: List[Callable[..., Optional[ScriptwriterResponse]]] = [
        _decode_branch,
        _decode_linear,
        _decode_concluding,
    ]
    for decoder in decoders:
        response = decoder(record, branch_point, is_concluding, scenelets, raw)
        if response is not None:
            return response

    raise InteractiveStoryParsingError(
        "Interactive scriptwriter response cannot be both a branch point and concluding scene.",
        raw,
    )


def _decode_branch(
    record: Dict[str, Any],
    branch_point: bool,
    is_concluding: bool,
    scenelets: List[ScriptwriterScenelet],
    raw: str,
) -> Optional[BranchResponse]:
    if not (branch_point and not is_concluding):
        return None

    choice_prompt = record.get("choice_prompt")
    if not isinstance(choice_prompt, str) or not choice_prompt.strip():
        raise InteractiveStoryParsingError("Branch response is missing a non-empty choice_prompt.", raw)

    if len(scenelets) < 2:
        raise InteractiveStoryParsingError("Branch response must include at least two scenelets.", raw)

    for index, scenelet in enumerate(scenelets):
        if not scenelet.choice_label:
            raise InteractiveStoryParsingError(
                f"Branch scenelet at index {index} must include a non-empty choice_label.", raw
            )

    return BranchResponse(choice_prompt=choice_prompt.strip(), next_scenelets=scenelets)


def _decode_linear(
    record: Dict[str, Any],
    branch_point: bool,
    is_concluding: bool,
    scenelets: List[ScriptwriterScenelet],
    raw: str,
) -> Optional[LinearResponse]:
    if branch_point or is_concluding:
        return None

    if len(scenelets) != 1:
        raise InteractiveStoryParsingError(
            "Linear continuation response must contain exactly one scenelet.", raw
        )
    return LinearResponse(next_scenelet=scenelets[0])


def _decode_concluding(
    record: Dict[str, Any],
    branch_point: bool,
    is_concluding: bool,
    scenelets: List[ScriptwriterScenelet],
    raw: str,
) -> Optional[ConcludingResponse]:
    if branch_point or not is_concluding:
        return None

    if len(scenelets) != 1:
        raise InteractiveStoryParsingError("Concluding response must contain exactly one scenelet.", raw)
    return ConcludingResponse(next_scenelet=scenelets[0])


def _normalize_next_scenelets(value: Any, raw: str) -> List[ScriptwriterScenelet]:
    if not isinstance(value, list) or not value:
        raise InteractiveStoryParsingError("Interactive scriptwriter response is missing next_scenelets.", raw)

    scenelets = []
    for index, entry in enumerate(value):
        try:
            scenelets.append(normalize_scenelet_content(entry, f"next_scenelets[{index}]"))
        except SceneletValidationError as e:
            raise InteractiveStoryParsingError(str(e), raw) from e
    return scenelets


def _decode_object(raw: str) -> Dict[str, Any]:
    """Decode the response text, accepting a fenced ```json block."""
    if not raw or not raw.strip():
        raise InteractiveStoryParsingError("Interactive scriptwriter response is empty.", raw or "")

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        parsed = _extract_fenced_json(raw)
        if parsed is None:
            raise InteractiveStoryParsingError(
                "Failed to parse interactive scriptwriter JSON response.", raw
            ) from e

    if not isinstance(parsed, dict):
        raise InteractiveStoryParsingError("Interactive scriptwriter response is not a JSON object.", raw)
    return parsed


def _extract_fenced_json(text: str) -> Optional[Any]:
    for pattern in ("```json", "```JSON", "```"):
        if pattern not in text:
            continue
        parts = text.split(pattern)
        if len(parts) < 2:
            continue
        candidate = parts[1].split("```")[0].strip()
        try:
            result = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug(f"[_extract_fenced_json] Code block extraction failed for '{pattern}': {e}")
            continue
        logger.debug(f"[_extract_fenced_json] Code block extraction succeeded with pattern '{pattern}'")
        return result
    return None
